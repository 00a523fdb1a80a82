"""Scrape sources: where exposition payloads come from.

Two variants exist:

- :class:`OneShotSource` reads one complete payload from a binary stream
  (stdin or a file) and finishes after a single scrape.
- :class:`PeriodicSource` fetches a URL on a fixed interval until stopped.

Both parse each payload before handing it on, so only well-formed scrapes
reach the buffer. Failures are isolated to the tick they happen in.
"""

import asyncio
import contextlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Mapping, Optional

import httpx
import structlog

from promstash.exceptions import ConfigurationError, FetchError, ParseError
from promstash.exposition.models import ScrapeResult
from promstash.exposition.parser import ExpositionParser

logger = structlog.get_logger(__name__)

ACCEPT_HEADER = "text/plain;version=0.0.4;q=1,*/*;q=0.1"


@dataclass
class SourceMetrics:
    """Scrape attempt counters."""

    attempted: int = 0
    succeeded: int = 0
    failed: int = 0


class ScrapeSource(ABC):
    """Base class for scrape sources."""

    def __init__(self, name: str, const_labels: Optional[Mapping[str, str]] = None):
        """Initialize scrape source.

        Args:
            name: Source identifier used in logs and on each result
            const_labels: Labels added to every scraped sample
        """
        self.name = name
        self.parser = ExpositionParser(const_labels)
        self.metrics = SourceMetrics()

    @abstractmethod
    def scrapes(self, stop: asyncio.Event) -> AsyncIterator[ScrapeResult]:
        """Yield parsed scrapes until exhausted or ``stop`` is set."""

    def _build_result(self, payload: bytes, collected_at: datetime) -> Optional[ScrapeResult]:
        """Parse a payload; a malformed payload counts as a failed scrape."""
        try:
            families = self.parser.parse(payload)
        except ParseError as e:
            self.metrics.failed += 1
            logger.error(
                "scrape_failed",
                source=self.name,
                collected_at=collected_at.isoformat(),
                reason=e.reason,
                line=e.line_number,
                token=e.token,
            )
            return None

        result = ScrapeResult(
            collected_at=collected_at,
            families=tuple(families),
            source=self.name,
        )
        self.metrics.succeeded += 1
        logger.debug(
            "scrape_collected",
            source=self.name,
            collected_at=collected_at.isoformat(),
            families=len(result.families),
            samples=result.sample_count,
        )
        return result


class OneShotSource(ScrapeSource):
    """Reads a single payload from a binary stream."""

    def __init__(
        self,
        stream: BinaryIO,
        name: str = "-",
        const_labels: Optional[Mapping[str, str]] = None,
        close_stream: bool = False,
    ):
        """Initialize one-shot source.

        Args:
            stream: Binary stream holding the whole exposition payload
            name: Source identifier ("-" for stdin, else the file path)
            const_labels: Labels added to every scraped sample
            close_stream: Close the stream once it has been read
        """
        super().__init__(name, const_labels)
        self.stream = stream
        self.close_stream = close_stream

    async def scrapes(self, stop: asyncio.Event) -> AsyncIterator[ScrapeResult]:
        if stop.is_set():
            return

        self.metrics.attempted += 1
        try:
            payload = await asyncio.to_thread(self.stream.read)
        except OSError as e:
            self.metrics.failed += 1
            logger.error("scrape_failed", source=self.name, reason=str(e))
            return
        finally:
            if self.close_stream:
                self.stream.close()

        result = self._build_result(payload, datetime.now(timezone.utc))
        if result is not None:
            yield result


class PeriodicSource(ScrapeSource):
    """Fetches a URL on a fixed interval.

    A tick that overruns the interval delays the next tick rather than
    bursting to catch up. A failed tick is logged and skipped; the next tick
    is the retry.
    """

    def __init__(
        self,
        url: str,
        interval_seconds: float,
        client: Optional[httpx.AsyncClient] = None,
        const_labels: Optional[Mapping[str, str]] = None,
        timeout_seconds: Optional[float] = None,
        max_scrapes: Optional[int] = None,
    ):
        """Initialize periodic source.

        Args:
            url: Endpoint serving exposition text
            interval_seconds: Time between tick starts
            client: HTTP client to use (one is created per run if omitted)
            const_labels: Labels added to every scraped sample
            timeout_seconds: Per-fetch timeout (defaults to the interval)
            max_scrapes: Stop after this many ticks (None = until stopped)
        """
        if interval_seconds <= 0:
            raise ValueError(f"Scrape interval must be positive, got {interval_seconds}")

        super().__init__(url, const_labels)
        self.url = url
        self.interval_seconds = interval_seconds
        self.timeout_seconds = timeout_seconds or interval_seconds
        self.max_scrapes = max_scrapes
        self._client = client

    async def scrapes(self, stop: asyncio.Event) -> AsyncIterator[ScrapeResult]:
        client = self._client or httpx.AsyncClient(headers={"Accept": ACCEPT_HEADER})
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        ticks = 0

        try:
            while not stop.is_set():
                ticks += 1
                result = await self._tick(client)
                if result is not None:
                    yield result

                if self.max_scrapes is not None and ticks >= self.max_scrapes:
                    break

                next_tick += self.interval_seconds
                now = loop.time()
                if next_tick < now:
                    logger.warning(
                        "scrape_overrun",
                        source=self.url,
                        behind_seconds=round(now - next_tick, 3),
                    )
                    next_tick = now

                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(stop.wait(), timeout=next_tick - now)
        finally:
            if self._client is None:
                await client.aclose()

    async def _tick(self, client: httpx.AsyncClient) -> Optional[ScrapeResult]:
        collected_at = datetime.now(timezone.utc)
        self.metrics.attempted += 1

        try:
            payload = await self._fetch(client)
        except FetchError as e:
            self.metrics.failed += 1
            logger.error(
                "scrape_failed",
                source=self.url,
                collected_at=collected_at.isoformat(),
                reason=e.context["reason"],
                status_code=e.status_code,
            )
            return None

        return self._build_result(payload, collected_at)

    async def _fetch(self, client: httpx.AsyncClient) -> bytes:
        """Issue one GET against the target.

        Raises:
            FetchError: On transport failure, timeout or non-2xx status
        """
        try:
            response = await client.get(self.url, timeout=self.timeout_seconds)
        except httpx.TimeoutException as e:
            raise FetchError(self.url, f"timed out after {self.timeout_seconds}s") from e
        except httpx.HTTPError as e:
            raise FetchError(self.url, str(e) or type(e).__name__) from e

        if not response.is_success:
            raise FetchError(
                self.url,
                f"HTTP {response.status_code}",
                status_code=response.status_code,
            )

        return response.content


def is_url(target: str) -> bool:
    """Check whether a target names an HTTP endpoint."""
    return target.startswith(("http://", "https://"))


def default_instance(url: str) -> str:
    """``host:port`` of a URL, the conventional Prometheus instance label."""
    parsed = httpx.URL(url)
    port = parsed.port or (443 if parsed.scheme == "https" else 80)
    return f"{parsed.host}:{port}"


def build_const_labels(
    target: str,
    job: Optional[str] = None,
    instance: Optional[str] = None,
) -> dict[str, str]:
    """Labels applied to every sample scraped from ``target``."""
    labels = {}
    if instance is None and is_url(target):
        instance = default_instance(target)
    if instance:
        labels["instance"] = instance
    if job:
        labels["job"] = job
    return labels


def create_source(
    target: str,
    interval_seconds: float = 5.0,
    timeout_seconds: Optional[float] = None,
    job: Optional[str] = None,
    instance: Optional[str] = None,
    max_scrapes: Optional[int] = None,
    client: Optional[httpx.AsyncClient] = None,
    stdin: Optional[BinaryIO] = None,
) -> ScrapeSource:
    """Create the source matching a target.

    Args:
        target: http(s) URL, path to a file, or "-" for stdin
        interval_seconds: Scrape interval for URLs
        timeout_seconds: Per-fetch timeout for URLs
        job: Optional job label
        instance: Optional instance label (URLs default to host:port)
        max_scrapes: Optional tick limit for URLs
        client: Optional HTTP client for URLs
        stdin: Stream used for "-" (defaults to sys.stdin.buffer)

    Raises:
        ConfigurationError: If the target is neither a URL nor a readable file
    """
    const_labels = build_const_labels(target, job=job, instance=instance)

    if is_url(target):
        try:
            httpx.URL(target)
        except httpx.InvalidURL as e:
            raise ConfigurationError(f"Invalid target URL: {target}", target=target) from e
        return PeriodicSource(
            target,
            interval_seconds,
            client=client,
            const_labels=const_labels,
            timeout_seconds=timeout_seconds,
            max_scrapes=max_scrapes,
        )

    if target == "-":
        if stdin is None:
            import sys

            stdin = sys.stdin.buffer
        return OneShotSource(stdin, name="-", const_labels=const_labels)

    path = Path(target)
    if not path.is_file():
        raise ConfigurationError(
            f"Target is neither a URL nor a readable file: {target}", target=target
        )
    try:
        stream = open(path, "rb")
    except OSError as e:
        raise ConfigurationError(f"Cannot open target {target}: {e}", target=target) from e
    return OneShotSource(stream, name=str(path), const_labels=const_labels, close_stream=True)
