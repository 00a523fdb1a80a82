"""Scrape pipeline: source → buffer → storage writer.

This module wires the scrape scheduler and the storage writer together:
- Producer pulls parsed scrapes from the source and buffers them
- Consumer writes buffered scrapes to the store, one transaction each
- The buffer drops the oldest scrape instead of blocking the producer
- Stopping halts the source, drains the buffer and lets the writer finish
"""

import asyncio
import contextlib
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

import structlog

from promstash.storage.writer import StorageWriter
from promstash.streaming.buffer_manager import ScrapeBuffer
from promstash.streaming.sources import ScrapeSource

logger = structlog.get_logger(__name__)


@dataclass
class PipelineSummary:
    """Totals reported when a pipeline finishes."""

    scrapes_attempted: int = 0
    scrapes_succeeded: int = 0
    scrapes_failed: int = 0
    scrapes_dropped: int = 0
    scrapes_written: int = 0
    scrapes_write_failed: int = 0
    samples_written: int = 0
    samples_lost: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert summary to dictionary."""
        return asdict(self)


class ScrapePipeline:
    """Producer/consumer pipeline for scrapes.

    Example:
        writer = StorageWriter(create_engine("metrics.db"))
        await writer.initialize()

        pipeline = ScrapePipeline(
            source=PeriodicSource("http://localhost:9100/metrics", 5.0),
            buffer=ScrapeBuffer(capacity=5),
            writer=writer,
        )

        summary = await pipeline.run()
        print(f"Wrote {summary.samples_written} samples")
    """

    def __init__(
        self,
        source: ScrapeSource,
        buffer: ScrapeBuffer,
        writer: StorageWriter,
    ):
        """Initialize scrape pipeline.

        Args:
            source: Where scrapes come from
            buffer: Bounded buffer between source and writer
            writer: Storage writer (schema already initialized)
        """
        self.source = source
        self.buffer = buffer
        self.writer = writer
        self._stop = asyncio.Event()
        self._started_at: datetime | None = None
        self._finished_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        """Check if the pipeline has started and not yet finished."""
        return self._started_at is not None and self._finished_at is None

    def stop(self) -> None:
        """Stop scraping; buffered scrapes are still written."""
        if not self._stop.is_set():
            logger.info("pipeline_stopping", source=self.source.name, buffered=self.buffer.depth)
        self._stop.set()

    async def run(self) -> PipelineSummary:
        """Run until the source is exhausted or stopped and the buffer drained.

        Every event logged during the run, including those of the producer
        and consumer tasks, is bound to ``target=<source name>``.

        Returns:
            PipelineSummary: Totals for the run
        """
        with structlog.contextvars.bound_contextvars(target=self.source.name):
            return await self._run()

    async def _run(self) -> PipelineSummary:
        self._started_at = datetime.now(timezone.utc)
        self._finished_at = None
        logger.info(
            "pipeline_started",
            source=self.source.name,
            buffer_capacity=self.buffer.capacity,
        )

        producer_task = asyncio.create_task(self._producer())
        consumer_task = asyncio.create_task(self.writer.run(self.buffer))

        try:
            await asyncio.gather(producer_task, consumer_task)
        except BaseException:
            self._stop.set()
            producer_task.cancel()
            consumer_task.cancel()
            raise
        finally:
            self._finished_at = datetime.now(timezone.utc)

        summary = self.summary()
        logger.info("pipeline_finished", source=self.source.name, **summary.to_dict())
        return summary

    def summary(self) -> PipelineSummary:
        """Current totals (final once the pipeline has finished)."""
        end = self._finished_at or datetime.now(timezone.utc)
        duration = (end - self._started_at).total_seconds() if self._started_at else 0.0

        return PipelineSummary(
            scrapes_attempted=self.source.metrics.attempted,
            scrapes_succeeded=self.source.metrics.succeeded,
            scrapes_failed=self.source.metrics.failed,
            scrapes_dropped=self.buffer.metrics.dropped,
            scrapes_written=self.writer.metrics.scrapes_written,
            scrapes_write_failed=self.writer.metrics.scrapes_failed,
            samples_written=self.writer.metrics.samples_written,
            samples_lost=self.writer.metrics.samples_lost,
            duration_seconds=duration,
        )

    async def _producer(self) -> None:
        """Producer: move scrapes from the source into the buffer.

        The buffer is always closed on exit so the consumer drains and stops.
        """
        try:
            async with contextlib.aclosing(self.source.scrapes(self._stop)) as scrapes:
                async for result in scrapes:
                    await self.buffer.put(result)
        finally:
            await self.buffer.close()
