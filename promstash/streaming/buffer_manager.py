"""Bounded scrape buffer with drop-oldest overflow handling."""

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Optional

import structlog

from promstash.exceptions import BufferClosedError
from promstash.exposition.models import ScrapeResult

logger = structlog.get_logger(__name__)


@dataclass
class BufferMetrics:
    """Buffer performance metrics."""

    pushed: int = 0
    popped: int = 0
    dropped: int = 0
    max_depth: int = 0


class ScrapeBuffer:
    """Bounded FIFO of scrape results between the scraper and the writer.

    ``put`` never waits for room: when the buffer is full the oldest queued
    scrape is dropped so the freshest data is kept. ``get`` suspends the
    writer until a scrape arrives or the buffer is closed and drained.
    """

    def __init__(self, capacity: int = 5):
        """Initialize scrape buffer.

        Args:
            capacity: Maximum number of scrapes held at once
        """
        if capacity < 1:
            raise ValueError(f"Buffer capacity must be at least 1, got {capacity}")

        self.capacity = capacity
        self.queue: deque[ScrapeResult] = deque()
        self.metrics = BufferMetrics()

        self._lock = asyncio.Lock()
        self._not_empty = asyncio.Condition(self._lock)
        self._closed = False

    async def put(self, result: ScrapeResult) -> Optional[ScrapeResult]:
        """Add a scrape, dropping the oldest one if the buffer is full.

        Args:
            result: Parsed scrape to enqueue

        Returns:
            Optional[ScrapeResult]: The dropped scrape, or None

        Raises:
            BufferClosedError: If buffer is closed
        """
        async with self._lock:
            if self._closed:
                raise BufferClosedError()

            dropped = None
            if len(self.queue) >= self.capacity:
                dropped = self.queue.popleft()
                self.metrics.dropped += 1
                logger.warning(
                    "buffer_overflow",
                    dropped_collected_at=dropped.collected_at.isoformat(),
                    dropped_samples=dropped.sample_count,
                    total_dropped=self.metrics.dropped,
                    capacity=self.capacity,
                )

            self.queue.append(result)

            self.metrics.pushed += 1
            self.metrics.max_depth = max(self.metrics.max_depth, len(self.queue))

            self._not_empty.notify()

            return dropped

    async def get(self) -> Optional[ScrapeResult]:
        """Get the oldest buffered scrape.

        Returns:
            Optional[ScrapeResult]: Scrape or None once closed and drained
        """
        async with self._not_empty:
            while len(self.queue) == 0 and not self._closed:
                await self._not_empty.wait()

            if len(self.queue) == 0:
                return None

            self.metrics.popped += 1
            return self.queue.popleft()

    async def close(self) -> None:
        """Close buffer and wake all waiters."""
        async with self._lock:
            self._closed = True
            self._not_empty.notify_all()

    def snapshot(self) -> list[ScrapeResult]:
        """Copy of the queued scrapes, oldest first."""
        return list(self.queue)

    @property
    def is_closed(self) -> bool:
        """Check if buffer is closed."""
        return self._closed

    @property
    def depth(self) -> int:
        """Current number of scrapes in queue."""
        return len(self.queue)
