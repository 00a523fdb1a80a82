"""Storage writer: commits buffered scrapes to the metric store."""

import math
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

import structlog
from sqlalchemy import func, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from promstash.exceptions import StorageError
from promstash.exposition.models import ScrapeResult
from promstash.storage.normalizer import SeriesNormalizer
from promstash.storage.schema import TABLES, init_schema, sample

if TYPE_CHECKING:
    from promstash.streaming.buffer_manager import ScrapeBuffer

logger = structlog.get_logger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MILLISECOND = timedelta(milliseconds=1)


def to_epoch_millis(moment: datetime) -> int:
    """Milliseconds since the Unix epoch; naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // _MILLISECOND


@dataclass
class WriterMetrics:
    """Storage writer counters."""

    scrapes_written: int = 0
    scrapes_failed: int = 0
    samples_written: int = 0
    samples_lost: int = 0


class StorageWriter:
    """Single writer owning the store connection.

    Each scrape is written in its own transaction: either all of its samples
    become visible or none do. A failed scrape is rolled back, logged and
    skipped; it never stops the writer.

    Example:
        writer = StorageWriter(create_engine("metrics.db"))
        await writer.initialize()

        await writer.run(buffer)
        await writer.close()
    """

    def __init__(
        self,
        engine: AsyncEngine,
        normalizer: Optional[SeriesNormalizer] = None,
    ):
        """Initialize storage writer.

        Args:
            engine: Async engine for the metric store
            normalizer: Series normalizer (a fresh one if omitted)
        """
        self.engine = engine
        self.normalizer = normalizer or SeriesNormalizer()
        self.metrics = WriterMetrics()
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        """Check if the schema has been initialized."""
        return self._initialized

    async def initialize(self) -> None:
        """Create the schema if missing, in a single transaction.

        Raises:
            StorageError: If the store cannot be opened or initialized
        """
        try:
            async with self.engine.begin() as conn:
                await init_schema(conn)
        except SQLAlchemyError as e:
            raise StorageError(
                f"Cannot initialize metric store: {e}",
                url=self.engine.url.render_as_string(hide_password=True),
            ) from e

        self._initialized = True
        logger.info("store_initialized", url=str(self.engine.url))

    async def write(self, result: ScrapeResult) -> int:
        """Write one scrape atomically.

        Args:
            result: Scrape to persist

        Returns:
            int: Number of samples written (0 if the scrape was rolled back)
        """
        sample_count = result.sample_count
        start = time.perf_counter()
        default_timestamp = to_epoch_millis(result.collected_at)

        try:
            async with self.engine.begin() as conn:
                rows = []
                for family in result.families:
                    for point in family.samples:
                        series_id = await self.normalizer.resolve(
                            conn,
                            point.name,
                            family.kind,
                            family.help,
                            point.labels,
                        )
                        rows.append(
                            {
                                "series_id": series_id,
                                "timestamp": (
                                    default_timestamp
                                    if point.timestamp is None
                                    else to_epoch_millis(point.timestamp)
                                ),
                                "value": None if math.isnan(point.value) else point.value,
                            }
                        )

                if rows:
                    await conn.execute(insert(sample), rows)

        except (SQLAlchemyError, StorageError) as e:
            self.normalizer.rollback()
            self.metrics.scrapes_failed += 1
            self.metrics.samples_lost += sample_count
            logger.error(
                "scrape_write_failed",
                source=result.source,
                collected_at=result.collected_at.isoformat(),
                lost_samples=sample_count,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            return 0
        except BaseException:
            self.normalizer.rollback()
            raise

        self.normalizer.commit()
        self.metrics.scrapes_written += 1
        self.metrics.samples_written += sample_count

        logger.info(
            "scrape_written",
            source=result.source,
            collected_at=result.collected_at.isoformat(),
            families=len(result.families),
            samples=sample_count,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return sample_count

    async def run(self, buffer: "ScrapeBuffer") -> WriterMetrics:
        """Drain the buffer until it is closed and empty.

        Args:
            buffer: Scrape buffer fed by the source

        Returns:
            WriterMetrics: Counters after draining
        """
        logger.debug("writer_started")

        while True:
            result = await buffer.get()

            if result is None:
                break

            await self.write(result)

        logger.debug("writer_finished", **asdict(self.metrics))
        return self.metrics

    async def stats(self) -> dict[str, int]:
        """Row counts per table."""
        counts = {}
        async with self.engine.connect() as conn:
            for table in TABLES:
                result = await conn.execute(select(func.count()).select_from(table))
                counts[table.name] = result.scalar_one()
        return counts

    async def close(self) -> None:
        """Release the engine's connections."""
        await self.engine.dispose()
