"""Maps metric names and label sets onto stable relational identifiers.

A series is identified by its metric and the *set* of (label, value) pairs
attached to it. Resolution only ever looks rows up or appends new ones, so
it is safe to run against a database written by an earlier run.

Lookups are cached in memory. Ids learned while a transaction is open are
staged and only become visible to later transactions after :meth:`commit`;
:meth:`rollback` forgets them, so a rolled-back scrape cannot leave cached
ids pointing at rows that were never committed.
"""

from typing import Mapping

import structlog
from sqlalchemy import func, insert, select
from sqlalchemy.ext.asyncio import AsyncConnection

from promstash.exposition.models import MetricKind
from promstash.storage.schema import label_set, label_value, metric, series

logger = structlog.get_logger(__name__)

SeriesKey = tuple[int, frozenset[int]]


class _StagedCache:
    """Committed entries plus entries staged by the open transaction."""

    def __init__(self) -> None:
        self.committed: dict = {}
        self.staged: dict = {}

    def get(self, key):
        if key in self.staged:
            return self.staged[key]
        return self.committed.get(key)

    def stage(self, key, value) -> None:
        self.staged[key] = value

    def commit(self) -> None:
        self.committed.update(self.staged)
        self.staged.clear()

    def rollback(self) -> None:
        self.staged.clear()

    def clear(self) -> None:
        self.committed.clear()
        self.staged.clear()

    def __len__(self) -> int:
        return len(self.committed)


class SeriesNormalizer:
    """Resolves (metric, label set) pairs to series ids.

    Example:
        normalizer = SeriesNormalizer()

        async with engine.begin() as conn:
            series_id = await normalizer.resolve(
                conn, "http_requests_total", MetricKind.COUNTER, "", {"method": "GET"}
            )
        normalizer.commit()
    """

    def __init__(self) -> None:
        self._metrics = _StagedCache()
        self._label_values = _StagedCache()
        self._series = _StagedCache()

    async def resolve(
        self,
        conn: AsyncConnection,
        metric_name: str,
        kind: MetricKind,
        help: str,
        labels: Mapping[str, str],
    ) -> int:
        """Resolve a sample's series, creating rows for unseen combinations.

        Args:
            conn: Connection inside the writer's transaction
            metric_name: Sample metric name
            kind: Family type, stored only when the metric is new
            help: Family help text, stored only when the metric is new
            labels: Label names to values; order is irrelevant

        Returns:
            int: Series id
        """
        metric_id = await self.resolve_metric(conn, metric_name, kind, help)

        label_value_ids = frozenset(
            [await self.resolve_label_value(conn, k, v) for k, v in labels.items()]
        )

        key: SeriesKey = (metric_id, label_value_ids)
        series_id = self._series.get(key)
        if series_id is not None:
            return series_id

        series_id = await self.find_series(conn, metric_id, label_value_ids)
        if series_id is None:
            series_id = await self.create_series(conn, metric_id, label_value_ids)
            logger.debug(
                "series_created",
                metric=metric_name,
                series_id=series_id,
                labels=dict(labels),
            )

        self._series.stage(key, series_id)
        return series_id

    async def resolve_metric(
        self,
        conn: AsyncConnection,
        name: str,
        kind: MetricKind,
        help: str,
    ) -> int:
        """Get or create the metric row; the first observed type and help win."""
        metric_id = self._metrics.get(name)
        if metric_id is not None:
            return metric_id

        result = await conn.execute(select(metric.c.id).where(metric.c.name == name))
        metric_id = result.scalar_one_or_none()
        if metric_id is None:
            kind_name = MetricKind(kind).value
            result = await conn.execute(
                insert(metric).values(name=name, type=kind_name, help=help)
            )
            metric_id = result.inserted_primary_key[0]
            logger.debug("metric_created", metric=name, metric_id=metric_id, kind=kind_name)

        self._metrics.stage(name, metric_id)
        return metric_id

    async def resolve_label_value(self, conn: AsyncConnection, label: str, value: str) -> int:
        """Get or create the pooled row for one (label, value) pair."""
        key = (label, value)
        label_value_id = self._label_values.get(key)
        if label_value_id is not None:
            return label_value_id

        result = await conn.execute(
            select(label_value.c.id)
            .where(label_value.c.label == label, label_value.c.value == value)
            .order_by(label_value.c.id)
            .limit(1)
        )
        label_value_id = result.scalar_one_or_none()
        if label_value_id is None:
            result = await conn.execute(insert(label_value).values(label=label, value=value))
            label_value_id = result.inserted_primary_key[0]

        self._label_values.stage(key, label_value_id)
        return label_value_id

    async def find_series(
        self,
        conn: AsyncConnection,
        metric_id: int,
        label_value_ids: frozenset[int],
    ) -> int | None:
        """Find the series of a metric whose label set is exactly the given ids.

        A series carrying extra labels, or missing some, does not match.
        """
        member_count = (
            select(func.count())
            .select_from(label_set)
            .where(label_set.c.series_id == series.c.id)
            .scalar_subquery()
        )
        stmt = select(series.c.id).where(
            series.c.metric_id == metric_id,
            member_count == len(label_value_ids),
        )

        if label_value_ids:
            matched_count = (
                select(func.count())
                .select_from(label_set)
                .where(
                    label_set.c.series_id == series.c.id,
                    label_set.c.label_value_id.in_(sorted(label_value_ids)),
                )
                .scalar_subquery()
            )
            stmt = stmt.where(matched_count == len(label_value_ids))

        result = await conn.execute(stmt.order_by(series.c.id).limit(1))
        return result.scalar_one_or_none()

    async def create_series(
        self,
        conn: AsyncConnection,
        metric_id: int,
        label_value_ids: frozenset[int],
    ) -> int:
        """Insert a series and its label set membership."""
        result = await conn.execute(insert(series).values(metric_id=metric_id))
        series_id = result.inserted_primary_key[0]

        if label_value_ids:
            await conn.execute(
                insert(label_set),
                [
                    {"label_value_id": label_value_id, "series_id": series_id}
                    for label_value_id in sorted(label_value_ids)
                ],
            )

        return series_id

    def commit(self) -> None:
        """Promote ids staged by the committed transaction."""
        for cache in (self._metrics, self._label_values, self._series):
            cache.commit()

    def rollback(self) -> None:
        """Forget ids staged by the rolled-back transaction."""
        for cache in (self._metrics, self._label_values, self._series):
            cache.rollback()

    def clear(self) -> None:
        """Drop every cached id."""
        for cache in (self._metrics, self._label_values, self._series):
            cache.clear()

    @property
    def cache_sizes(self) -> dict[str, int]:
        """Number of committed cache entries per kind."""
        return {
            "metrics": len(self._metrics),
            "label_values": len(self._label_values),
            "series": len(self._series),
        }
