"""Relational schema for scraped metrics.

Metric metadata and label combinations are stored once and shared by all
samples:

- ``metric``: one row per metric name (type and help from first sight)
- ``label_value``: pool of distinct (label, value) pairs
- ``series``: one row per distinct label set of a metric
- ``label_set``: membership of label values in a series
- ``sample``: appended (timestamp, value) points per series

Timestamps are milliseconds since the Unix epoch. SQLite has no NaN, so a
NaN sample value is stored as NULL.
"""

from sqlalchemy import (
    BigInteger,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    text,
)
from sqlalchemy.ext.asyncio import AsyncConnection

metadata = MetaData()

metric = Table(
    "metric",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String, unique=True, nullable=False),
    Column("type", String, nullable=False),
    Column("help", String, nullable=False),
    sqlite_autoincrement=True,
)

label_value = Table(
    "label_value",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("label", String, nullable=False),
    Column("value", String, nullable=False),
    Index("ix_label_value_label_value", "label", "value"),
    sqlite_autoincrement=True,
)

series = Table(
    "series",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "metric_id",
        Integer,
        ForeignKey("metric.id", ondelete="CASCADE"),
        nullable=False,
    ),
    sqlite_autoincrement=True,
)

label_set = Table(
    "label_set",
    metadata,
    Column("label_value_id", Integer, ForeignKey("label_value.id"), nullable=False),
    Column(
        "series_id",
        Integer,
        ForeignKey("series.id", ondelete="CASCADE"),
        nullable=False,
    ),
    PrimaryKeyConstraint("label_value_id", "series_id"),
    Index("ix_label_set_series_id", "series_id"),
)

sample = Table(
    "sample",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "series_id",
        Integer,
        ForeignKey("series.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("timestamp", BigInteger, nullable=False),
    Column("value", Float, nullable=True),
    Index("ix_sample_series_id_timestamp", "series_id", "timestamp"),
)

VIEWS = (
    """
    CREATE VIEW IF NOT EXISTS label_set_view AS
      SELECT ls.series_id,
             GROUP_CONCAT(lv.label || '="' || lv.value || '"', ', ') AS label_set
      FROM label_set ls
      INNER JOIN label_value lv ON lv.id = ls.label_value_id
      GROUP BY ls.series_id
    """,
    """
    CREATE VIEW IF NOT EXISTS series_view AS
      SELECT s.id, m.name || '{' || COALESCE(ls.label_set, '') || '}' AS name
      FROM series s
      INNER JOIN metric m ON m.id = s.metric_id
      LEFT JOIN label_set_view ls ON ls.series_id = s.id
    """,
)

TABLES = (metric, label_value, series, label_set, sample)


async def init_schema(conn: AsyncConnection) -> None:
    """Create missing tables, indexes and views.

    Existing objects are left untouched, so this is safe to run against a
    database that already holds data.

    Args:
        conn: Connection inside an open transaction
    """
    await conn.run_sync(metadata.create_all, checkfirst=True)
    for statement in VIEWS:
        await conn.execute(text(statement))
