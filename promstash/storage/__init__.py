"""Relational storage for scraped metrics.

This module provides the normalized schema, the series normalizer and the
transactional writer that persists scrapes into SQLite.
"""

from promstash.storage.engine import create_engine, database_url
from promstash.storage.normalizer import SeriesNormalizer
from promstash.storage.schema import init_schema, metadata
from promstash.storage.writer import StorageWriter, WriterMetrics

__all__ = [
    "SeriesNormalizer",
    "StorageWriter",
    "WriterMetrics",
    "create_engine",
    "database_url",
    "init_schema",
    "metadata",
]
