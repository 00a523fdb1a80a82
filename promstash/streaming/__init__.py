"""Streaming scrape pipeline for promstash.

This module provides the scrape sources, the bounded drop-oldest buffer and
the producer/consumer pipeline feeding the storage writer.
"""

from promstash.streaming.buffer_manager import BufferMetrics, ScrapeBuffer
from promstash.streaming.ingestor import PipelineSummary, ScrapePipeline
from promstash.streaming.sources import (
    OneShotSource,
    PeriodicSource,
    ScrapeSource,
    SourceMetrics,
    create_source,
)

__all__ = [
    "BufferMetrics",
    "OneShotSource",
    "PeriodicSource",
    "PipelineSummary",
    "ScrapeBuffer",
    "ScrapePipeline",
    "ScrapeSource",
    "SourceMetrics",
    "create_source",
]
