"""Prometheus text exposition format support.

This module provides the typed scrape model and the parser that turns
exposition text into metric families.
"""

from promstash.exposition.models import MetricFamily, MetricKind, Sample, ScrapeResult
from promstash.exposition.parser import ExpositionParser, parse_exposition

__all__ = [
    "ExpositionParser",
    "MetricFamily",
    "MetricKind",
    "Sample",
    "ScrapeResult",
    "parse_exposition",
]
