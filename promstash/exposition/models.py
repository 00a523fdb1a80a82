"""Typed representation of a parsed exposition scrape."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Mapping


class MetricKind(str, Enum):
    """Metric family type as declared by a ``# TYPE`` line."""

    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"
    SUMMARY = "summary"
    UNTYPED = "untyped"

    @property
    def sample_suffixes(self) -> tuple[str, ...]:
        """Suffixes of the sample names belonging to a family of this kind."""
        if self is MetricKind.HISTOGRAM:
            return ("_bucket", "_sum", "_count")
        if self is MetricKind.SUMMARY:
            return ("_sum", "_count")
        return ()


@dataclass(frozen=True)
class Sample:
    """One sample line.

    ``name`` is the line's own metric name; for histogram and summary
    families it carries the ``_bucket``/``_sum``/``_count`` suffix.
    """

    name: str
    labels: Mapping[str, str]
    value: float
    timestamp: datetime | None = None


@dataclass(frozen=True)
class MetricFamily:
    """A named group of samples sharing a type and help text."""

    name: str
    kind: MetricKind = MetricKind.UNTYPED
    help: str = ""
    samples: tuple[Sample, ...] = ()


@dataclass(frozen=True)
class ScrapeResult:
    """Unit placed on the scrape buffer: one parsed scrape."""

    collected_at: datetime
    families: tuple[MetricFamily, ...] = field(default_factory=tuple)
    source: str = "-"

    @property
    def sample_count(self) -> int:
        """Total number of samples across all families."""
        return sum(len(f.samples) for f in self.families)

    def timestamp_for(self, sample: Sample) -> datetime:
        """Sample timestamp, falling back to the scrape time."""
        return sample.timestamp if sample.timestamp is not None else self.collected_at
