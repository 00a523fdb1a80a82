"""Collector metrics in the Prometheus exposition format.

``GET /metrics`` publishes promstash's own counters so a Prometheus server
can scrape the scraper. Values are read from the pipeline on every
collection; nothing is double-counted in a separate store.
"""

from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily
from prometheus_client.registry import Collector

from promstash.streaming.ingestor import ScrapePipeline

PREFIX = "promstash_"

# PipelineSummary field -> help text
_COUNTERS = {
    "scrapes_attempted": "Scrapes attempted",
    "scrapes_succeeded": "Scrapes fetched and parsed",
    "scrapes_failed": "Scrapes that failed to fetch or parse",
    "scrapes_dropped": "Scrapes dropped from a full buffer",
    "scrapes_written": "Scrapes committed to the store",
    "scrapes_write_failed": "Scrapes rolled back by the store",
    "samples_written": "Samples committed to the store",
    "samples_lost": "Samples lost to rolled-back writes",
}

router = APIRouter(tags=["metrics"])


class PipelineCollector(Collector):
    """Reports the counters of one scrape pipeline."""

    def __init__(self, pipeline: ScrapePipeline):
        self.pipeline = pipeline

    def collect(self):
        summary = self.pipeline.summary().to_dict()
        for field, documentation in _COUNTERS.items():
            yield CounterMetricFamily(
                f"{PREFIX}{field}", documentation, value=summary[field]
            )

        yield GaugeMetricFamily(
            f"{PREFIX}buffer_depth",
            "Scrapes waiting in the buffer",
            value=self.pipeline.buffer.depth,
        )
        yield GaugeMetricFamily(
            f"{PREFIX}buffer_capacity",
            "Scrapes the buffer holds before dropping",
            value=self.pipeline.buffer.capacity,
        )
        yield GaugeMetricFamily(
            f"{PREFIX}pipeline_running",
            "1 while the pipeline is scraping",
            value=1 if self.pipeline.is_running else 0,
        )


def create_registry(pipeline: ScrapePipeline) -> CollectorRegistry:
    """Dedicated registry holding only the pipeline's metrics."""
    registry = CollectorRegistry()
    registry.register(PipelineCollector(pipeline))
    return registry


@router.get("/metrics", summary="Collector metrics")
async def metrics(request: Request) -> Response:
    """Pipeline counters in the text exposition format."""
    return Response(
        content=generate_latest(request.app.state.registry),
        media_type=CONTENT_TYPE_LATEST,
    )
