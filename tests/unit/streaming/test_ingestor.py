"""Tests for the scrape pipeline."""

import asyncio
import io

import httpx
import pytest
import structlog

from promstash.storage import StorageWriter, create_engine
from promstash.streaming import (
    OneShotSource,
    PeriodicSource,
    PipelineSummary,
    ScrapeBuffer,
    ScrapePipeline,
)

URL = "http://exporter.local:9100/metrics"


@pytest.fixture
async def writer(tmp_path):
    """Initialized storage writer."""
    writer = StorageWriter(create_engine(tmp_path / "metrics.db"))
    await writer.initialize()
    yield writer
    await writer.close()


class TestScrapePipeline:
    """Test scrape pipeline."""

    async def test_one_shot_end_to_end(self, writer, exposition_text):
        """Test a one-shot payload ends up in the store."""
        source = OneShotSource(io.BytesIO(exposition_text.encode()))
        pipeline = ScrapePipeline(source, ScrapeBuffer(capacity=2), writer)

        summary = await pipeline.run()

        assert isinstance(summary, PipelineSummary)
        assert summary.scrapes_attempted == 1
        assert summary.scrapes_succeeded == 1
        assert summary.scrapes_written == 1
        assert summary.samples_written == 2
        assert summary.scrapes_dropped == 0
        assert not pipeline.is_running
        assert pipeline.buffer.is_closed

        stats = await writer.stats()
        assert stats["sample"] == 2
        assert stats["series"] == 2

    async def test_malformed_payload_stores_nothing(self, writer):
        """Test a malformed one-shot payload is counted and nothing is written."""
        source = OneShotSource(io.BytesIO(b'up{job="x" 1\n'))
        pipeline = ScrapePipeline(source, ScrapeBuffer(capacity=2), writer)

        summary = await pipeline.run()

        assert summary.scrapes_failed == 1
        assert summary.scrapes_written == 0
        assert (await writer.stats())["sample"] == 0

    async def test_periodic_run_with_limit(self, writer, exposition_text):
        """Test a periodic source feeds every tick through to the store."""
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, text=exposition_text)
            )
        )
        source = PeriodicSource(URL, 0.01, client=client, max_scrapes=3)
        pipeline = ScrapePipeline(source, ScrapeBuffer(capacity=5), writer)

        summary = await asyncio.wait_for(pipeline.run(), timeout=5.0)
        await client.aclose()

        assert summary.scrapes_attempted == 3
        assert summary.scrapes_written == 3
        assert summary.samples_written == 6
        stats = await writer.stats()
        assert stats["series"] == 2
        assert stats["sample"] == 6

    async def test_stop_drains_buffer(self, writer, exposition_text):
        """Test stopping halts the source and the buffered scrapes are written."""
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, text=exposition_text)
            )
        )
        source = PeriodicSource(URL, 10.0, client=client)
        pipeline = ScrapePipeline(source, ScrapeBuffer(capacity=5), writer)

        task = asyncio.create_task(pipeline.run())
        for _ in range(100):
            if source.metrics.succeeded:
                break
            await asyncio.sleep(0.01)
        assert pipeline.is_running

        pipeline.stop()
        summary = await asyncio.wait_for(task, timeout=5.0)
        await client.aclose()

        assert summary.scrapes_attempted == 1
        assert summary.scrapes_written == 1
        assert not pipeline.is_running

    async def test_summary_to_dict(self):
        """Test the summary serializes every counter."""
        summary = PipelineSummary(scrapes_attempted=2, samples_written=5)

        data = summary.to_dict()

        assert data["scrapes_attempted"] == 2
        assert data["samples_written"] == 5
        assert set(data) == {
            "scrapes_attempted",
            "scrapes_succeeded",
            "scrapes_failed",
            "scrapes_dropped",
            "scrapes_written",
            "scrapes_write_failed",
            "samples_written",
            "samples_lost",
            "duration_seconds",
        }

    async def test_log_context_bound_to_target(self, tmp_path, exposition_text):
        """Test the consumer runs with the target bound and it is unbound after."""
        seen = []

        class RecordingWriter(StorageWriter):
            async def write(self, result):
                seen.append(structlog.contextvars.get_contextvars().get("target"))
                return await super().write(result)

        writer = RecordingWriter(create_engine(tmp_path / "bound.db"))
        await writer.initialize()
        source = OneShotSource(io.BytesIO(exposition_text.encode()), name="node.prom")
        try:
            await ScrapePipeline(source, ScrapeBuffer(capacity=2), writer).run()
        finally:
            await writer.close()

        assert seen == ["node.prom"]
        assert "target" not in structlog.contextvars.get_contextvars()
