"""Tests for scrape sources."""

import asyncio
import io

import httpx
import pytest

from promstash.exceptions import ConfigurationError
from promstash.streaming import OneShotSource, PeriodicSource, create_source
from promstash.streaming.sources import build_const_labels, default_instance

PAYLOAD = b'# TYPE up gauge\nup{zone="a"} 1\n'
URL = "http://exporter.local:9100/metrics"


def mock_client(responses):
    """HTTP client answering each request with the next queued response."""
    queue = list(responses)
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        response = queue.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client, requests


async def collect(source, stop=None):
    """Drain a source into a list."""
    stop = stop or asyncio.Event()
    return [result async for result in source.scrapes(stop)]


class TestOneShotSource:
    """Test one-shot sources."""

    async def test_single_scrape(self):
        """Test a stream yields exactly one parsed scrape."""
        source = OneShotSource(io.BytesIO(PAYLOAD), const_labels={"job": "batch"})

        results = await collect(source)

        assert len(results) == 1
        assert results[0].source == "-"
        assert results[0].sample_count == 1
        assert results[0].families[0].samples[0].labels == {"job": "batch", "zone": "a"}
        assert source.metrics.attempted == 1
        assert source.metrics.succeeded == 1

    async def test_malformed_payload(self):
        """Test a malformed payload yields nothing and counts a failure."""
        source = OneShotSource(io.BytesIO(b"up not-a-number\n"))

        results = await collect(source)

        assert results == []
        assert source.metrics.failed == 1
        assert source.metrics.succeeded == 0

    async def test_closes_owned_stream(self):
        """Test the stream is closed when the source owns it."""
        stream = io.BytesIO(PAYLOAD)
        source = OneShotSource(stream, close_stream=True)

        await collect(source)

        assert stream.closed

    async def test_stopped_before_start(self):
        """Test nothing is read once stop is already set."""
        stop = asyncio.Event()
        stop.set()
        source = OneShotSource(io.BytesIO(PAYLOAD))

        assert await collect(source, stop) == []
        assert source.metrics.attempted == 0


class TestPeriodicSource:
    """Test periodic URL sources."""

    async def test_scrapes_until_limit(self):
        """Test each tick fetches the URL and yields one scrape."""
        client, requests = mock_client([httpx.Response(200, content=PAYLOAD)] * 3)
        source = PeriodicSource(URL, 0.01, client=client, max_scrapes=3)

        results = await collect(source)

        assert len(results) == 3
        assert len(requests) == 3
        assert all(r.source == URL for r in results)
        assert results[0].collected_at <= results[1].collected_at <= results[2].collected_at
        assert source.metrics.attempted == 3
        assert source.metrics.succeeded == 3
        await client.aclose()

    async def test_failed_tick_is_skipped(self):
        """Test an error status skips one tick and the loop continues."""
        client, _ = mock_client(
            [
                httpx.Response(200, content=PAYLOAD),
                httpx.Response(503),
                httpx.Response(200, content=PAYLOAD),
            ]
        )
        source = PeriodicSource(URL, 0.01, client=client, max_scrapes=3)

        results = await collect(source)

        assert len(results) == 2
        assert source.metrics.attempted == 3
        assert source.metrics.failed == 1
        assert source.metrics.succeeded == 2
        await client.aclose()

    async def test_transport_errors_are_skipped(self):
        """Test timeouts and connection errors count as failed ticks."""
        request = httpx.Request("GET", URL)
        client, _ = mock_client(
            [
                httpx.ReadTimeout("timed out", request=request),
                httpx.ConnectError("refused", request=request),
                httpx.Response(200, content=PAYLOAD),
            ]
        )
        source = PeriodicSource(URL, 0.01, client=client, max_scrapes=3)

        results = await collect(source)

        assert len(results) == 1
        assert source.metrics.failed == 2
        await client.aclose()

    async def test_parse_failure_is_skipped(self):
        """Test a malformed body fails only its own tick."""
        client, _ = mock_client(
            [
                httpx.Response(200, content=b"up{ 1\n"),
                httpx.Response(200, content=PAYLOAD),
            ]
        )
        source = PeriodicSource(URL, 0.01, client=client, max_scrapes=2)

        results = await collect(source)

        assert len(results) == 1
        assert source.metrics.failed == 1
        await client.aclose()

    async def test_stop_ends_loop(self):
        """Test setting stop ends the loop during the interval wait."""
        client, _ = mock_client([httpx.Response(200, content=PAYLOAD)] * 5)
        source = PeriodicSource(URL, 10.0, client=client)
        stop = asyncio.Event()
        results = []

        async def consume():
            async for result in source.scrapes(stop):
                results.append(result)
                stop.set()

        await asyncio.wait_for(consume(), timeout=2.0)

        assert len(results) == 1
        await client.aclose()

    def test_invalid_interval(self):
        """Test a non-positive interval is rejected."""
        with pytest.raises(ValueError):
            PeriodicSource(URL, 0)

    def test_timeout_defaults_to_interval(self):
        """Test the fetch timeout falls back to the interval."""
        assert PeriodicSource(URL, 7.5).timeout_seconds == 7.5
        assert PeriodicSource(URL, 7.5, timeout_seconds=2.0).timeout_seconds == 2.0


class TestCreateSource:
    """Test source selection from a target."""

    def test_url_target(self):
        """Test URLs produce periodic sources labelled with host:port."""
        source = create_source(URL, interval_seconds=2.0, job="node", max_scrapes=4)

        assert isinstance(source, PeriodicSource)
        assert source.interval_seconds == 2.0
        assert source.max_scrapes == 4
        assert source.parser.const_labels == {"instance": "exporter.local:9100", "job": "node"}

    def test_stdin_target(self):
        """Test "-" reads from the given stdin stream."""
        stream = io.BytesIO(PAYLOAD)

        source = create_source("-", stdin=stream)

        assert isinstance(source, OneShotSource)
        assert source.stream is stream
        assert source.name == "-"
        assert source.parser.const_labels == {}

    def test_file_target(self, tmp_path):
        """Test an existing file produces a one-shot source that owns the stream."""
        path = tmp_path / "metrics.prom"
        path.write_bytes(PAYLOAD)

        source = create_source(str(path), instance="batch-1")

        assert isinstance(source, OneShotSource)
        assert source.close_stream
        assert source.parser.const_labels == {"instance": "batch-1"}
        source.stream.close()

    def test_missing_file_target(self, tmp_path):
        """Test an unknown target is a configuration error."""
        with pytest.raises(ConfigurationError):
            create_source(str(tmp_path / "nope.prom"))


class TestConstLabels:
    """Test constant label derivation."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("http://host:9100/metrics", "host:9100"),
            ("http://host/metrics", "host:80"),
            ("https://host/metrics", "host:443"),
        ],
    )
    def test_default_instance(self, url, expected):
        """Test the default instance label uses the URL's host and port."""
        assert default_instance(url) == expected

    def test_explicit_instance_wins(self):
        """Test an explicit instance label overrides host:port."""
        assert build_const_labels(URL, instance="custom") == {"instance": "custom"}

    def test_file_target_without_labels(self):
        """Test files get no labels unless asked for."""
        assert build_const_labels("metrics.prom") == {}
