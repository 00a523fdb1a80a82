"""Tests for the scrape CLI command."""

import contextlib
import socket
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from promstash.cli.main import app
from promstash.streaming import PeriodicSource, PipelineSummary

runner = CliRunner()

URL = "http://exporter.local:9100/metrics"


@pytest.fixture
def prom_file(tmp_path, exposition_text):
    """Exposition text saved to a file."""
    path = tmp_path / "metrics.prom"
    path.write_text(exposition_text)
    return path


class TestScrapeOneShot:
    """Tests for scraping files and stdin."""

    def test_scrape_file(self, tmp_path, prom_file):
        """Test a file is read once and stored."""
        db_path = tmp_path / "metrics.db"

        result = runner.invoke(app, ["scrape", str(prom_file), str(db_path)])

        assert result.exit_code == 0, result.output
        assert "Scrape Summary" in result.output
        assert "Samples Written" in result.output
        assert "Scrape completed" in result.output
        assert db_path.exists()

    def test_scrape_file_json_output(self, tmp_path, prom_file):
        """Test the summary is printed as JSON."""
        db_path = tmp_path / "metrics.db"

        result = runner.invoke(app, ["--output", "json", "scrape", str(prom_file), str(db_path)])

        assert result.exit_code == 0, result.output
        assert '"samples_written": 2' in result.output
        assert '"scrapes_written": 1' in result.output

    def test_scrape_stdin(self, tmp_path, exposition_text):
        """Test "-" reads the payload from stdin."""
        db_path = tmp_path / "metrics.db"

        result = runner.invoke(
            app,
            ["--output", "json", "scrape", "-", str(db_path)],
            input=exposition_text,
        )

        assert result.exit_code == 0, result.output
        assert '"samples_written": 2' in result.output

    def test_scrape_twice_appends(self, tmp_path, prom_file):
        """Test a second run against the same store adds samples only."""
        db_path = tmp_path / "metrics.db"

        for _ in range(2):
            result = runner.invoke(app, ["scrape", str(prom_file), str(db_path)])
            assert result.exit_code == 0, result.output

        result = runner.invoke(app, ["--output", "json", "db", "stats", str(db_path)])

        assert result.exit_code == 0, result.output
        assert '"sample": 4' in result.output
        assert '"series": 2' in result.output
        assert '"metric": 1' in result.output

    def test_malformed_file(self, tmp_path):
        """Test a malformed payload stores nothing and fails."""
        bad = tmp_path / "bad.prom"
        bad.write_text("up{ 1\n")

        result = runner.invoke(app, ["scrape", str(bad), str(tmp_path / "metrics.db")])

        assert result.exit_code == 1
        assert "Nothing was stored" in result.output

    def test_missing_target(self, tmp_path):
        """Test an unknown target is reported as an error."""
        result = runner.invoke(
            app, ["scrape", str(tmp_path / "missing.prom"), str(tmp_path / "metrics.db")]
        )

        assert result.exit_code == 1
        assert "neither a URL nor a readable file" in result.output

    def test_no_target(self):
        """Test running without any target fails."""
        result = runner.invoke(app, ["scrape"])

        assert result.exit_code == 1
        assert "No scrape target given" in result.output


class TestScrapeUrl:
    """Tests for periodic URL scraping (pipeline mocked)."""

    def _invoke(self, args, summary=None):
        with (
            patch("promstash.cli.scrape.asyncio.run") as mock_run,
            patch("promstash.cli.scrape.run_pipeline", new=MagicMock()) as mock_pipeline,
        ):
            mock_run.return_value = summary or PipelineSummary(
                scrapes_attempted=3,
                scrapes_succeeded=3,
                scrapes_written=3,
                samples_written=6,
                duration_seconds=10.2,
            )
            result = runner.invoke(app, args)
        return result, mock_pipeline

    def test_scrape_url_options(self, tmp_path):
        """Test interval, buffer and count reach the pipeline."""
        result, mock_pipeline = self._invoke(
            [
                "scrape",
                URL,
                str(tmp_path / "metrics.db"),
                "--interval",
                "2",
                "--buffer",
                "7",
                "--count",
                "4",
                "--job",
                "node",
            ]
        )

        assert result.exit_code == 0, result.output
        assert "Interval: 2.0s, Buffer: 7" in result.output
        assert "Scrape completed" in result.output

        args, kwargs = mock_pipeline.call_args
        source = args[0]
        assert isinstance(source, PeriodicSource)
        assert source.interval_seconds == 2.0
        assert source.max_scrapes == 4
        assert source.parser.const_labels == {"instance": "exporter.local:9100", "job": "node"}
        assert args[2] == 7
        assert kwargs["listen"] is False

    def test_scrape_url_listen(self, tmp_path):
        """Test --listen enables the status endpoint."""
        result, mock_pipeline = self._invoke(
            ["scrape", URL, str(tmp_path / "metrics.db"), "--listen", "--port", "9999"]
        )

        assert result.exit_code == 0, result.output
        assert "/-/stats" in result.output
        kwargs = mock_pipeline.call_args[1]
        assert kwargs["listen"] is True
        assert kwargs["port"] == 9999

    def test_settings_from_environment(self, tmp_path, monkeypatch):
        """Test PROMSTASH_* variables provide defaults."""
        monkeypatch.setenv("PROMSTASH_TARGET", URL)
        monkeypatch.setenv("PROMSTASH_BUFFER_CAPACITY", "9")
        monkeypatch.setenv("PROMSTASH_OUTPUT", str(tmp_path / "env.db"))

        result, mock_pipeline = self._invoke(["scrape"])

        assert result.exit_code == 0, result.output
        args = mock_pipeline.call_args[0]
        assert args[0].url == URL
        assert args[1] == tmp_path / "env.db"
        assert args[2] == 9

    def test_failures_reported(self, tmp_path):
        """Test a run with lost scrapes warns instead of claiming success."""
        summary = PipelineSummary(
            scrapes_attempted=5,
            scrapes_succeeded=4,
            scrapes_failed=1,
            scrapes_dropped=2,
            scrapes_written=2,
            samples_written=4,
        )

        result, _ = self._invoke(["scrape", URL, str(tmp_path / "metrics.db")], summary)

        assert result.exit_code == 0, result.output
        assert "Scrapes Dropped" in result.output
        assert "Some scrapes were not stored" in result.output
        assert "Scrape completed" not in result.output

    def test_timeout_option(self, tmp_path):
        """Test --timeout bounds each fetch independently of the interval."""
        _, mock_pipeline = self._invoke(
            ["scrape", URL, str(tmp_path / "metrics.db"), "--interval", "10", "--timeout", "2.5"]
        )

        assert mock_pipeline.call_args[0][0].timeout_seconds == 2.5

    def test_timeout_defaults_to_interval(self, tmp_path):
        """Test each fetch may take up to the interval without --timeout."""
        _, mock_pipeline = self._invoke(["scrape", URL, str(tmp_path / "metrics.db"), "-i", "4"])

        assert mock_pipeline.call_args[0][0].timeout_seconds == 4.0


class TestScrapeListen:
    """Tests for the status endpoint bind."""

    def test_busy_port(self, tmp_path):
        """Test a port in use fails the command before anything is scraped."""
        with contextlib.closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen()
            port = busy.getsockname()[1]

            with patch("promstash.streaming.sources.PeriodicSource.scrapes") as mock_scrapes:
                result = runner.invoke(
                    app,
                    [
                        "scrape",
                        URL,
                        str(tmp_path / "metrics.db"),
                        "--listen",
                        "--host",
                        "127.0.0.1",
                        "--port",
                        str(port),
                    ],
                )

        assert result.exit_code == 1
        assert "Cannot listen" in result.output
        mock_scrapes.assert_not_called()


class TestMainCallback:
    """Tests for global options."""

    def test_version(self):
        """Test --version prints the version."""
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert "promstash version" in result.output

    def test_invalid_output_format(self, tmp_path, prom_file):
        """Test unknown output formats are rejected."""
        result = runner.invoke(app, ["--output", "xml", "scrape", str(prom_file)])

        assert result.exit_code == 1
        assert "Invalid output format" in result.output
