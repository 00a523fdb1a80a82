"""Scrape command for promstash.

This module runs the scrape pipeline from the command line: a URL is
scraped on an interval until interrupted, while a file or stdin is read
once.
"""

import asyncio
import contextlib
import signal
from pathlib import Path
from typing import Optional

import typer

from promstash.api.app import create_server
from promstash.cli.main import handle_error, state
from promstash.cli.output import (
    print_dict,
    print_error,
    print_info,
    print_json,
    print_success,
    print_warning,
)
from promstash.config import get_settings
from promstash.exceptions import ConfigurationError, PromStashError
from promstash.logging_config import get_logger
from promstash.storage import StorageWriter, create_engine
from promstash.streaming import (
    PipelineSummary,
    ScrapeBuffer,
    ScrapePipeline,
    ScrapeSource,
    create_source,
)
from promstash.streaming.sources import OneShotSource

logger = get_logger(__name__)


def _format_duration(seconds: float) -> str:
    """Format duration in seconds as human-readable string."""
    if seconds < 1:
        return f"{seconds * 1000:.2f}ms"
    elif seconds < 60:
        return f"{seconds:.2f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = seconds % 60
        return f"{minutes}m {secs:.1f}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes}m"


async def run_pipeline(
    source: ScrapeSource,
    output: Path,
    buffer_capacity: int,
    listen: bool = False,
    host: str = "127.0.0.1",
    port: int = 8080,
) -> PipelineSummary:
    """Run a pipeline until the source finishes or a stop signal arrives.

    SIGINT/SIGTERM stop scraping; buffered scrapes are still written and the
    current transaction always completes.

    Raises:
        StorageError: If the store cannot be opened or initialized
        ConfigurationError: If the status address cannot be bound
    """
    writer = StorageWriter(create_engine(output))
    sock = None
    try:
        await writer.initialize()

        pipeline = ScrapePipeline(source, ScrapeBuffer(buffer_capacity), writer)
        server = create_server(pipeline, host, port) if listen else None
        if server is not None:
            sock = server.bind()

        def _on_signal() -> None:
            pipeline.stop()
            if server is not None:
                server.should_exit = True

        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
                loop.add_signal_handler(sig, _on_signal)
                installed.append(sig)

        server_task = (
            asyncio.create_task(server.serve(sockets=[sock])) if server is not None else None
        )
        try:
            return await pipeline.run()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            if server is not None and server_task is not None:
                server.should_exit = True
                await server_task
    finally:
        if sock is not None:
            sock.close()
        await writer.close()


def scrape(
    target: Optional[str] = typer.Argument(
        None,
        help="URL to scrape, a file path, or '-' for stdin (default: from config)",
    ),
    output: Optional[Path] = typer.Argument(
        None,
        help="SQLite database file receiving the samples (default: from config)",
    ),
    interval: Optional[float] = typer.Option(
        None,
        "--interval",
        "-i",
        help="Seconds between scrapes of a URL",
        min=0.01,
    ),
    buffer: Optional[int] = typer.Option(
        None,
        "--buffer",
        "-b",
        help="Scrapes held in memory before the oldest is dropped",
        min=1,
    ),
    job: Optional[str] = typer.Option(None, "--job", help="job label added to every sample"),
    instance: Optional[str] = typer.Option(
        None,
        "--instance",
        help="instance label added to every sample (URLs default to host:port)",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Per-fetch timeout in seconds (default: the interval)",
        min=0.01,
    ),
    count: Optional[int] = typer.Option(
        None,
        "--count",
        "-n",
        help="Stop after this many scrapes of a URL",
        min=1,
    ),
    listen: Optional[bool] = typer.Option(
        None,
        "--listen/--no-listen",
        help="Serve /-/healthy, /-/ready, /-/stats and /metrics while scraping a URL",
    ),
    host: Optional[str] = typer.Option(None, "--host", help="Status endpoint bind address"),
    port: Optional[int] = typer.Option(
        None, "--port", "-p", help="Status endpoint port", min=1, max=65535
    ),
) -> None:
    """
    Scrape TARGET into the SQLite database OUTPUT.

    A URL is fetched every --interval seconds until interrupted (or --count
    scrapes). A file path or "-" (stdin) is read once. The database is
    created if missing and appended to otherwise.

    Examples:
        promstash scrape http://localhost:9100/metrics metrics.db

        promstash scrape http://localhost:9100/metrics metrics.db \\
            --interval 15 --buffer 20 --job node --listen

        curl -s http://localhost:9100/metrics | promstash scrape - metrics.db
    """
    try:
        settings = get_settings()

        target = target or settings.target
        if not target:
            raise ConfigurationError("No scrape target given (argument or PROMSTASH_TARGET)")
        output = output or settings.output
        buffer_capacity = buffer or settings.buffer_capacity
        interval_seconds = interval or settings.scrape_interval_seconds

        source = create_source(
            target,
            interval_seconds=interval_seconds,
            timeout_seconds=timeout or settings.scrape_timeout_seconds,
            job=job if job is not None else settings.job,
            instance=instance if instance is not None else settings.instance,
            max_scrapes=count,
        )
        one_shot = isinstance(source, OneShotSource)
        serve_status = (settings.status_enabled if listen is None else listen) and not one_shot

        if not state.quiet:
            print_info(f"Scraping {source.name}")
            print_info(f"   Output: {output}")
            if not one_shot:
                print_info(f"   Interval: {interval_seconds}s, Buffer: {buffer_capacity}")
            if serve_status:
                print_info(
                    f"   Status: http://{host or settings.status_host}:{port or settings.status_port}/-/stats"
                )

        summary = asyncio.run(
            run_pipeline(
                source,
                output,
                buffer_capacity,
                listen=serve_status,
                host=host or settings.status_host,
                port=port or settings.status_port,
            )
        )

    except typer.Exit:
        raise
    except PromStashError as e:
        handle_error(e)
        return

    if state.output_format == "json":
        print_json(summary.to_dict())
    elif not state.quiet:
        results = {
            "Duration": _format_duration(summary.duration_seconds),
            "Scrapes Attempted": f"{summary.scrapes_attempted:,}",
            "Scrapes Succeeded": f"{summary.scrapes_succeeded:,}",
            "Scrapes Failed": f"{summary.scrapes_failed:,}",
            "Scrapes Written": f"{summary.scrapes_written:,}",
            "Samples Written": f"{summary.samples_written:,}",
        }
        if summary.scrapes_dropped > 0:
            results["Scrapes Dropped"] = f"⚠️  {summary.scrapes_dropped}"
        if summary.scrapes_write_failed > 0:
            results["Write Failures"] = (
                f"⚠️  {summary.scrapes_write_failed} ({summary.samples_lost:,} samples lost)"
            )
        print_dict(results, title="Scrape Summary")

    if summary.scrapes_written == 0 and one_shot:
        print_error("Nothing was stored")
        raise typer.Exit(1)

    if summary.scrapes_dropped or summary.scrapes_failed or summary.scrapes_write_failed:
        print_warning("Some scrapes were not stored; see the log for details")
    elif not state.quiet:
        print_success("Scrape completed")

    logger.info("scrape_command_finished", target=target, output=str(output))
