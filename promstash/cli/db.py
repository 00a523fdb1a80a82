"""Database management CLI commands."""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from promstash.cli.main import state
from promstash.cli.output import print_counts, print_json
from promstash.config import get_settings
from promstash.storage import StorageWriter, create_engine

console = Console()

app = typer.Typer(help="Database management commands", no_args_is_help=True)


def _resolve_output(output: Optional[Path]) -> Path:
    return output or get_settings().output


@app.command("init")
def init_cmd(
    output: Optional[Path] = typer.Argument(
        None, help="SQLite database file (default: from config)"
    ),
) -> None:
    """Create the metric schema; existing tables and data are kept."""
    path = _resolve_output(output)

    async def _init():
        writer = StorageWriter(create_engine(path))
        try:
            await writer.initialize()
        finally:
            await writer.close()

    try:
        asyncio.run(_init())
    except Exception as e:
        console.print(f"[bold red]✗[/bold red] Schema initialization failed: {e}")
        raise typer.Exit(1)

    console.print(f"[bold green]✓[/bold green] Schema ready in {path}")


@app.command("stats")
def stats_cmd(
    output: Optional[Path] = typer.Argument(
        None, help="SQLite database file (default: from config)"
    ),
) -> None:
    """Show row counts per table."""
    path = _resolve_output(output)
    if not path.exists():
        console.print(f"[bold red]✗[/bold red] Database not found: {path}")
        raise typer.Exit(1)

    async def _stats():
        writer = StorageWriter(create_engine(path))
        try:
            await writer.initialize()
            return await writer.stats()
        finally:
            await writer.close()

    try:
        counts = asyncio.run(_stats())
    except Exception as e:
        console.print(f"[bold red]✗[/bold red] Failed to read statistics: {e}")
        raise typer.Exit(1)

    if state.output_format == "json":
        print_json(counts)
        return

    print_counts(counts, title=f"Rows in {path}")
