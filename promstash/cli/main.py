"""Main CLI entry point for promstash."""

import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from promstash import __version__
from promstash.config import Settings, get_settings
from promstash.exceptions import PromStashError
from promstash.logging_config import setup_logging

app = typer.Typer(
    name="promstash",
    help="promstash - Scrape Prometheus metrics into a normalized SQLite store",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True,
)

console = Console()
console_err = Console(stderr=True)


class CLIState:
    """Global CLI state."""

    output_format: str = "table"
    verbose: bool = False
    quiet: bool = False
    settings: Optional[Settings] = None


state = CLIState()


def version_callback(value: bool) -> None:
    """Callback for --version flag."""
    if value:
        console.print(f"promstash version: {__version__}")
        console.print(f"Python: {sys.version.split()[0]}")
        raise typer.Exit(0)


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version information and exit",
        callback=version_callback,
        is_eager=True,
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Configuration file path",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    output: str = typer.Option(
        "table",
        "--output",
        "-o",
        help="Output format: table, json",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Suppress non-error output",
    ),
) -> None:
    """
    promstash - Prometheus scrape collector

    Scrapes a Prometheus endpoint (or reads exposition text once from a file
    or stdin) and stores samples in SQLite without duplicating metric
    metadata or label sets.
    """
    state.output_format = output
    state.verbose = verbose
    state.quiet = quiet

    if output not in ["table", "json"]:
        console_err.print(f"[red]Error:[/red] Invalid output format: {output}")
        console_err.print("Valid formats: table, json")
        raise typer.Exit(1)

    state.settings = get_settings(config_path=config, reload=True)

    setup_logging("DEBUG" if verbose else None, quiet=quiet)

    ctx.obj = state


def handle_error(error: Exception) -> None:
    """Handle CLI errors with user-friendly messages.

    Args:
        error: Exception to handle
    """
    if isinstance(error, PromStashError):
        console_err.print(f"\n[red]Error:[/red] {error.message}")

        if state.verbose and error.context:
            console_err.print("\n[yellow]Context:[/yellow]")
            for key, value in error.context.items():
                console_err.print(f"  {key}: {value}")
    else:
        console_err.print(f"\n[red]Unexpected Error:[/red] {str(error)}")

        if state.verbose:
            import traceback

            console_err.print("\n[yellow]Traceback:[/yellow]")
            console_err.print(traceback.format_exc())

    raise typer.Exit(1)


from promstash.cli import db, scrape  # noqa: E402

app.command(name="scrape", help="Scrape a target into a SQLite database")(scrape.scrape)
app.add_typer(db.app, name="db", help="Database management commands")


def main_cli() -> None:
    """Entry point for CLI application with error handling."""
    try:
        app()
    except PromStashError as e:
        handle_error(e)
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(1)
    except Exception as e:
        handle_error(e)


if __name__ == "__main__":
    main_cli()
