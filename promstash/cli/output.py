"""Output formatting utilities for CLI."""

import json
from typing import Any

from rich.console import Console
from rich.table import Table

console = Console()
console_err = Console(stderr=True)


def print_json(data: Any, indent: int = 2) -> None:
    """Print data as JSON.

    Args:
        data: Data to print as JSON
        indent: Number of spaces for indentation
    """
    console.print_json(json.dumps(data, indent=indent, default=str))


def print_dict(data: dict[str, Any], title: str | None = None) -> None:
    """Print dictionary as a formatted table.

    Args:
        data: Dictionary to display
        title: Optional table title
    """
    table = Table(title=title, show_header=False)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")

    for key, value in data.items():
        table.add_row(key, str(value))

    console.print(table)


def print_success(message: str) -> None:
    """Print success message with checkmark."""
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    """Print error message with X mark."""
    console_err.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    """Print warning message with warning symbol."""
    console.print(f"[yellow]⚠[/yellow] {message}")


def print_info(message: str) -> None:
    """Print info message with info symbol."""
    console.print(f"[blue]ℹ[/blue] {message}")


def print_counts(counts: dict[str, int], title: str | None = None) -> None:
    """Print row counts per table with a total row.

    Args:
        counts: Table name to row count
        title: Optional table title
    """
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Table", style="cyan")
    table.add_column("Rows", style="white", justify="right")

    for name, rows in counts.items():
        table.add_row(name, f"{rows:,}")
    table.add_section()
    table.add_row("total", f"{sum(counts.values()):,}", style="bold")

    console.print(table)
