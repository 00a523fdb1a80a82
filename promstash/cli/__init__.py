"""CLI module for promstash."""

from promstash.cli.main import app, main_cli
from promstash.cli import db, scrape

__all__ = [
    "app",
    "main_cli",
    "db",
    "scrape",
]
