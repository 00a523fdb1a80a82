"""Logging configuration for promstash."""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from promstash.config import get_settings


def add_timestamp(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add timestamp to log entry."""
    from datetime import datetime, timezone

    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def _resolve_level(name: str, quiet: bool) -> int:
    level = getattr(logging, name.upper())
    return max(level, logging.WARNING) if quiet else level


def setup_logging(level: str | None = None, quiet: bool = False) -> None:
    """Configure structured logging.

    Pipeline code binds the scrape target with
    ``structlog.contextvars.bound_contextvars``, so every event logged while a
    pipeline runs carries it.

    Args:
        level: Optional level overriding the configured one
        quiet: Only log warnings and errors (``--quiet``)
    """
    settings = get_settings()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_timestamp,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=_resolve_level(level or settings.log_level, quiet),
        force=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)
