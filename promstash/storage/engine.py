"""Database engine configuration for the metric store."""

from pathlib import Path

import structlog
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from promstash.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)


def database_url(output: str | Path) -> str:
    """
    Build the SQLAlchemy URL for an output location.

    Args:
        output: Path to a SQLite file or a ``sqlite://`` URL

    Returns:
        URL using the aiosqlite driver

    Raises:
        ConfigurationError: If the URL names a non-SQLite or in-memory database
    """
    output = str(output)
    if "://" not in output:
        if output in ("", ":memory:"):
            raise ConfigurationError(
                "An in-memory store loses every scrape; give a file path", url=output
            )
        return f"sqlite+aiosqlite:///{Path(output).expanduser()}"

    try:
        url = make_url(output)
    except ArgumentError as e:
        raise ConfigurationError(f"Invalid database URL: {output}", url=output) from e

    if url.get_backend_name() != "sqlite":
        raise ConfigurationError(f"Unsupported database URL: {output}", url=output)
    if url.database in (None, "", ":memory:") or url.query.get("mode") == "memory":
        raise ConfigurationError(
            "An in-memory store loses every scrape; give a file path", url=output
        )

    return url.set(drivername="sqlite+aiosqlite").render_as_string(hide_password=False)


def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine(output: str | Path) -> AsyncEngine:
    """
    Create async SQLAlchemy engine for the metric store.

    Args:
        output: Path to a SQLite file or a ``sqlite://`` URL

    Returns:
        Configured async engine
    """
    db_url = database_url(output)

    db_path_str = db_url.split("///", 1)[-1] if "///" in db_url else None
    if db_path_str:
        db_dir = Path(db_path_str).parent
        if not db_dir.exists():
            logger.info("Creating database directory", path=str(db_dir))
            db_dir.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(
        db_url,
        echo=False,
        poolclass=NullPool,
        connect_args={
            "check_same_thread": False,
        },
    )
    event.listen(engine.sync_engine, "connect", _enable_foreign_keys)
    logger.debug("SQLite engine created", url=db_url)

    return engine
