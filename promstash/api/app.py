"""Status endpoint served while a pipeline runs.

Routes:
- ``GET /-/healthy``: process is up
- ``GET /-/ready``: the store is initialized and the pipeline running
- ``GET /-/stats``: pipeline totals and buffer occupancy
- ``GET /metrics``: the same totals in the exposition format
"""

import contextlib
import socket
from datetime import datetime, timezone

import structlog
import uvicorn
from fastapi import APIRouter, FastAPI, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from promstash import __version__
from promstash.api.metrics import create_registry
from promstash.api.metrics import router as metrics_router
from promstash.exceptions import ConfigurationError
from promstash.streaming.ingestor import ScrapePipeline

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/-", tags=["status"])


class StatsResponse(BaseModel):
    """Pipeline statistics response model."""

    timestamp: datetime
    version: str
    source: str
    running: bool
    buffer_depth: int
    buffer_capacity: int
    scrapes_attempted: int
    scrapes_succeeded: int
    scrapes_failed: int
    scrapes_dropped: int
    scrapes_written: int
    scrapes_write_failed: int
    samples_written: int
    samples_lost: int
    duration_seconds: float


def _pipeline(request: Request) -> ScrapePipeline:
    return request.app.state.pipeline


@router.get("/healthy", response_class=PlainTextResponse, summary="Liveness check")
async def healthy() -> str:
    """Always OK while the process serves requests."""
    return "OK"


@router.get("/ready", response_class=PlainTextResponse, summary="Readiness check")
async def ready(request: Request) -> PlainTextResponse:
    """OK once the store is initialized and scrapes are being collected."""
    pipeline = _pipeline(request)
    if pipeline.writer.is_initialized and pipeline.is_running:
        return PlainTextResponse("OK")
    return PlainTextResponse("Not ready", status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


@router.get("/stats", response_model=StatsResponse, summary="Pipeline statistics")
async def stats(request: Request) -> StatsResponse:
    """Totals so far for the running pipeline.

    Example:
        GET /-/stats
        {
            "source": "http://localhost:9100/metrics",
            "buffer_depth": 0,
            "scrapes_written": 12,
            ...
        }
    """
    pipeline = _pipeline(request)
    return StatsResponse(
        timestamp=datetime.now(timezone.utc),
        version=__version__,
        source=pipeline.source.name,
        running=pipeline.is_running,
        buffer_depth=pipeline.buffer.depth,
        buffer_capacity=pipeline.buffer.capacity,
        **pipeline.summary().to_dict(),
    )


def create_app(pipeline: ScrapePipeline) -> FastAPI:
    """Create the status application for a pipeline."""
    app = FastAPI(
        title="promstash",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.pipeline = pipeline
    app.state.registry = create_registry(pipeline)
    app.include_router(router)
    app.include_router(metrics_router)
    return app


class StatusServer(uvicorn.Server):
    """uvicorn server sharing the scrape command's event loop.

    SIGINT/SIGTERM stay with the scrape command, which stops the pipeline
    and then asks the server to exit.
    """

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def bind(self) -> socket.socket:
        """Bind the listening socket before anything starts.

        Returns:
            socket.socket: Bound socket to pass to ``serve(sockets=[...])``

        Raises:
            ConfigurationError: If the address cannot be bound
        """
        host, port = self.config.host, self.config.port
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
        except OSError as e:
            sock.close()
            raise ConfigurationError(
                f"Cannot listen on {host}:{port}: {e.strerror or e}",
                host=host,
                port=port,
            ) from e

        sock.set_inheritable(True)
        return sock


def create_server(pipeline: ScrapePipeline, host: str, port: int) -> StatusServer:
    """Create a status server for a pipeline.

    Example:
        server = create_server(pipeline, "127.0.0.1", 8080)
        sock = server.bind()
        await server.serve(sockets=[sock])
    """
    config = uvicorn.Config(
        create_app(pipeline),
        host=host,
        port=port,
        log_level="warning",
        access_log=False,
        lifespan="off",
    )
    logger.info("status_server_configured", host=host, port=port)
    return StatusServer(config)
