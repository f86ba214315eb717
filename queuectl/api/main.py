"""
FastAPI application for the read-only metrics presenter.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from queuectl import __version__
from queuectl.api.routes import health_router, jobs_router
from queuectl.config import get_settings
from queuectl.db import close_db
from queuectl.observability.logging import setup_logging
from queuectl.observability.metrics import setup_metrics
from queuectl.observability.tracing import instrument_fastapi, setup_tracing
from queuectl.reaper import open_store

logger = logging.getLogger(__name__)


def create_app(database_url: str | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        database_url: Optional URL overriding the configured one.

    Returns:
        FastAPI: The configured application instance.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        setup_logging()
        setup_metrics()
        setup_tracing()
        await open_store(database_url)

        logger.info("Metrics presenter started")

        yield

        # Shutdown
        await close_db()
        logger.info("Metrics presenter shutdown")

    app = FastAPI(
        title="queuectl",
        description="Read-only view of a queuectl job queue",
        version=__version__,
        lifespan=lifespan,
    )

    app.include_router(health_router)
    app.include_router(jobs_router)

    # Instrument with OpenTelemetry
    instrument_fastapi(app)

    return app


def run(port: int | None = None, host: str | None = None, database_url: str | None = None) -> None:
    """Run the presenter until interrupted."""
    settings = get_settings()
    app = create_app(database_url)

    uvicorn.run(
        app,
        host=host or settings.metrics_host,
        port=port or settings.metrics_port,
        log_level=settings.log_level.lower(),
    )
