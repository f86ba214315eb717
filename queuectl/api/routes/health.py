"""
Health check and metrics routes.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl import __version__
from queuectl.db import JobRepository, WorkerRepository, get_async_session
from queuectl.observability.metrics import get_metrics
from queuectl.types.api import HealthResponse
from queuectl.types.job import utc_now

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the presenter and its store.",
)
async def health_check(
    session: AsyncSession = Depends(get_async_session),
) -> HealthResponse:
    """
    Perform a health check.

    Checks store connectivity and returns service status.
    """
    db_status = "healthy"
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        db_status = "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        version=__version__,
        database=db_status,
        timestamp=utc_now(),
    )


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics with gauges refreshed from the store.",
)
async def metrics(
    session: AsyncSession = Depends(get_async_session),
) -> Response:
    """Expose Prometheus metrics."""
    metrics_collector = get_metrics()
    metrics_collector.update_queue_depth(await JobRepository(session).get_job_stats())
    metrics_collector.update_workers(len(await WorkerRepository(session).list_workers()))

    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )
