"""
Read-only job and worker routes.
"""

import html
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl.constants import JobState
from queuectl.db import JobRepository, WorkerRepository, get_async_session
from queuectl.types.api import JobListResponse, JobResponse, StatsResponse, WorkerResponse
from queuectl.types.job import Job

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Jobs"])

# Rows shown on the dashboard
DASHBOARD_JOB_LIMIT = 200


def _job_to_response(job: Job) -> JobResponse:
    """Convert a Job to a JobResponse."""
    return JobResponse.model_validate(job.model_dump())


async def _stats(session: AsyncSession) -> StatsResponse:
    stats = await JobRepository(session).get_job_stats()
    workers = await WorkerRepository(session).list_workers()
    return StatsResponse(**stats, workers=len(workers))


def _render_dashboard(stats: StatsResponse, jobs: list[Job]) -> str:
    counts = "".join(
        f"<li>{state.value}: {getattr(stats, state.value)}</li>" for state in JobState
    )
    rows = "".join(
        "<tr>"
        f"<td>{html.escape(job.id)}</td>"
        f"<td>{html.escape(job.command)}</td>"
        f"<td>{job.state.value}</td>"
        f"<td>{job.attempts}/{job.max_retries}</td>"
        f"<td>{job.priority}</td>"
        f"<td>{html.escape(job.error or '')}</td>"
        "</tr>"
        for job in jobs[:DASHBOARD_JOB_LIMIT]
    )
    return (
        "<!doctype html><html><head><title>queuectl</title>"
        '<meta http-equiv="refresh" content="5"></head><body>'
        f"<h1>queuectl</h1><p>Total jobs: {stats.total}, workers: {stats.workers}</p>"
        f"<ul>{counts}</ul>"
        "<table><thead><tr><th>ID</th><th>Command</th><th>State</th>"
        "<th>Attempts</th><th>Priority</th><th>Error</th></tr></thead>"
        f"<tbody>{rows}</tbody></table></body></html>"
    )


@router.get(
    "/",
    response_class=HTMLResponse,
    summary="Dashboard",
    description="Queue totals and the first jobs in insertion order.",
)
async def dashboard(
    session: AsyncSession = Depends(get_async_session),
) -> HTMLResponse:
    stats = await _stats(session)
    jobs = await JobRepository(session).list_jobs()
    return HTMLResponse(_render_dashboard(stats, jobs))


@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Queue statistics",
)
async def get_stats(
    session: AsyncSession = Depends(get_async_session),
) -> StatsResponse:
    return await _stats(session)


@router.get(
    "/jobs",
    response_model=JobListResponse,
    summary="List jobs",
    description="List jobs in insertion order, optionally filtered by state.",
)
async def list_jobs(
    state: JobState | None = Query(None, description="Filter by job state"),
    session: AsyncSession = Depends(get_async_session),
) -> JobListResponse:
    jobs = await JobRepository(session).list_jobs(state)
    return JobListResponse(
        jobs=[_job_to_response(job) for job in jobs],
        total=len(jobs),
        state=state,
    )


@router.get(
    "/jobs/{job_id}",
    response_model=JobResponse,
    summary="Get job details",
)
async def get_job(
    job_id: str,
    session: AsyncSession = Depends(get_async_session),
) -> JobResponse:
    """
    Get job details by ID.

    Raises:
        HTTPException: 404 if the job does not exist.
    """
    job = await JobRepository(session).get_job(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found",
        )
    return _job_to_response(job)


@router.get(
    "/workers",
    response_model=list[WorkerResponse],
    summary="List registered workers",
)
async def list_workers(
    session: AsyncSession = Depends(get_async_session),
) -> list[WorkerResponse]:
    workers = await WorkerRepository(session).list_workers()
    return [
        WorkerResponse(id=worker.id, pid=worker.pid, started_at=worker.started_at)
        for worker in workers
    ]
