"""
HTTP presenter response type definitions.
"""

from datetime import datetime

from pydantic import BaseModel

from queuectl.constants import JobState
from queuectl.types.job import JobOutput


class JobResponse(BaseModel):
    """Full job details response."""

    id: str
    command: str
    state: JobState
    attempts: int
    max_retries: int
    backoff_base: float
    job_timeout: int
    priority: int
    run_at: datetime | None
    next_retry_at: datetime | None
    error: str | None
    output: JobOutput | None
    save_output: bool
    output_file: str | None
    locked_by: str | None
    created_at: datetime
    updated_at: datetime


class JobListResponse(BaseModel):
    """List of jobs, in insertion order."""

    jobs: list[JobResponse]
    total: int
    state: JobState | None = None


class StatsResponse(BaseModel):
    """Job counts per state."""

    total: int
    pending: int
    processing: int
    completed: int
    failed: int
    dead: int
    workers: int


class WorkerResponse(BaseModel):
    """A registered worker."""

    id: str
    pid: int
    started_at: datetime


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    timestamp: datetime
