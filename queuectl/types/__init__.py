"""
Type definitions for queuectl.
Contains the job record, execution results and HTTP response models.
"""

from queuectl.types.api import (
    HealthResponse,
    JobListResponse,
    JobResponse,
    StatsResponse,
    WorkerResponse,
)
from queuectl.types.job import (
    ExecutionResult,
    Job,
    JobOutput,
    WorkerInfo,
    utc_now,
)

__all__ = [
    # Job types
    "Job",
    "JobOutput",
    "ExecutionResult",
    "WorkerInfo",
    "utc_now",
    # API types
    "JobResponse",
    "JobListResponse",
    "StatsResponse",
    "WorkerResponse",
    "HealthResponse",
]
