"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobState(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> PROCESSING (lock acquired)
    - PROCESSING -> COMPLETED (success)
    - PROCESSING -> FAILED (failure, retries left)
    - PROCESSING -> DEAD (failure, retries exhausted)
    - FAILED -> PROCESSING (retry once next_retry_at has passed)
    - DEAD -> PENDING (explicit DLQ retry)
    - PROCESSING -> PENDING (lock released before a result was recorded)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD = "dead"


# States a worker may lock
LOCKABLE_STATES: tuple[JobState, ...] = (JobState.PENDING, JobState.FAILED)
# States no transition leaves, except an explicit DLQ retry
TERMINAL_STATES: tuple[JobState, ...] = (JobState.COMPLETED, JobState.DEAD)

# Config provider keys and their defaults
CONFIG_MAX_RETRIES = "maxRetries"
CONFIG_BACKOFF_BASE = "backoffBase"
CONFIG_JOB_TIMEOUT = "jobTimeout"

DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_BASE = 2
DEFAULT_JOB_TIMEOUT_MS = 300_000

DEFAULT_CONFIG: dict[str, int | float] = {
    CONFIG_MAX_RETRIES: DEFAULT_MAX_RETRIES,
    CONFIG_BACKOFF_BASE: DEFAULT_BACKOFF_BASE,
    CONFIG_JOB_TIMEOUT: DEFAULT_JOB_TIMEOUT_MS,
}

# Output capture defaults
DEFAULT_ROTATE_SIZE_BYTES = 1_000_000
DEFAULT_ROTATE_COUNT = 1

# Worker defaults
DEFAULT_POLL_INTERVAL_SECONDS = 2.0

# Execution error descriptions
ERROR_TIMEOUT = "Job timed out"
ERROR_COMMAND_NOT_FOUND = "Command not found"
SHELL_COMMAND_NOT_FOUND_EXIT = 127

# Metrics names
METRIC_QUEUE_DEPTH = "queuectl_queue_depth"
METRIC_WORKERS_ACTIVE = "queuectl_workers_active"
METRIC_JOBS_ENQUEUED = "queuectl_jobs_enqueued_total"
METRIC_JOBS_FINISHED = "queuectl_jobs_finished_total"
METRIC_JOB_DURATION = "queuectl_job_duration_seconds"
METRIC_LOCKS_ACQUIRED = "queuectl_locks_acquired_total"
METRIC_LOCK_CONFLICTS = "queuectl_lock_conflicts_total"
METRIC_STALE_LOCKS_RELEASED = "queuectl_stale_locks_released_total"

# Trace span names
SPAN_ACQUIRE_LOCK = "acquire_lock"
SPAN_EXECUTE_JOB = "execute_job"
