"""
Exception hierarchy.

Execution failures of a job's command are not exceptions: they are recorded
on the job and drive retry/backoff. Everything here is raised to callers.
"""


class QueueError(Exception):
    """Base class for all queuectl errors."""


class ValidationError(QueueError):
    """Job data rejected at enqueue time, before anything is persisted."""


class ConfigError(QueueError):
    """Unknown configuration key or invalid value."""


class JobNotFound(QueueError):
    """No job with the given id exists."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidTransition(QueueError):
    """A state transition was requested from a state that does not allow it."""


class StorageError(QueueError):
    """Reading or writing the persisted collections failed."""
