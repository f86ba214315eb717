"""
Job-related type definitions.

Job is an immutable record; every lifecycle transition returns a new Job and
leaves the receiver untouched. Persistence lives in queuectl.db.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from queuectl.config import QueueConfig
from queuectl.constants import DEFAULT_ROTATE_COUNT, JobState
from queuectl.errors import InvalidTransition, ValidationError

# Fields a submitter may provide; lifecycle fields always start fresh.
SUBMISSION_FIELDS = frozenset(
    {
        "id",
        "command",
        "max_retries",
        "backoff_base",
        "job_timeout",
        "run_at",
        "priority",
        "save_output",
        "output_file",
        "rotate_size",
        "rotate_count",
    }
)


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, the form stored in the database."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are taken as UTC."""
    if value.tzinfo is not None:
        return value.astimezone(UTC).replace(tzinfo=None)
    return value


class JobOutput(BaseModel):
    """Captured output of the last execution."""

    model_config = ConfigDict(frozen=True)

    stdout: str | None = None
    stderr: str | None = None


class Job(BaseModel):
    """
    A submitted unit of work.

    Invariants:
    - locked_by is set if and only if state is processing
    - attempts only grows on failure, and the job is dead the first time a
      failure pushes attempts beyond max_retries
    - max_retries, backoff_base, job_timeout and the output policy are fixed
      at creation
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    command: str = Field(min_length=1)
    state: JobState = JobState.PENDING
    attempts: int = Field(default=0, ge=0)
    max_retries: int = Field(ge=0)
    backoff_base: float = Field(gt=0)
    job_timeout: int = Field(gt=0)
    created_at: datetime
    updated_at: datetime
    next_retry_at: datetime | None = None
    run_at: datetime | None = None
    priority: int = 0
    error: str | None = None
    output: JobOutput | None = None
    save_output: bool = False
    output_file: str | None = None
    rotate_size: int | None = Field(default=None, gt=0)
    rotate_count: int = Field(default=DEFAULT_ROTATE_COUNT, ge=1)
    locked_by: str | None = None
    locked_at: datetime | None = None

    @field_validator("created_at", "updated_at", "next_retry_at", "run_at", "locked_at")
    @classmethod
    def _normalize_timestamp(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return to_naive_utc(value)

    @classmethod
    def create(cls, data: Mapping[str, Any], defaults: QueueConfig | None = None) -> "Job":
        """
        Build a new pending job from submitted data.

        Args:
            data: Submitted job fields. Only submission fields are honoured.
            defaults: Queue-wide defaults for retries, backoff and timeout.

        Returns:
            A validated Job in the pending state.

        Raises:
            ValidationError: If the command is missing or any field is invalid.
        """
        if not isinstance(data, Mapping):
            raise ValidationError("Job data must be an object")

        command = data.get("command")
        if command is None or command == "":
            raise ValidationError("Job must have a command")
        if not isinstance(command, str):
            raise ValidationError("Command must be a string")
        if not command.strip():
            raise ValidationError("Job must have a command")

        defaults = defaults or QueueConfig()
        now = utc_now()

        fields = {key: value for key, value in data.items() if key in SUBMISSION_FIELDS}
        fields = {key: value for key, value in fields.items() if value is not None}
        fields.setdefault("id", str(uuid4()))
        fields.setdefault("max_retries", defaults.max_retries)
        fields.setdefault("backoff_base", defaults.backoff_base)
        fields.setdefault("job_timeout", defaults.job_timeout)

        try:
            return cls.model_validate({**fields, "created_at": now, "updated_at": now})
        except pydantic.ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ValidationError(f"Invalid job data: {problems}") from e

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Job":
        """Rebuild a job from its persisted mapping."""
        return cls.model_validate(dict(record))

    def to_record(self) -> dict[str, Any]:
        """Serialize to a mapping keyed by the snake_case field names."""
        return self.model_dump(mode="json")

    @property
    def is_locked(self) -> bool:
        return self.locked_by is not None

    def calculate_backoff(self, attempts: int | None = None) -> float:
        """
        Retry delay in milliseconds: backoff_base ** attempts seconds.

        Args:
            attempts: Attempt count to compute for. Defaults to the job's own.
        """
        if attempts is None:
            attempts = self.attempts
        return self.backoff_base**attempts * 1000

    def is_eligible(self, now: datetime | None = None) -> bool:
        """Check whether a dispatcher may hand this job to a worker at `now`."""
        now = now or utc_now()
        if self.locked_by is not None:
            return False
        if self.run_at is not None and self.run_at > now:
            return False
        if self.state == JobState.PENDING:
            return True
        if self.state == JobState.FAILED:
            return self.next_retry_at is not None and self.next_retry_at <= now
        return False

    def mark_failed(
        self,
        error: str,
        output: JobOutput | None = None,
        now: datetime | None = None,
    ) -> "Job":
        """
        Record a failed execution.

        Moves to failed with a backoff-scheduled retry while attempts stay
        within max_retries, otherwise to dead.
        """
        now = now or utc_now()
        attempts = self.attempts + 1
        changes: dict[str, Any] = {
            "attempts": attempts,
            "error": error,
            "output": output,
            "updated_at": now,
        }
        if attempts <= self.max_retries:
            delay_ms = self.calculate_backoff(attempts)
            changes["state"] = JobState.FAILED
            changes["next_retry_at"] = now + timedelta(milliseconds=delay_ms)
        else:
            changes["state"] = JobState.DEAD
            changes["next_retry_at"] = None
        return self.model_copy(update=changes)

    def mark_completed(self, output: JobOutput | None = None, now: datetime | None = None) -> "Job":
        """Record a successful execution."""
        return self.model_copy(
            update={
                "state": JobState.COMPLETED,
                "output": output,
                "error": None,
                "next_retry_at": None,
                "updated_at": now or utc_now(),
            }
        )

    def reset(self, now: datetime | None = None) -> "Job":
        """
        Return a dead job to pending with a clean retry history.

        Raises:
            InvalidTransition: If the job is not dead.
        """
        if self.state != JobState.DEAD:
            raise InvalidTransition(f"Job {self.id} is not in dead state")
        return self.model_copy(
            update={
                "state": JobState.PENDING,
                "attempts": 0,
                "error": None,
                "next_retry_at": None,
                "updated_at": now or utc_now(),
            }
        )


class ExecutionResult(BaseModel):
    """
    Outcome of running a job's command.
    Returned by the executor; failures are data, not exceptions.
    """

    success: bool
    exit_code: int | None = None
    stdout: str | None = None
    stderr: str | None = None
    error: str | None = None
    timed_out: bool = False
    duration_ms: float | None = None

    @property
    def output(self) -> JobOutput:
        return JobOutput(stdout=self.stdout, stderr=self.stderr)


@dataclass
class WorkerInfo:
    """
    A worker registration.
    One per running worker process.
    """

    id: str
    pid: int
    started_at: datetime
