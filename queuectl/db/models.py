"""
SQLAlchemy database models.
Defines the jobs, workers and config tables.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from queuectl.constants import DEFAULT_ROTATE_COUNT, JobState
from queuectl.types.job import Job, WorkerInfo


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class JobRecord(Base):
    """
    Persisted job row.

    This is the authoritative source of truth for job state. In-memory Job
    objects are projections of a row, discarded after each operation.

    Key constraints:
    - seq preserves insertion order for listings
    - locked_by/locked_at are only set while state is processing
    """

    __tablename__ = "jobs"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    command: Mapped[str] = mapped_column(Text, nullable=False)

    state: Mapped[JobState] = mapped_column(
        Enum(
            JobState,
            name="job_state",
            native_enum=False,
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=JobState.PENDING,
        index=True,
    )

    # Retry policy
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False)
    backoff_base: Mapped[float] = mapped_column(Float, nullable=False)
    job_timeout: Mapped[int] = mapped_column(Integer, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Scheduling
    run_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Outcome
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    output: Mapped[dict[str, Any] | None] = mapped_column(JSON(none_as_null=True), nullable=True)

    # Output persistence policy
    save_output: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    output_file: Mapped[str | None] = mapped_column(Text, nullable=True)
    rotate_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rotate_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_ROTATE_COUNT,
    )

    # Lock
    locked_by: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        # Index for dispatcher polling
        Index("ix_jobs_dispatch", "state", "priority", "created_at"),
    )

    @classmethod
    def from_job(cls, job: Job) -> "JobRecord":
        return cls(**job.model_dump())

    def to_job(self) -> Job:
        """Project the row onto an immutable Job."""
        return Job.from_record(
            {
                column.key: getattr(self, column.key)
                for column in self.__table__.columns
                if column.key != "seq"
            }
        )

    def __repr__(self) -> str:
        return (
            f"JobRecord(id={self.id}, state={self.state}, "
            f"attempts={self.attempts}/{self.max_retries}, locked_by={self.locked_by})"
        )


class WorkerRecord(Base):
    """Registration of a running worker process."""

    __tablename__ = "workers"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    pid: Mapped[int] = mapped_column(Integer, nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def to_info(self) -> WorkerInfo:
        return WorkerInfo(id=self.id, pid=self.pid, started_at=self.started_at)


class ConfigEntry(Base):
    """One key of the persisted queue configuration."""

    __tablename__ = "config"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
