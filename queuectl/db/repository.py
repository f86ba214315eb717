"""
Repositories for database operations.
Implements the data access patterns for jobs, worker registrations and the
persisted queue configuration.
"""

import logging
import re
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl.config import QueueConfig
from queuectl.constants import (
    CONFIG_BACKOFF_BASE,
    CONFIG_JOB_TIMEOUT,
    CONFIG_MAX_RETRIES,
    DEFAULT_CONFIG,
    LOCKABLE_STATES,
    TERMINAL_STATES,
    JobState,
)
from queuectl.db.models import ConfigEntry, JobRecord, WorkerRecord
from queuectl.errors import ConfigError, InvalidTransition, JobNotFound, ValidationError
from queuectl.types.job import Job, WorkerInfo, utc_now

logger = logging.getLogger(__name__)

# Fields a transition may change; everything else is fixed at creation.
MUTABLE_JOB_FIELDS = frozenset(
    {"state", "attempts", "updated_at", "next_retry_at", "error", "output"}
)


class JobRepository:
    """
    Repository for job database operations.

    Implements atomic operations for:
    - Job submission
    - Lock acquisition as a single conditional UPDATE
    - Result persistence and lock release
    - Stale lock recovery
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    async def _get_record(self, job_id: str) -> JobRecord | None:
        # Lock and result writes are bulk UPDATEs that bypass the identity map
        stmt = select(JobRecord).where(JobRecord.id == job_id).execution_options(
            populate_existing=True
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_job(self, job: Job) -> Job:
        """
        Persist a newly created job.

        Args:
            job: The validated job.

        Returns:
            The stored job.

        Raises:
            ValidationError: If a job with the same id already exists.
        """
        if await self._get_record(job.id) is not None:
            raise ValidationError(f"Job {job.id} already exists")

        self._session.add(JobRecord.from_job(job))
        await self._session.flush()

        logger.info("Created new job", extra={"job_id": job.id, "command": job.command})
        return job

    async def get_job(self, job_id: str) -> Job | None:
        """
        Get a job by ID.

        Args:
            job_id: The job id.

        Returns:
            The Job or None if not found.
        """
        record = await self._get_record(job_id)
        return record.to_job() if record is not None else None

    async def list_jobs(self, state: JobState | None = None) -> list[Job]:
        """
        List jobs in insertion order, optionally filtered by state.

        Args:
            state: Optional state filter.

        Returns:
            The matching jobs.
        """
        stmt = select(JobRecord).order_by(JobRecord.seq.asc()).execution_options(
            populate_existing=True
        )
        if state is not None:
            stmt = stmt.where(JobRecord.state == state)

        result = await self._session.execute(stmt)
        return [record.to_job() for record in result.scalars().all()]

    async def get_job_stats(self) -> dict[str, int]:
        """
        Get job counts by state.

        Returns:
            Dictionary of state -> count, every state present, plus "total".
        """
        stmt = select(JobRecord.state, func.count()).group_by(JobRecord.state)
        result = await self._session.execute(stmt)

        stats = {state.value: 0 for state in JobState}
        for state, count in result.all():
            stats[JobState(state).value] = count
        stats["total"] = sum(stats.values())
        return stats

    async def delete_job(self, job_id: str) -> bool:
        """Delete a job record. Returns True if a row was removed."""
        result = await self._session.execute(delete(JobRecord).where(JobRecord.id == job_id))
        return result.rowcount > 0

    async def find_next_candidate(self, now: datetime | None = None) -> Job | None:
        """
        Find the single best job a worker could take right now.

        Eligible: unlocked and pending, or unlocked and failed with its retry
        time reached; in both cases run_at must be unset or reached.
        Ordered by priority (highest first), then age (oldest first).

        Args:
            now: Reference time. Defaults to the current time.

        Returns:
            The top candidate or None.
        """
        now = now or utc_now()
        stmt = (
            select(JobRecord)
            .where(
                JobRecord.locked_by.is_(None),
                or_(JobRecord.run_at.is_(None), JobRecord.run_at <= now),
                or_(
                    JobRecord.state == JobState.PENDING,
                    and_(
                        JobRecord.state == JobState.FAILED,
                        JobRecord.next_retry_at.is_not(None),
                        JobRecord.next_retry_at <= now,
                    ),
                ),
            )
            .order_by(
                JobRecord.priority.desc(),
                JobRecord.created_at.asc(),
                JobRecord.seq.asc(),
            )
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        record = result.scalar_one_or_none()
        return record.to_job() if record is not None else None

    async def acquire_lock(
        self,
        job_id: str,
        worker_id: str,
        now: datetime | None = None,
    ) -> bool:
        """
        Atomically claim a job for a worker.

        The check (unlocked, pending or failed) and the claim (lock fields,
        processing state) are one UPDATE statement. SQLite serializes
        writers across processes, so of two concurrent callers exactly one
        sees a matched row.

        Args:
            job_id: The job id.
            worker_id: The claiming worker.
            now: Lock timestamp.

        Returns:
            True if this caller now holds the lock.
        """
        now = now or utc_now()
        stmt = (
            update(JobRecord)
            .where(
                JobRecord.id == job_id,
                JobRecord.locked_by.is_(None),
                JobRecord.state.in_(LOCKABLE_STATES),
            )
            .values(
                locked_by=worker_id,
                locked_at=now,
                state=JobState.PROCESSING,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        acquired = result.rowcount == 1

        if acquired:
            logger.debug("Acquired lock", extra={"job_id": job_id, "worker_id": worker_id})
        return acquired

    async def release_lock(self, job_id: str, now: datetime | None = None) -> bool:
        """
        Clear a job's lock.

        A job still in processing (no result recorded) goes back to pending.

        Args:
            job_id: The job id.
            now: Update timestamp.

        Returns:
            True if the job exists.
        """
        now = now or utc_now()
        await self._session.execute(
            update(JobRecord)
            .where(JobRecord.id == job_id, JobRecord.state == JobState.PROCESSING)
            .values(state=JobState.PENDING)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(
            update(JobRecord)
            .where(JobRecord.id == job_id)
            .values(locked_by=None, locked_at=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def save_job(self, job: Job) -> bool:
        """
        Persist the result of a state transition.

        Only lifecycle fields are written. A record that already reached
        completed or dead is left as it is.

        Args:
            job: The transitioned job.

        Returns:
            True if the record was updated.
        """
        values = job.model_dump(include=set(MUTABLE_JOB_FIELDS))
        result = await self._session.execute(
            update(JobRecord)
            .where(JobRecord.id == job.id, JobRecord.state.not_in(TERMINAL_STATES))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        saved = result.rowcount > 0

        if not saved:
            logger.warning(
                "Job record not updated, missing or already finished",
                extra={"job_id": job.id, "state": job.state},
            )
        return saved

    async def retry_dead_job(self, job_id: str) -> Job:
        """
        Move a job from the dead letter queue back to pending.

        Args:
            job_id: The job id.

        Returns:
            The reset job.

        Raises:
            JobNotFound: If no such job exists.
            InvalidTransition: If the job is not dead. The job is left untouched.
        """
        job = await self.get_job(job_id)
        if job is None:
            raise JobNotFound(job_id)

        reset = job.reset()

        result = await self._session.execute(
            update(JobRecord)
            .where(JobRecord.id == job_id, JobRecord.state == JobState.DEAD)
            .values(**reset.model_dump(include=set(MUTABLE_JOB_FIELDS)))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidTransition(f"Job {job_id} is not in dead state")

        logger.info("Job retried from DLQ", extra={"job_id": job_id})
        return reset

    async def release_stale_locks(self, alive_worker_ids: Iterable[str]) -> list[str]:
        """
        Unlock every job held by a worker that is not alive.

        Args:
            alive_worker_ids: Ids of registered workers whose process is alive.

        Returns:
            Ids of the jobs that were unlocked.
        """
        alive = set(alive_worker_ids)
        stmt = select(JobRecord.id, JobRecord.locked_by).where(JobRecord.locked_by.is_not(None))
        result = await self._session.execute(stmt)

        stale = [job_id for job_id, owner in result.all() if owner not in alive]
        for job_id in stale:
            await self.release_lock(job_id)

        if stale:
            logger.info(
                f"Released {len(stale)} stale locks",
                extra={"job_ids": stale},
            )
        return stale


class WorkerRepository:
    """Repository for worker registrations."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def register(
        self,
        worker_id: str,
        pid: int,
        started_at: datetime | None = None,
    ) -> WorkerInfo:
        """Add a worker registration."""
        record = WorkerRecord(id=worker_id, pid=pid, started_at=started_at or utc_now())
        self._session.add(record)
        await self._session.flush()
        return record.to_info()

    async def unregister(self, worker_id: str) -> bool:
        result = await self._session.execute(
            delete(WorkerRecord).where(WorkerRecord.id == worker_id)
        )
        return result.rowcount > 0

    async def exists(self, worker_id: str) -> bool:
        stmt = select(func.count()).select_from(WorkerRecord).where(WorkerRecord.id == worker_id)
        result = await self._session.execute(stmt)
        return (result.scalar() or 0) > 0

    async def list_workers(self) -> list[WorkerInfo]:
        stmt = select(WorkerRecord).order_by(WorkerRecord.seq.asc())
        result = await self._session.execute(stmt)
        return [record.to_info() for record in result.scalars().all()]

    async def clear(self) -> int:
        """Remove every registration. Returns the number removed."""
        result = await self._session.execute(delete(WorkerRecord))
        return result.rowcount

    async def prune(self, is_alive: Callable[[int], bool]) -> list[WorkerInfo]:
        """
        Remove registrations whose process is gone.

        Args:
            is_alive: Process liveness check taking a PID.

        Returns:
            The removed registrations.
        """
        stale = [worker for worker in await self.list_workers() if not is_alive(worker.pid)]
        if stale:
            await self._session.execute(
                delete(WorkerRecord).where(WorkerRecord.id.in_([w.id for w in stale]))
            )
            logger.info(
                f"Removed {len(stale)} stale worker registrations",
                extra={"worker_ids": [w.id for w in stale]},
            )
        return stale


def normalize_config_key(key: str) -> str:
    """Accept kebab-case keys (max-retries) as well as camelCase (maxRetries)."""
    camel = re.sub(r"-([a-z])", lambda m: m.group(1).upper(), key.strip())
    if camel not in DEFAULT_CONFIG:
        valid = ", ".join(_kebab(k) for k in DEFAULT_CONFIG)
        raise ConfigError(f"Invalid configuration key {key!r}. Valid keys: {valid}")
    return camel


def _kebab(key: str) -> str:
    return re.sub(r"([A-Z])", lambda m: "-" + m.group(1).lower(), key)


def parse_config_value(key: str, value: Any) -> int | float:
    """
    Validate and convert a configuration value.

    Raises:
        ConfigError: If the value is not acceptable for the key.
    """
    label = _kebab(key)
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{label} must be a number") from e

    if key == CONFIG_BACKOFF_BASE:
        if number <= 0:
            raise ConfigError(f"{label} must be a positive number")
        return int(number) if number.is_integer() else number

    if not number.is_integer():
        raise ConfigError(f"{label} must be an integer")
    if key == CONFIG_MAX_RETRIES and number < 0:
        raise ConfigError(f"{label} must be a non-negative integer")
    if key == CONFIG_JOB_TIMEOUT and number <= 0:
        raise ConfigError(f"{label} must be a positive integer (milliseconds)")
    return int(number)


class ConfigRepository:
    """
    Persisted key-value configuration.

    Recognized keys: maxRetries, backoffBase, jobTimeout (milliseconds).
    Unset keys read as their defaults.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, key: str | None = None) -> Any:
        """
        Get one configuration value, or the whole mapping when key is None.

        Raises:
            ConfigError: If the key is not recognized.
        """
        result = await self._session.execute(select(ConfigEntry))
        values = dict(DEFAULT_CONFIG)
        values.update({entry.key: entry.value for entry in result.scalars().all()})

        if key is None:
            return values
        return values[normalize_config_key(key)]

    async def set(self, key: str, value: Any) -> int | float:
        """
        Validate and store a configuration value.

        Returns:
            The stored (converted) value.

        Raises:
            ConfigError: If the key or value is invalid.
        """
        name = normalize_config_key(key)
        parsed = parse_config_value(name, value)
        now = utc_now()

        stmt = insert(ConfigEntry).values(key=name, value=parsed, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=[ConfigEntry.key],
            set_={"value": parsed, "updated_at": now},
        )
        await self._session.execute(stmt)

        logger.info("Configuration updated", extra={"key": name, "value": parsed})
        return parsed

    async def load(self) -> QueueConfig:
        """Build the queue defaults value from the stored configuration."""
        values = await self.get()
        return QueueConfig(
            max_retries=values[CONFIG_MAX_RETRIES],
            backoff_base=values[CONFIG_BACKOFF_BASE],
            job_timeout=values[CONFIG_JOB_TIMEOUT],
        )
