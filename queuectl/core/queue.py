"""
Job queue and dispatcher.

The queue is the only way clients and workers touch jobs: submission,
selection of the next job for a worker, result persistence and DLQ retry.
Every call opens its own short transaction; nothing is cached between calls.
"""

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from queuectl.config import QueueConfig
from queuectl.constants import SPAN_ACQUIRE_LOCK, JobState
from queuectl.db import ConfigRepository, JobRepository, WorkerRepository, session_scope
from queuectl.observability.metrics import MetricsCollector, get_metrics
from queuectl.observability.tracing import get_tracer
from queuectl.types.job import Job, WorkerInfo

logger = logging.getLogger(__name__)


class JobQueue:
    """
    Persistent job queue over a shared store.

    Features:
    - Validation before anything is persisted
    - Priority then age ordering of eligible jobs
    - Single-candidate locking: a lost race returns no job
    - Result persistence and lock release in one transaction
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: QueueConfig | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the queue.

        Args:
            session_factory: Session factory of the opened store.
            config: Defaults for new jobs. When None, the persisted
                configuration is read at each enqueue.
            metrics: Metrics collector. Defaults to the process-wide one.
        """
        self._session_factory = session_factory
        self._config = config
        self._metrics = metrics or get_metrics()

    def session(self):
        """Transactional session scope on this queue's store."""
        return session_scope(self._session_factory)

    async def enqueue(self, data: Mapping[str, Any]) -> Job:
        """
        Validate and store a new job.

        Args:
            data: Submitted job fields; `command` is required.

        Returns:
            The stored job, in the pending state.

        Raises:
            ValidationError: If the data is invalid. Nothing is persisted.
        """
        async with self.session() as session:
            config = self._config or await ConfigRepository(session).load()
            job = Job.create(data, config)
            await JobRepository(session).create_job(job)

        self._metrics.record_job_enqueued()
        return job

    async def get_next(self, worker_id: str, now: datetime | None = None) -> Job | None:
        """
        Select and lock the next job for a worker.

        Only the top candidate is tried. If another worker locks it first
        the call returns None and the caller polls again later.

        Args:
            worker_id: The polling worker.
            now: Reference time for eligibility.

        Returns:
            The locked job, or None if nothing is available.
        """
        with get_tracer().start_as_current_span(SPAN_ACQUIRE_LOCK) as span:
            span.set_attribute("worker_id", worker_id)

            async with self.session() as session:
                repo = JobRepository(session)

                candidate = await repo.find_next_candidate(now)
                if candidate is None:
                    return None

                span.set_attribute("job_id", candidate.id)
                if not await repo.acquire_lock(candidate.id, worker_id, now):
                    logger.debug(
                        "Lock lost to another worker",
                        extra={"worker_id": worker_id, "job_id": candidate.id},
                    )
                    self._metrics.record_lock_conflict(worker_id)
                    return None

                locked = await repo.get_job(candidate.id)

        self._metrics.record_lock_acquired(worker_id)
        return locked

    async def save_result(self, job: Job, worker_id: str) -> bool:
        """
        Persist a transitioned job and release its lock atomically.

        The result is written even when the lock was released in the
        meantime (stale-lock cleanup after `worker stop`), so a command that
        already ran is not run again.

        Args:
            job: The job after mark_completed or mark_failed.
            worker_id: The worker that ran the job.

        Returns:
            False if the job is missing or already finished; nothing is written then.
        """
        async with self.session() as session:
            repo = JobRepository(session)
            if not await repo.save_job(job):
                return False
            await repo.release_lock(job.id)

        logger.debug("Saved job result", extra={"job_id": job.id, "worker_id": worker_id, "state": job.state})
        return True

    async def release_lock(self, job_id: str) -> bool:
        """Release a lock; an unfinished job returns to pending."""
        async with self.session() as session:
            return await JobRepository(session).release_lock(job_id)

    async def get_job(self, job_id: str) -> Job | None:
        async with self.session() as session:
            return await JobRepository(session).get_job(job_id)

    async def list_jobs(self, state: JobState | None = None) -> list[Job]:
        async with self.session() as session:
            return await JobRepository(session).list_jobs(state)

    async def list_workers(self) -> list[WorkerInfo]:
        async with self.session() as session:
            return await WorkerRepository(session).list_workers()

    async def get_stats(self) -> dict[str, int]:
        """Job counts per state plus total."""
        async with self.session() as session:
            stats = await JobRepository(session).get_job_stats()

        self._metrics.update_queue_depth(stats)
        return stats

    async def retry_dead_job(self, job_id: str) -> Job:
        """
        Move a dead job back to pending with attempts reset.

        Raises:
            JobNotFound: If the job does not exist.
            InvalidTransition: If the job is not dead; it is left untouched.
        """
        async with self.session() as session:
            return await JobRepository(session).retry_dead_job(job_id)

    async def get_config(self, key: str | None = None):
        """One configuration value, or all of them keyed by camelCase name."""
        async with self.session() as session:
            return await ConfigRepository(session).get(key)

    async def set_config(self, key: str, value) -> int | float:
        """
        Store a configuration value; applies to jobs enqueued afterwards.

        Raises:
            ConfigError: If the key or value is invalid.
        """
        async with self.session() as session:
            return await ConfigRepository(session).set(key, value)
