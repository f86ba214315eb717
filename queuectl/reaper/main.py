"""
Stale lock reaper.

Workers never renew their locks. When a worker process dies mid-job its lock
stays behind; the reaper runs whenever a store is opened, drops worker
registrations whose process is gone and unlocks every job not held by a live
registered worker, returning processing jobs to pending.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from queuectl.db import JobRepository, WorkerRepository, init_db, session_scope
from queuectl.observability.metrics import MetricsCollector, get_metrics
from queuectl.reaper.liveness import LivenessCheck, is_process_alive

logger = logging.getLogger(__name__)


class Reaper:
    """
    Lock reaper that recovers jobs held by dead workers.

    Runs once per store initialization to:
    1. Remove worker registrations whose PID is no longer alive
    2. Release locks whose owner is not a live registered worker
    3. Record metrics for monitoring
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        is_alive: LivenessCheck = is_process_alive,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            session_factory: Session factory of the store to clean.
            is_alive: Process liveness check.
            metrics: Metrics collector. Defaults to the process-wide one.
        """
        self._session_factory = session_factory
        self._is_alive = is_alive
        self._metrics = metrics or get_metrics()

    async def run_once(self) -> list[str]:
        """
        Clean up stale registrations and locks in a single transaction.

        Returns:
            Ids of the jobs that were unlocked.
        """
        async with session_scope(self._session_factory) as session:
            workers = WorkerRepository(session)
            jobs = JobRepository(session)

            await workers.prune(self._is_alive)
            alive_ids = [worker.id for worker in await workers.list_workers()]
            released = await jobs.release_stale_locks(alive_ids)

        if released:
            self._metrics.record_stale_locks_released(len(released))
            logger.warning(
                f"Recovered {len(released)} jobs from dead workers",
                extra={"job_ids": released},
            )
        return released


async def open_store(
    database_url: str | None = None,
    is_alive: LivenessCheck = is_process_alive,
) -> async_sessionmaker[AsyncSession]:
    """
    Initialize the store and recover locks left by crashed workers.

    Args:
        database_url: Optional URL overriding the configured one.
        is_alive: Process liveness check used by the cleanup.

    Returns:
        The session factory of the opened store.
    """
    session_factory = await init_db(database_url)
    await Reaper(session_factory, is_alive=is_alive).run_once()
    return session_factory
