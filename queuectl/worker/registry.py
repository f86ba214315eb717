"""
Worker registry.

The set of running worker processes, kept in the shared store so that a
`worker stop` issued from another process can ask every worker to exit.
"""

import os

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from queuectl.db import WorkerRepository, session_scope
from queuectl.reaper.liveness import LivenessCheck, is_process_alive
from queuectl.types.job import WorkerInfo


class WorkerRegistry:
    """Registrations of running workers, one per process."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        is_alive: LivenessCheck = is_process_alive,
    ):
        self._session_factory = session_factory
        self._is_alive = is_alive

    async def register(self, worker_id: str, pid: int | None = None) -> WorkerInfo:
        async with session_scope(self._session_factory) as session:
            return await WorkerRepository(session).register(worker_id, pid or os.getpid())

    async def unregister(self, worker_id: str) -> bool:
        async with session_scope(self._session_factory) as session:
            return await WorkerRepository(session).unregister(worker_id)

    async def is_registered(self, worker_id: str) -> bool:
        async with session_scope(self._session_factory) as session:
            return await WorkerRepository(session).exists(worker_id)

    async def list_workers(self) -> list[WorkerInfo]:
        async with session_scope(self._session_factory) as session:
            return await WorkerRepository(session).list_workers()

    async def list_alive(self) -> list[WorkerInfo]:
        """Drop registrations of dead processes and return the rest."""
        async with session_scope(self._session_factory) as session:
            repo = WorkerRepository(session)
            await repo.prune(self._is_alive)
            return await repo.list_workers()

    async def clear(self) -> int:
        """
        Remove every registration.

        Running workers notice on their next poll and exit after finishing
        the job in hand.
        """
        async with session_scope(self._session_factory) as session:
            return await WorkerRepository(session).clear()
