"""
Integration tests for worker functionality.
"""

import asyncio
import os
from datetime import timedelta
from pathlib import Path

import pytest_asyncio

from queuectl.constants import ERROR_COMMAND_NOT_FOUND, ERROR_TIMEOUT, JobState
from queuectl.core.queue import JobQueue
from queuectl.db import JobRepository, session_scope
from queuectl.errors import StorageError
from queuectl.types.job import utc_now
from queuectl.worker.main import Worker, stop_workers_async
from queuectl.worker.output import OutputLog
from queuectl.worker.registry import WorkerRegistry


async def _make_due(session_factory, job_id: str) -> None:
    """Pull a failed job's retry time into the past."""
    async with session_scope(session_factory) as session:
        repo = JobRepository(session)
        job = await repo.get_job(job_id)
        await repo.save_job(job.model_copy(update={"next_retry_at": utc_now() - timedelta(seconds=1)}))


class TestWorkerIntegration:
    """Integration tests for worker job processing."""

    @pytest_asyncio.fixture
    async def worker(self, queue: JobQueue, registry: WorkerRegistry, tmp_path: Path, metrics) -> Worker:
        worker = Worker(
            queue,
            registry,
            worker_id="test-worker",
            poll_interval=0.01,
            output_dir=tmp_path / "outputs",
            metrics=metrics,
        )
        await registry.register(worker.worker_id, os.getpid())
        return worker

    async def test_full_job_lifecycle_success(self, queue: JobQueue, worker: Worker):
        """Test complete job lifecycle: enqueue -> lock -> run -> complete."""
        await queue.enqueue({"id": "job1", "command": "echo hello"})

        finished = await worker.run_once()

        assert finished.state == JobState.COMPLETED
        stored = await queue.get_job("job1")
        assert stored.state == JobState.COMPLETED
        assert stored.attempts == 0
        assert stored.locked_by is None
        assert stored.output.stdout == "hello"
        assert worker.processed_jobs == 1

    async def test_failure_retries_then_dead(self, queue: JobQueue, worker: Worker, session_factory):
        """max_retries 2: failed, failed, dead, with the error kept."""
        await queue.enqueue({"id": "job1", "command": "exit 1", "max_retries": 2, "backoff_base": 2})

        first = await worker.run_once()
        assert first.state == JobState.FAILED
        assert first.attempts == 1
        assert first.error == "Command exited with code 1"
        assert first.next_retry_at > utc_now()

        # Not due yet
        assert await worker.run_once() is None

        await _make_due(session_factory, "job1")
        second = await worker.run_once()
        assert second.state == JobState.FAILED
        assert second.attempts == 2

        await _make_due(session_factory, "job1")
        third = await worker.run_once()
        assert third.state == JobState.DEAD
        assert third.attempts == 3

        dead = await queue.list_jobs(JobState.DEAD)
        assert [job.id for job in dead] == ["job1"]

    async def test_command_not_found(self, queue: JobQueue, worker: Worker):
        await queue.enqueue({"command": "no-such-command-here", "max_retries": 0})

        finished = await worker.run_once()

        assert finished.state == JobState.DEAD
        assert finished.error == ERROR_COMMAND_NOT_FOUND

    async def test_timeout(self, queue: JobQueue, worker: Worker):
        await queue.enqueue({"command": "sleep 5", "job_timeout": 200, "max_retries": 0})

        finished = await worker.run_once()

        assert finished.state == JobState.DEAD
        assert finished.error == ERROR_TIMEOUT

    async def test_output_written_to_file(self, queue: JobQueue, worker: Worker, tmp_path: Path):
        await queue.enqueue({"id": "job1", "command": "echo to-file", "save_output": True})

        finished = await worker.run_once()

        assert finished.output is None
        content = (tmp_path / "outputs" / "job1.log").read_text()
        assert "| SUCCESS ===" in content
        assert "STDOUT:\nto-file" in content

    async def test_output_file_rotates(self, queue: JobQueue, worker: Worker, tmp_path: Path):
        output_file = tmp_path / "custom" / "job.log"
        await queue.enqueue(
            {
                "id": "job1",
                "command": "echo " + "x" * 200,
                "save_output": True,
                "output_file": str(output_file),
                "rotate_size": 100,
                "rotate_count": 2,
            }
        )

        await worker.run_once()

        log = OutputLog(output_file)
        assert log.generations() == [log.generation(1)]
        assert log.path.read_text().startswith("Rotated at ")

    async def test_worker_exits_when_unregistered(self, worker: Worker, registry: WorkerRegistry):
        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.05)

        assert await stop_workers_async(registry) == 1
        await asyncio.wait_for(task, timeout=5)

        assert await registry.list_workers() == []

    async def test_stop_interrupts_sleep(self, queue: JobQueue, registry: WorkerRegistry, metrics):
        worker = Worker(queue, registry, worker_id="sleepy", poll_interval=60, metrics=metrics)
        await registry.register(worker.worker_id)

        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.05)
        await worker.stop()

        await asyncio.wait_for(task, timeout=5)

    async def test_loop_processes_queue(self, queue: JobQueue, worker: Worker, registry: WorkerRegistry):
        for i in range(3):
            await queue.enqueue({"id": f"job{i}", "command": f"echo {i}"})

        task = asyncio.create_task(worker.start())
        for _ in range(200):
            stats = await queue.get_stats()
            if stats["completed"] == 3:
                break
            await asyncio.sleep(0.02)
        await worker.stop()
        await asyncio.wait_for(task, timeout=5)

        assert (await queue.get_stats())["completed"] == 3

    async def test_storage_error_releases_lock(self, queue: JobQueue, worker: Worker, monkeypatch):
        """A failed result write returns the job to pending; the next cycle runs it."""
        await queue.enqueue({"id": "job1", "command": "echo hi"})
        save_result = queue.save_result
        calls = []

        async def flaky_save_result(job, worker_id):
            calls.append(job.id)
            if len(calls) == 1:
                raise StorageError("disk I/O error")
            return await save_result(job, worker_id)

        monkeypatch.setattr(queue, "save_result", flaky_save_result)

        assert await worker.run_once() is None
        stored = await queue.get_job("job1")
        assert stored.state == JobState.PENDING
        assert stored.locked_by is None

        finished = await worker.run_once()
        assert finished.state == JobState.COMPLETED
        assert worker.processed_jobs == 1

    async def test_loop_survives_poll_errors(self, queue: JobQueue, worker: Worker, monkeypatch):
        get_next = queue.get_next
        failures = []

        async def flaky_get_next(worker_id, now=None):
            if not failures:
                failures.append(worker_id)
                raise StorageError("database is locked")
            return await get_next(worker_id, now)

        monkeypatch.setattr(queue, "get_next", flaky_get_next)
        await queue.enqueue({"id": "job1", "command": "true"})

        task = asyncio.create_task(worker.start())
        for _ in range(200):
            if (await queue.get_stats())["completed"] == 1:
                break
            await asyncio.sleep(0.02)
        await worker.stop()
        await asyncio.wait_for(task, timeout=5)

        assert failures == ["test-worker"]
        assert (await queue.get_job("job1")).state == JobState.COMPLETED


class TestWorkerRace:
    """Two workers polling the same store."""

    async def test_each_job_runs_once(self, queue: JobQueue, registry: WorkerRegistry, metrics, tmp_path: Path):
        marker = tmp_path / "runs.txt"
        for i in range(6):
            await queue.enqueue({"id": f"job{i}", "command": f"echo job{i} >> {marker}"})

        workers = [
            Worker(queue, registry, worker_id=f"w{n}", poll_interval=0.01, metrics=metrics)
            for n in range(2)
        ]
        for worker in workers:
            await registry.register(worker.worker_id)
        tasks = [asyncio.create_task(worker.start()) for worker in workers]

        for _ in range(300):
            if (await queue.get_stats())["completed"] == 6:
                break
            await asyncio.sleep(0.02)

        for worker in workers:
            await worker.stop()
        await asyncio.wait_for(asyncio.gather(*tasks), timeout=10)

        lines = marker.read_text().split()
        assert sorted(lines) == [f"job{i}" for i in range(6)]
        assert sum(worker.processed_jobs for worker in workers) == 6
