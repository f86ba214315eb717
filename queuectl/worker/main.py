"""
Worker process for executing jobs.

The worker polls the queue, runs one job at a time through the shell, and
records the outcome according to the job lifecycle. It exits when its
registration disappears from the store or it receives SIGTERM/SIGINT.
"""

import asyncio
import logging
import multiprocessing
import os
import signal
from pathlib import Path
from uuid import uuid4

from queuectl.config import get_settings
from queuectl.constants import SPAN_EXECUTE_JOB, JobState
from queuectl.core.queue import JobQueue
from queuectl.db import close_db
from queuectl.errors import QueueError
from queuectl.observability.logging import bind_context, setup_logging
from queuectl.observability.metrics import MetricsCollector, get_metrics
from queuectl.observability.tracing import get_tracer, setup_tracing
from queuectl.reaper import open_store
from queuectl.types.job import ExecutionResult, Job, WorkerInfo
from queuectl.worker.executor import run_command
from queuectl.worker.output import OutputLog
from queuectl.worker.registry import WorkerRegistry

logger = logging.getLogger(__name__)


class Worker:
    """
    Job worker that polls for and executes jobs.

    Features:
    - Single-candidate locking through the queue
    - Shell execution with a per-job timeout
    - Retry scheduling and DLQ handling via the job lifecycle
    - Optional per-job output files with size-based rotation
    - Graceful shutdown: the job in hand always finishes first
    """

    def __init__(
        self,
        queue: JobQueue,
        registry: WorkerRegistry,
        worker_id: str | None = None,
        poll_interval: float | None = None,
        output_dir: Path | str | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the worker.

        Args:
            queue: Queue to poll.
            registry: Registry the worker must stay listed in.
            worker_id: Unique worker identifier. Defaults to a random UUID.
            poll_interval: Seconds to sleep after each poll.
            output_dir: Directory for output files of jobs without output_file.
            metrics: Metrics collector. Defaults to the process-wide one.
        """
        settings = get_settings()

        self.worker_id = worker_id or str(uuid4())
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.worker_poll_interval_seconds
        )
        self.output_dir = Path(output_dir) if output_dir else settings.resolved_output_dir
        self.processed_jobs = 0

        self._queue = queue
        self._registry = registry
        self._running = False
        self._stop_event = asyncio.Event()
        self._metrics = metrics or get_metrics()

    async def start(self) -> None:
        """Run the polling loop until stopped or unregistered."""
        logger.info("Worker started", extra={"worker_id": self.worker_id, "pid": os.getpid()})

        self._running = True
        self._stop_event.clear()

        while self._running:
            try:
                if not await self._registry.is_registered(self.worker_id):
                    logger.info(
                        "Worker no longer registered, stopping",
                        extra={"worker_id": self.worker_id},
                    )
                    break

                await self.run_once()

            except Exception as e:
                logger.exception(
                    f"Error in worker loop: {e}",
                    extra={"worker_id": self.worker_id},
                )

            if self._running:
                await self._sleep()

        self._running = False
        logger.info(
            f"Worker stopped. Processed {self.processed_jobs} jobs.",
            extra={"worker_id": self.worker_id},
        )

    async def stop(self) -> None:
        """Stop after the current job, without waiting for the next poll."""
        logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._running = False
        self._stop_event.set()

    async def run_once(self) -> Job | None:
        """
        Acquire and execute at most one job.

        Returns:
            The job as persisted after execution, or None if nothing ran.
        """
        job = await self._queue.get_next(self.worker_id)
        if job is None:
            return None

        return await self._execute_job(job)

    async def _sleep(self) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
        except TimeoutError:
            pass

    async def _execute_job(self, job: Job) -> Job | None:
        """
        Execute a locked job.

        Handles the full lifecycle:
        1. Run the command with the job's timeout
        2. Mark completed, failed or dead
        3. Persist the result and release the lock together
        4. Append to the output file if the job asked for it

        Args:
            job: The job, locked by this worker.
        """
        logger.info(
            f"Processing job {job.id}",
            extra={"worker_id": self.worker_id, "job_id": job.id, "command": job.command},
        )

        try:
            with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                span.set_attribute("job_id", job.id)
                span.set_attribute("attempt", job.attempts + 1)

                result = await run_command(job.command, job.job_timeout)

                span.set_attribute("success", result.success)

            # Output routed to a file is not kept on the record
            output = None if job.save_output else result.output
            if result.success:
                finished = job.mark_completed(output)
            else:
                finished = job.mark_failed(result.error or "Unknown error", output=output)

            if not await self._queue.save_result(finished, self.worker_id):
                logger.warning(
                    "Result not saved, job already finished elsewhere",
                    extra={"worker_id": self.worker_id, "job_id": job.id},
                )
                return None

        except Exception as e:
            logger.exception(
                "Exception executing job",
                extra={"job_id": job.id, "error": str(e)},
            )
            try:
                await self._queue.release_lock(job.id)
            except Exception:
                logger.exception("Failed to release lock", extra={"job_id": job.id})
            return None

        self._log_outcome(finished)
        self._metrics.record_job_finished(
            finished.state.value,
            (result.duration_ms or 0) / 1000,
        )

        if job.save_output:
            await asyncio.to_thread(self._write_output, job, result)

        self.processed_jobs += 1
        return finished

    def _log_outcome(self, job: Job) -> None:
        extra = {"worker_id": self.worker_id, "job_id": job.id, "attempts": job.attempts}
        if job.state == JobState.COMPLETED:
            logger.info(f"Job {job.id} completed successfully", extra=extra)
        elif job.state == JobState.FAILED:
            logger.warning(
                f"Job {job.id} failed (attempt {job.attempts}/{job.max_retries}), "
                f"retry at {job.next_retry_at.isoformat()}",
                extra={**extra, "error": job.error},
            )
        else:
            logger.error(
                f"Job {job.id} moved to DLQ after {job.attempts} attempts",
                extra={**extra, "error": job.error},
            )

    def output_path(self, job: Job) -> Path:
        if job.output_file:
            return Path(job.output_file)
        return self.output_dir / f"{job.id}.log"

    def _write_output(self, job: Job, result: ExecutionResult) -> None:
        """Append the execution to the job's output file. Errors are not fatal."""
        log = OutputLog(self.output_path(job))
        try:
            log.append(result.success, result.stdout, result.stderr)
            if log.rotate_if_needed(job.rotate_size, job.rotate_count):
                logger.info("Rotated output file", extra={"job_id": job.id, "path": str(log.path)})
        except OSError as e:
            logger.warning(
                f"Failed to write output file: {e}",
                extra={"job_id": job.id, "path": str(log.path)},
            )


async def run_async(
    worker_id: str | None = None,
    database_url: str | None = None,
    poll_interval: float | None = None,
    metrics_port: int | None = None,
) -> None:
    """Run one registered worker in this process until it is stopped."""
    setup_logging()
    setup_tracing()

    session_factory = await open_store(database_url)
    registry = WorkerRegistry(session_factory)
    queue = JobQueue(session_factory)
    worker = Worker(queue, registry, worker_id=worker_id, poll_interval=poll_interval)
    bind_context(worker_id=worker.worker_id)

    if metrics_port:
        get_metrics().serve(metrics_port, host=get_settings().metrics_host)

    await registry.register(worker.worker_id, os.getpid())

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(worker.stop()))

    try:
        await worker.start()
    finally:
        try:
            await registry.unregister(worker.worker_id)
        except QueueError:
            logger.exception("Failed to unregister worker", extra={"worker_id": worker.worker_id})
        await close_db()


def run(
    worker_id: str | None = None,
    database_url: str | None = None,
    poll_interval: float | None = None,
    metrics_port: int | None = None,
) -> None:
    """Run the worker."""
    asyncio.run(run_async(worker_id, database_url, poll_interval, metrics_port))


async def _alive_workers(database_url: str | None) -> list[WorkerInfo]:
    session_factory = await open_store(database_url)
    try:
        return await WorkerRegistry(session_factory).list_alive()
    finally:
        await close_db()


def start_workers(
    count: int = 1,
    database_url: str | None = None,
    poll_interval: float | None = None,
    metrics_port: int | None = None,
) -> int:
    """
    Start `count` worker processes and wait for them to exit.

    Each worker runs in its own process and registers its own PID.
    SIGTERM to this process is forwarded to every worker.

    Args:
        count: Number of workers.
        database_url: Optional URL overriding the configured one.
        poll_interval: Seconds each worker sleeps after a poll.
        metrics_port: First port of the per-worker metrics endpoints.

    Returns:
        The number of workers started.

    Raises:
        QueueError: If count is below 1 or workers are already running.
    """
    if count < 1:
        raise QueueError("Worker count must be at least 1")

    alive = asyncio.run(_alive_workers(database_url))
    if alive:
        raise QueueError(
            f"{len(alive)} worker(s) already running. Use 'queuectl worker stop' first."
        )

    processes = [
        multiprocessing.Process(
            target=run,
            kwargs={
                "database_url": database_url,
                "poll_interval": poll_interval,
                "metrics_port": metrics_port + i if metrics_port else None,
            },
            name=f"queuectl-worker-{i + 1}",
        )
        for i in range(count)
    ]
    for process in processes:
        process.start()

    logger.info(f"Started {count} worker(s)", extra={"pids": [p.pid for p in processes]})

    def _forward(signum, frame):
        for process in processes:
            if process.is_alive():
                process.terminate()

    signal.signal(signal.SIGTERM, _forward)
    # Workers share the terminal's process group and get SIGINT themselves
    signal.signal(signal.SIGINT, signal.SIG_IGN)

    for process in processes:
        process.join()

    return count


async def stop_workers_async(registry: WorkerRegistry) -> int:
    """Unregister every worker. Returns the number of registrations removed."""
    removed = await registry.clear()
    logger.info(f"Signalled {removed} worker(s) to stop")
    return removed


def stop_workers(database_url: str | None = None) -> int:
    """Ask every running worker to exit after its current job."""

    async def _stop() -> int:
        session_factory = await open_store(database_url)
        try:
            return await stop_workers_async(WorkerRegistry(session_factory))
        finally:
            await close_db()

    return asyncio.run(_stop())
