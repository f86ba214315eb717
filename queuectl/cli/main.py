"""CLI entrypoint for queuectl."""

import asyncio
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

import rich_click as click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from queuectl import __version__
from queuectl.cli.parsing import parse_job_spec, read_spec_file
from queuectl.cli.tail import SHOW_TAIL_CHARS, TAIL_CHARS, follow, read_tail
from queuectl.config import get_settings
from queuectl.constants import DEFAULT_ROTATE_COUNT, DEFAULT_ROTATE_SIZE_BYTES, JobState
from queuectl.core.queue import JobQueue
from queuectl.db import close_db
from queuectl.errors import JobNotFound, QueueError
from queuectl.observability.logging import setup_logging
from queuectl.reaper import open_store
from queuectl.types.job import Job, to_naive_utc, utc_now
from queuectl.worker import start_workers, stop_workers

click.rich_click.USE_MARKDOWN = True

console = Console()
err_console = Console(stderr=True)

STATE_STYLES = {
    JobState.PENDING: "yellow",
    JobState.PROCESSING: "blue",
    JobState.COMPLETED: "green",
    JobState.FAILED: "yellow",
    JobState.DEAD: "red",
}


def _fail(message: str) -> None:
    err_console.print(f"[bold red]Error:[/bold red] {escape(message)}", soft_wrap=True)
    sys.exit(1)


def _run(operation) -> Any:
    """Open the store, run `operation(queue)` and close the store again."""

    async def _main() -> Any:
        session_factory = await open_store()
        try:
            return await operation(JobQueue(session_factory))
        finally:
            await close_db()

    try:
        return asyncio.run(_main())
    except QueueError as e:
        _fail(str(e))


def _timestamp(value: datetime | None) -> str:
    return value.isoformat(timespec="seconds") if value else "-"


def _state(state: JobState) -> str:
    return f"[{STATE_STYLES[state]}]{state.value}[/{STATE_STYLES[state]}]"


def _jobs_table(jobs: list[Job], title: str, show_error: bool = False) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Command")
    table.add_column("State")
    table.add_column("Attempts", justify="right")
    table.add_column("Priority", justify="right")
    table.add_column("Next run")
    if show_error:
        table.add_column("Error", style="red")

    for job in jobs:
        next_run = job.next_retry_at if job.state == JobState.FAILED else job.run_at
        row = [
            job.id,
            escape(job.command),
            _state(job.state),
            f"{job.attempts}/{job.max_retries}",
            str(job.priority),
            _timestamp(next_run),
        ]
        if show_error:
            row.append(escape(job.error or "-"))
        table.add_row(*row)
    return table


def _parse_run_at(value: str) -> datetime:
    try:
        return to_naive_utc(datetime.fromisoformat(value))
    except ValueError:
        _fail(f"--run-at must be an ISO-8601 timestamp, got {value!r}")


@click.group()
@click.version_option(version=__version__, prog_name="queuectl")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Log at the configured level instead of warnings only.")
def cli(verbose: bool) -> None:
    """queuectl: a persistent background job queue for shell commands."""
    # Workers reconfigure logging in their own processes
    setup_logging(level=None if verbose or get_settings().debug else "WARNING")


# ---------------- Enqueue ----------------


@cli.command()
@click.argument("job", required=False)
@click.option(
    "--file",
    "-f",
    "spec_file",
    type=click.Path(path_type=Path),
    default=None,
    help="Read the job JSON from a file.",
)
@click.option("--max-retries", type=click.IntRange(min=0), default=None, help="Retries after the first failure.")
@click.option(
    "--backoff-base",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Retry delay is backoff-base ** attempts seconds.",
)
@click.option("--job-timeout", type=click.IntRange(min=1), default=None, help="Timeout in milliseconds.")
@click.option("--run-at", default=None, help="ISO-8601 time before which the job is not started.")
@click.option("--delay", type=click.IntRange(min=0), default=None, help="Start no earlier than N seconds from now.")
@click.option("--priority", type=int, default=None, help="Higher runs first.")
@click.option("--save-output", is_flag=True, default=False, help="Append each run's output to a log file.")
@click.option(
    "--output-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory for the output log (implies --save-output).",
)
@click.option("--rotate-size", type=click.IntRange(min=1), default=None, help="Rotate the output log past N bytes.")
@click.option("--rotate-count", type=click.IntRange(min=1), default=None, help="Rotated generations to keep.")
def enqueue(
    job: str | None,
    spec_file: Path | None,
    max_retries: int | None,
    backoff_base: float | None,
    job_timeout: int | None,
    run_at: str | None,
    delay: int | None,
    priority: int | None,
    save_output: bool,
    output_dir: Path | None,
    rotate_size: int | None,
    rotate_count: int | None,
) -> None:
    """
    Add a job to the queue.

    `JOB` is a JSON object such as `{"command": "echo hi"}`, or `@path` to a
    file holding one.
    """
    try:
        if spec_file is not None:
            job = read_spec_file(spec_file)
        if not job:
            _fail("Provide job JSON, @path or --file")
        data = parse_job_spec(job)
    except QueueError as e:
        _fail(f"Failed to enqueue job: {e}")

    if max_retries is not None:
        data["max_retries"] = max_retries
    if backoff_base is not None:
        data["backoff_base"] = backoff_base
    if job_timeout is not None:
        data["job_timeout"] = job_timeout
    if run_at is not None:
        data["run_at"] = _parse_run_at(run_at)
    elif delay is not None:
        data["run_at"] = utc_now() + timedelta(seconds=delay)
    if priority is not None:
        data["priority"] = priority

    if save_output or output_dir is not None:
        directory = (output_dir or get_settings().resolved_output_dir).resolve()
        job_id = data.setdefault("id", str(uuid4()))
        data["save_output"] = True
        data.setdefault("output_file", str(directory / f"{job_id}.log"))
        data["rotate_size"] = rotate_size or data.get("rotate_size") or DEFAULT_ROTATE_SIZE_BYTES
        data["rotate_count"] = rotate_count or data.get("rotate_count") or DEFAULT_ROTATE_COUNT

    created = _run(lambda queue: queue.enqueue(data))

    console.print("[green]✓[/green] Job enqueued successfully!")
    console.print(f"[dim]Job ID:[/dim] [cyan]{created.id}[/cyan]", soft_wrap=True)
    console.print(f"[dim]Command:[/dim] {escape(created.command)}", soft_wrap=True)
    console.print(f"[dim]State:[/dim] {created.state.value}")
    console.print(f"[dim]Max Retries:[/dim] {created.max_retries}")
    if created.run_at:
        console.print(f"[dim]Run At:[/dim] {_timestamp(created.run_at)}")
    if created.output_file:
        console.print(f"[dim]Output file:[/dim] {escape(created.output_file)}", soft_wrap=True)


# ---------------- Workers ----------------


@cli.group()
def worker() -> None:
    """Start and stop worker processes."""


@worker.command("start")
@click.option("--count", type=click.IntRange(min=1), default=1, show_default=True, help="Number of workers.")
@click.option("--poll-interval", type=click.FloatRange(min=0), default=None, help="Seconds between polls.")
@click.option(
    "--metrics-port",
    type=click.IntRange(min=1, max=65535),
    default=None,
    help="Expose each worker's Prometheus metrics from this port upwards.",
)
def worker_start(count: int, poll_interval: float | None, metrics_port: int | None) -> None:
    """Start workers in the foreground. Ctrl+C stops them after their current job."""
    console.print(f"[green]Starting {count} worker(s).[/green] Press Ctrl+C to stop.")
    try:
        start_workers(count, poll_interval=poll_interval, metrics_port=metrics_port)
    except QueueError as e:
        _fail(str(e))
    console.print("[green]✓[/green] Workers stopped.")


@worker.command("stop")
def worker_stop() -> None:
    """Ask every running worker to exit after its current job."""
    try:
        removed = stop_workers()
    except QueueError as e:
        _fail(str(e))

    if removed:
        console.print(f"[green]✓[/green] Signalled {removed} worker(s) to stop.")
    else:
        console.print("No workers running.")


# ---------------- Status and listing ----------------


@cli.command()
def status() -> None:
    """Show job counts per state and the active workers."""

    async def _collect(queue: JobQueue):
        return await queue.get_stats(), await queue.list_workers()

    stats, workers = _run(_collect)

    table = Table(title="QueueCTL Status")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Total Jobs", str(stats["total"]))
    for state in JobState:
        label = "Dead (DLQ)" if state == JobState.DEAD else state.value.capitalize()
        table.add_row(label, _state_count(state, stats[state.value]))
    console.print(table)

    if not workers:
        console.print("[dim]No workers currently running[/dim]")
        return

    workers_table = Table(title="Active Workers")
    workers_table.add_column("Worker ID", style="cyan", no_wrap=True)
    workers_table.add_column("PID", justify="right")
    workers_table.add_column("Started At")
    for info in workers:
        workers_table.add_row(info.id, str(info.pid), _timestamp(info.started_at))
    console.print(workers_table)


def _state_count(state: JobState, count: int) -> str:
    return f"[{STATE_STYLES[state]}]{count}[/{STATE_STYLES[state]}]"


@cli.command("list")
@click.option(
    "--state",
    type=click.Choice([state.value for state in JobState]),
    default=None,
    help="Only jobs in this state.",
)
def list_jobs(state: str | None) -> None:
    """List jobs in insertion order."""
    selected = JobState(state) if state else None
    jobs = _run(lambda queue: queue.list_jobs(selected))

    if not jobs:
        console.print("No jobs found.")
        return
    console.print(_jobs_table(jobs, title=f"Jobs ({state})" if state else "Jobs"))


# ---------------- Dead Letter Queue ----------------


@cli.group()
def dlq() -> None:
    """Dead letter queue operations."""


@dlq.command("list")
def dlq_list() -> None:
    """List jobs that exhausted their retries."""
    jobs = _run(lambda queue: queue.list_jobs(JobState.DEAD))

    if not jobs:
        console.print("No jobs in DLQ.")
        return
    console.print(_jobs_table(jobs, title="Dead Letter Queue", show_error=True))


@dlq.command("retry")
@click.argument("job_id")
def dlq_retry(job_id: str) -> None:
    """Move a dead job back to pending with its attempts reset."""
    job = _run(lambda queue: queue.retry_dead_job(job_id))
    console.print(f"[green]✓[/green] Job {job.id} moved back to pending.")


# ---------------- Jobs ----------------


@cli.group("job")
def job_group() -> None:
    """Inspect individual jobs."""


async def _require_job(queue: JobQueue, job_id: str) -> Job:
    found = await queue.get_job(job_id)
    if found is None:
        raise JobNotFound(job_id)
    return found


def _output_path(job: Job) -> Path:
    if job.output_file:
        return Path(job.output_file)
    return get_settings().resolved_output_dir / f"{job.id}.log"


@job_group.command("show")
@click.argument("job_id")
def job_show(job_id: str) -> None:
    """Show a job's details and its latest output."""
    job = _run(lambda queue: _require_job(queue, job_id))

    console.print("\n[bold blue]Job Details[/bold blue]\n")
    console.print(f"[dim]ID:[/dim] [cyan]{job.id}[/cyan]", soft_wrap=True)
    console.print(f"[dim]Command:[/dim] {escape(job.command)}", soft_wrap=True)
    console.print(f"[dim]State:[/dim] {_state(job.state)}")
    console.print(f"[dim]Attempts:[/dim] {job.attempts}/{job.max_retries}")
    if job.run_at:
        console.print(f"[dim]Run At:[/dim] {_timestamp(job.run_at)}")
    if job.priority:
        console.print(f"[dim]Priority:[/dim] {job.priority}")
    if job.next_retry_at:
        console.print(f"[dim]Next Retry At:[/dim] {_timestamp(job.next_retry_at)}")
    if job.error:
        console.print(f"[dim]Error:[/dim] [red]{escape(job.error)}[/red]", soft_wrap=True)
    console.print(f"[dim]Created At:[/dim] {_timestamp(job.created_at)}")
    console.print(f"[dim]Updated At:[/dim] {_timestamp(job.updated_at)}")

    console.print("\n[bold blue]Output[/bold blue]\n")
    if job.save_output:
        path = _output_path(job)
        console.print(f"[dim]Output file:[/dim] {escape(str(path))}", soft_wrap=True)
        if path.exists():
            click.echo("--- FILE TAIL ---")
            click.echo(read_tail(path, SHOW_TAIL_CHARS))
            click.echo("--- END ---")
            return

    output = job.output
    console.print("[dim]Stdout:[/dim]")
    click.echo(output.stdout if output and output.stdout else "[no stdout]")
    console.print("[dim]Stderr:[/dim]")
    click.echo(output.stderr if output and output.stderr else "[no stderr]")


@job_group.command("tail")
@click.argument("job_id")
@click.option("--follow", "-f", "follow_output", is_flag=True, default=False, help="Keep printing new output.")
def job_tail(job_id: str, follow_output: bool) -> None:
    """Print the end of a job's output file."""
    job = _run(lambda queue: _require_job(queue, job_id))

    path = _output_path(job)
    if not path.exists():
        _fail(f"Output file not found: {path}")

    click.echo(read_tail(path, TAIL_CHARS), nl=False)
    if not follow_output:
        return

    try:
        for chunk in follow(path):
            click.echo(chunk, nl=False)
    except KeyboardInterrupt:
        pass


# ---------------- Config management ----------------


@cli.group()
def config() -> None:
    """Queue defaults applied to newly enqueued jobs."""


@config.command("get")
@click.argument("key", required=False)
def config_get(key: str | None) -> None:
    """Show one configuration value, or all of them."""
    value = _run(lambda queue: queue.get_config(key))

    if key is not None:
        click.echo(value)
        return

    table = Table(title="Configuration")
    table.add_column("Key", style="cyan")
    table.add_column("Value", justify="right")
    for name, current in value.items():
        table.add_row(name, str(current))
    console.print(table)


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str) -> None:
    """Set a configuration value (max-retries, backoff-base, job-timeout)."""
    stored = _run(lambda queue: queue.set_config(key, value))
    console.print(f"[green]✓[/green] {key} set to {stored}")


# ---------------- Metrics ----------------


@cli.command()
@click.option(
    "--serve",
    "serve_port",
    type=click.IntRange(min=0, max=65535),
    is_flag=False,
    flag_value=0,
    default=None,
    help="Serve the dashboard and Prometheus metrics over HTTP (optionally on PORT).",
)
def metrics(serve_port: int | None) -> None:
    """Print queue metrics, or serve them over HTTP."""
    if serve_port is not None:
        from queuectl.api.main import run

        port = serve_port or get_settings().metrics_port
        console.print(f"[green]Metrics server listening on http://{get_settings().metrics_host}:{port}[/green]")
        run(port=port)
        return

    async def _collect(queue: JobQueue):
        return await queue.get_stats(), await queue.list_workers()

    stats, workers = _run(_collect)

    console.print("\n[bold blue]Queue Metrics[/bold blue]\n")
    console.print(f"Total jobs: {stats['total']}")
    for state in JobState:
        console.print(f"{state.value.capitalize()}: {stats[state.value]}")
    console.print(f"\nActive workers: {len(workers)}")


if __name__ == "__main__":  # pragma: no cover
    cli()
