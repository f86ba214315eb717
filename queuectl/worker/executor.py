"""
Shell command execution.

Runs a job's command through the host shell with a wall-clock timeout and
classifies the outcome. Failures are returned as data, never raised.
"""

import asyncio
import logging
import os
import signal
import time

from queuectl.constants import (
    ERROR_COMMAND_NOT_FOUND,
    ERROR_TIMEOUT,
    SHELL_COMMAND_NOT_FOUND_EXIT,
)
from queuectl.types.job import ExecutionResult

logger = logging.getLogger(__name__)

# Grace period for pipes to drain once a timed-out process group is killed
DRAIN_TIMEOUT_SECONDS = 5.0


def _decode(data: bytes | None) -> str | None:
    if not data:
        return None
    text = data.decode("utf-8", errors="replace").strip()
    return text or None


def _kill(process: asyncio.subprocess.Process) -> None:
    """Kill the shell and everything it started."""
    try:
        if hasattr(os, "killpg"):
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        pass


def classify(
    exit_code: int | None,
    stdout: str | None,
    stderr: str | None,
    timed_out: bool = False,
    duration_ms: float | None = None,
) -> ExecutionResult:
    """
    Map a finished process onto an execution result.

    - exit 0: success
    - timeout, or the child ended by a signal: "Job timed out"
    - shell exit 127: "Command not found"
    - any other exit: the stderr text, or the exit code when stderr is empty
    """
    if timed_out or (exit_code is not None and exit_code < 0):
        error = ERROR_TIMEOUT
        timed_out = True
    elif exit_code == 0:
        error = None
    elif exit_code == SHELL_COMMAND_NOT_FOUND_EXIT:
        error = ERROR_COMMAND_NOT_FOUND
    else:
        error = stderr or f"Command exited with code {exit_code}"

    return ExecutionResult(
        success=error is None,
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        error=error,
        timed_out=timed_out,
        duration_ms=duration_ms,
    )


async def run_command(command: str, timeout_ms: int) -> ExecutionResult:
    """
    Run a command through the host shell.

    Args:
        command: Shell command line.
        timeout_ms: Wall-clock limit in milliseconds. The whole process
            group is killed when it is exceeded.

    Returns:
        ExecutionResult describing the outcome.
    """
    started = time.monotonic()

    try:
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            stdin=asyncio.subprocess.DEVNULL,
            start_new_session=True,
        )
    except FileNotFoundError:
        return classify(SHELL_COMMAND_NOT_FOUND_EXIT, None, None)
    except OSError as e:
        return classify(None, None, str(e))

    stdout_task = asyncio.create_task(process.stdout.read())
    stderr_task = asyncio.create_task(process.stderr.read())

    timed_out = False
    try:
        await asyncio.wait_for(process.wait(), timeout=timeout_ms / 1000)
    except TimeoutError:
        timed_out = True
        logger.warning(
            "Command exceeded timeout, killing it",
            extra={"command": command, "timeout_ms": timeout_ms},
        )
        _kill(process)
        await process.wait()

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            asyncio.gather(stdout_task, stderr_task),
            timeout=DRAIN_TIMEOUT_SECONDS if timed_out else None,
        )
    except TimeoutError:
        stdout_bytes = stderr_bytes = None

    duration_ms = (time.monotonic() - started) * 1000
    return classify(
        process.returncode,
        _decode(stdout_bytes),
        _decode(stderr_bytes),
        timed_out=timed_out,
        duration_ms=duration_ms,
    )
