"""
Unit tests for shell command execution.
"""

import pytest

from queuectl.constants import ERROR_COMMAND_NOT_FOUND, ERROR_TIMEOUT
from queuectl.worker.executor import classify, run_command


class TestRunCommand:
    """Tests for run_command against the host shell."""

    async def test_success_captures_stdout(self):
        result = await run_command("echo hello", timeout_ms=5_000)

        assert result.success is True
        assert result.exit_code == 0
        assert result.stdout == "hello"
        assert result.stderr is None
        assert result.error is None
        assert result.duration_ms >= 0

    async def test_failure_uses_stderr(self):
        result = await run_command("echo broken >&2; exit 3", timeout_ms=5_000)

        assert result.success is False
        assert result.exit_code == 3
        assert result.error == "broken"
        assert result.stderr == "broken"

    async def test_failure_without_stderr_reports_exit_code(self):
        result = await run_command("exit 2", timeout_ms=5_000)

        assert result.error == "Command exited with code 2"

    async def test_command_not_found(self):
        result = await run_command("definitely-not-a-real-command-xyz", timeout_ms=5_000)

        assert result.success is False
        assert result.exit_code == 127
        assert result.error == ERROR_COMMAND_NOT_FOUND

    async def test_timeout_kills_process(self):
        result = await run_command("sleep 5", timeout_ms=200)

        assert result.success is False
        assert result.timed_out is True
        assert result.error == ERROR_TIMEOUT
        assert result.duration_ms < 4_000

    async def test_timeout_kills_children(self):
        result = await run_command("sleep 5; echo never", timeout_ms=200)

        assert result.timed_out is True
        assert result.stdout is None


class TestClassify:
    """Tests for outcome classification."""

    def test_signal_counts_as_timeout(self):
        result = classify(-9, None, None)

        assert result.timed_out is True
        assert result.error == ERROR_TIMEOUT

    @pytest.mark.parametrize(
        "exit_code,stderr,expected",
        [
            (0, None, None),
            (127, "sh: foo: not found", ERROR_COMMAND_NOT_FOUND),
            (1, "oops", "oops"),
            (1, None, "Command exited with code 1"),
        ],
    )
    def test_exit_codes(self, exit_code, stderr, expected):
        result = classify(exit_code, None, stderr)

        assert result.error == expected
        assert result.success is (expected is None)
