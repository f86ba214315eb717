"""
Integration tests for the command-line interface.
"""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from queuectl.cli.main import cli


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def invoke(runner: CliRunner, *args: str):
    return runner.invoke(cli, list(args), catch_exceptions=False)


class TestEnqueueCommand:
    """Tests for `queuectl enqueue`."""

    def test_enqueue_and_list(self, runner: CliRunner):
        result = invoke(runner, "enqueue", '{"id": "job1", "command": "echo hi"}')

        assert result.exit_code == 0
        assert "Job enqueued successfully" in result.output
        assert "job1" in result.output

        listed = invoke(runner, "list", "--state", "pending")
        assert listed.exit_code == 0
        assert "job1" in listed.output

    def test_enqueue_lenient_json(self, runner: CliRunner):
        result = invoke(runner, "enqueue", "{id:job1,command:echo hi}")

        assert result.exit_code == 0
        assert "job1" in result.output

    def test_enqueue_from_file_with_overrides(self, runner: CliRunner, tmp_path: Path):
        spec = tmp_path / "job.json"
        spec.write_text(json.dumps({"id": "job1", "command": "true"}))

        result = invoke(runner, "enqueue", "--file", str(spec), "--max-retries", "7", "--priority", "4")

        assert result.exit_code == 0
        assert "Max Retries: 7" in result.output

    def test_enqueue_short_file_option(self, runner: CliRunner, tmp_path: Path):
        spec = tmp_path / "job.json"
        spec.write_text(json.dumps({"id": "job1", "command": "true"}))

        result = invoke(runner, "enqueue", "-f", str(spec))

        assert result.exit_code == 0
        assert "job1" in result.output

    def test_enqueue_with_output_dir(self, runner: CliRunner, tmp_path: Path):
        result = invoke(
            runner, "enqueue", '{"id": "job1", "command": "true"}', "--output-dir", str(tmp_path / "logs")
        )

        assert result.exit_code == 0
        assert "job1.log" in result.output

    def test_enqueue_without_command_fails(self, runner: CliRunner):
        result = invoke(runner, "enqueue", '{"id": "job1"}')

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "must have a command" in result.output

    def test_enqueue_unparseable_fails(self, runner: CliRunner):
        result = invoke(runner, "enqueue", "not json")

        assert result.exit_code == 1
        assert "Error: Failed to enqueue job" in result.output

    def test_enqueue_rejects_negative_retries(self, runner: CliRunner):
        result = invoke(runner, "enqueue", '{"command": "true"}', "--max-retries", "-1")
        assert result.exit_code != 0


class TestInspectionCommands:
    """Tests for status, list, job and dlq commands."""

    def test_status_empty(self, runner: CliRunner):
        result = invoke(runner, "status")

        assert result.exit_code == 0
        assert "Total Jobs" in result.output
        assert "No workers currently running" in result.output

    def test_list_empty(self, runner: CliRunner):
        result = invoke(runner, "list")

        assert result.exit_code == 0
        assert "No jobs found." in result.output

    def test_job_show(self, runner: CliRunner):
        invoke(runner, "enqueue", '{"id": "job1", "command": "echo hi", "priority": 3}')

        result = invoke(runner, "job", "show", "job1")

        assert result.exit_code == 0
        assert "echo hi" in result.output
        assert "Priority: 3" in result.output
        assert "[no stdout]" in result.output

    def test_job_show_missing(self, runner: CliRunner):
        result = invoke(runner, "job", "show", "nope")

        assert result.exit_code == 1
        assert "Error: Job nope not found" in result.output

    def test_job_tail_without_output_file(self, runner: CliRunner):
        invoke(runner, "enqueue", '{"id": "job1", "command": "true"}')

        result = invoke(runner, "job", "tail", "job1")

        assert result.exit_code == 1
        assert "Output file not found" in result.output

    def test_job_tail_prints_file(self, runner: CliRunner, tmp_path: Path):
        output_file = tmp_path / "job1.log"
        output_file.write_text("\n=== 2025-01-01T00:00:00.000Z | SUCCESS ===\nSTDOUT:\nhello\n")
        invoke(
            runner,
            "enqueue",
            json.dumps({"id": "job1", "command": "true", "save_output": True, "output_file": str(output_file)}),
        )

        result = invoke(runner, "job", "tail", "job1")

        assert result.exit_code == 0
        assert "STDOUT:\nhello" in result.output

    def test_dlq_empty(self, runner: CliRunner):
        result = invoke(runner, "dlq", "list")

        assert result.exit_code == 0
        assert "No jobs in DLQ." in result.output

    def test_dlq_retry_requires_dead_job(self, runner: CliRunner):
        invoke(runner, "enqueue", '{"id": "job1", "command": "true"}')

        result = invoke(runner, "dlq", "retry", "job1")

        assert result.exit_code == 1
        assert "Error: Job job1 is not in dead state" in result.output

    def test_metrics_summary(self, runner: CliRunner):
        invoke(runner, "enqueue", '{"command": "true"}')

        result = invoke(runner, "metrics")

        assert result.exit_code == 0
        assert "Total jobs: 1" in result.output
        assert "Active workers: 0" in result.output


class TestConfigCommands:
    """Tests for `queuectl config`."""

    def test_set_then_get(self, runner: CliRunner):
        result = invoke(runner, "config", "set", "max-retries", "5")
        assert result.exit_code == 0

        result = invoke(runner, "config", "get", "max-retries")
        assert result.output.strip().splitlines()[-1] == "5"

    def test_new_jobs_use_config(self, runner: CliRunner):
        invoke(runner, "config", "set", "max-retries", "6")

        result = invoke(runner, "enqueue", '{"command": "true"}')

        assert "Max Retries: 6" in result.output

    def test_get_all(self, runner: CliRunner):
        result = invoke(runner, "config", "get")

        assert result.exit_code == 0
        assert "maxRetries" in result.output
        assert "jobTimeout" in result.output

    def test_invalid_key(self, runner: CliRunner):
        result = invoke(runner, "config", "set", "retries", "5")

        assert result.exit_code == 1
        assert "Error: Invalid configuration key" in result.output


class TestWorkerCommands:
    """Tests for `queuectl worker`."""

    def test_stop_without_workers(self, runner: CliRunner):
        result = invoke(runner, "worker", "stop")

        assert result.exit_code == 0
        assert "No workers running." in result.output
