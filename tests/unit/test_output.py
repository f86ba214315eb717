"""
Unit tests for job output files and rotation.
"""

from datetime import datetime
from pathlib import Path

from queuectl.worker.output import OutputLog, format_block, iso_timestamp

NOW = datetime(2025, 1, 2, 3, 4, 5, 678000)


class TestFormat:
    """Tests for the block format."""

    def test_success_block(self):
        block = format_block(True, "hello", None, NOW)

        assert block == "\n=== 2025-01-02T03:04:05.678Z | SUCCESS ===\nSTDOUT:\nhello\n"

    def test_failure_block_with_both_streams(self):
        block = format_block(False, "out", "err", NOW)

        assert block.startswith("\n=== 2025-01-02T03:04:05.678Z | FAIL ===\n")
        assert block.endswith("STDOUT:\nout\nSTDERR:\nerr\n")

    def test_empty_output_is_header_only(self):
        assert format_block(True, None, None, NOW) == "\n=== 2025-01-02T03:04:05.678Z | SUCCESS ===\n"

    def test_iso_timestamp(self):
        assert iso_timestamp(NOW) == "2025-01-02T03:04:05.678Z"


class TestOutputLog:
    """Tests for OutputLog."""

    def test_append_creates_parent_directories(self, tmp_path: Path):
        log = OutputLog(tmp_path / "nested" / "dir" / "job.log")

        log.append(True, "one", None, NOW)
        log.append(False, None, "two", NOW)

        content = log.path.read_text()
        assert content.count("=== ") == 2
        assert "STDOUT:\none" in content
        assert "STDERR:\ntwo" in content

    def test_no_rotation_below_limit(self, tmp_path: Path):
        log = OutputLog(tmp_path / "job.log")
        log.append(True, "small", None, NOW)

        assert log.rotate_if_needed(10_000, 2) is False
        assert log.rotate_if_needed(None, 2) is False
        assert log.generations() == []

    def test_rotation_moves_live_file(self, tmp_path: Path):
        log = OutputLog(tmp_path / "job.log")
        log.append(True, "x" * 100, None, NOW)
        before = log.path.read_text()

        assert log.rotate_if_needed(50, 2, NOW) is True

        assert log.generation(1).read_text() == before
        assert log.path.read_text() == "Rotated at 2025-01-02T03:04:05.678Z\n"

    def test_rotation_keeps_at_most_rotate_count(self, tmp_path: Path):
        log = OutputLog(tmp_path / "job.log")

        for i in range(5):
            log.append(True, f"run-{i}-" + "x" * 100, None, NOW)
            log.rotate_if_needed(50, 2, NOW)
            assert len(log.generations()) == min(2, i + 1)

        assert log.generations() == [log.generation(1), log.generation(2)]
        assert "run-4-" in log.generation(1).read_text()
        assert "run-3-" in log.generation(2).read_text()
        assert log.path.read_text().startswith("Rotated at ")
