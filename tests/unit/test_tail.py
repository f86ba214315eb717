"""
Unit tests for reading and following output files.
"""

from pathlib import Path

from queuectl.cli.tail import follow, read_tail


def _stop_after(calls: int, on_first=None):
    seen = []

    def should_stop() -> bool:
        seen.append(1)
        if len(seen) == 1 and on_first is not None:
            on_first()
        return len(seen) > calls

    return should_stop


class TestReadTail:
    def test_short_file_returned_whole(self, tmp_path: Path):
        path = tmp_path / "job.log"
        path.write_text("hello\n")

        assert read_tail(path, 100) == "hello\n"

    def test_only_last_characters(self, tmp_path: Path):
        path = tmp_path / "job.log"
        path.write_text("a" * 50 + "tail")

        assert read_tail(path, 4) == "tail"


class TestFollow:
    def test_yields_appended_text(self, tmp_path: Path):
        path = tmp_path / "job.log"
        path.write_text("abc")

        def append():
            with path.open("a") as fh:
                fh.write("def")

        chunks = list(follow(path, interval=0, should_stop=_stop_after(3, append)))

        assert chunks == ["def"]

    def test_restarts_after_rotation(self, tmp_path: Path):
        path = tmp_path / "job.log"
        path.write_text("abcdefghij")

        chunks = list(
            follow(path, interval=0, should_stop=_stop_after(3, lambda: path.write_text("Rotated\n")))
        )

        assert chunks == ["Rotated\n"]
