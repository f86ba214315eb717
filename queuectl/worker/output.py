"""
Job output files.

Each execution of a job with save_output appends a block to the job's log:

    === 2025-01-01T12:00:00.000Z | SUCCESS ===
    STDOUT:
    ...
    STDERR:
    ...

When the file grows past rotate_size bytes it is rotated: <file>.1 is the
most recent generation, at most rotate_count generations are kept.
"""

from datetime import datetime
from pathlib import Path

from queuectl.types.job import utc_now


def iso_timestamp(value: datetime | None = None) -> str:
    """Naive UTC datetime as an ISO-8601 string with a Z suffix."""
    return (value or utc_now()).isoformat(timespec="milliseconds") + "Z"


def format_block(
    success: bool,
    stdout: str | None,
    stderr: str | None,
    now: datetime | None = None,
) -> str:
    header = f"\n=== {iso_timestamp(now)} | {'SUCCESS' if success else 'FAIL'} ===\n"
    body = ""
    if stdout:
        body += f"STDOUT:\n{stdout}\n"
    if stderr:
        body += f"STDERR:\n{stderr}\n"
    return header + body


class OutputLog:
    """A job's output file and its rotation generations."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def generation(self, number: int) -> Path:
        """Path of rotation generation `number` (1 is the most recent)."""
        return self.path.with_name(f"{self.path.name}.{number}")

    def generations(self) -> list[Path]:
        """Existing numbered generations, most recent first."""
        found = []
        for candidate in self.path.parent.glob(f"{self.path.name}.*"):
            suffix = candidate.name[len(self.path.name) + 1 :]
            if suffix.isdigit():
                found.append((int(suffix), candidate))
        return [path for _, path in sorted(found)]

    def append(
        self,
        success: bool,
        stdout: str | None,
        stderr: str | None,
        now: datetime | None = None,
    ) -> None:
        """Append one execution block, creating the file on first use."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(format_block(success, stdout, stderr, now))

    def needs_rotation(self, rotate_size: int | None) -> bool:
        if not rotate_size or not self.path.exists():
            return False
        return self.path.stat().st_size > rotate_size

    def rotate(self, rotate_count: int, now: datetime | None = None) -> None:
        """
        Shift generations up by one and start a fresh live file.

        The generation beyond rotate_count is dropped; the live file becomes
        generation 1 and is replaced by a file holding only a rotation header.
        """
        count = max(1, rotate_count)

        self.generation(count).unlink(missing_ok=True)
        for number in range(count - 1, 0, -1):
            source = self.generation(number)
            if source.exists():
                source.replace(self.generation(number + 1))

        self.path.replace(self.generation(1))
        self.path.write_text(f"Rotated at {iso_timestamp(now)}\n", encoding="utf-8")

    def rotate_if_needed(
        self,
        rotate_size: int | None,
        rotate_count: int,
        now: datetime | None = None,
    ) -> bool:
        """Rotate when the live file exceeds rotate_size. Returns True if it did."""
        if not self.needs_rotation(rotate_size):
            return False
        self.rotate(rotate_count, now)
        return True
