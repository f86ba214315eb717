"""
Reading and following job output files.
"""

import time
from collections.abc import Callable, Iterator
from pathlib import Path

# Characters printed by `job tail` before following
TAIL_CHARS = 1000
# Characters of the output file shown by `job show`
SHOW_TAIL_CHARS = 4000
FOLLOW_INTERVAL_SECONDS = 0.5


def read_tail(path: Path, max_chars: int = TAIL_CHARS) -> str:
    with path.open("rb") as fh:
        fh.seek(0, 2)
        fh.seek(max(0, fh.tell() - max_chars))
        return fh.read().decode("utf-8", errors="replace")


def follow(
    path: Path,
    interval: float = FOLLOW_INTERVAL_SECONDS,
    should_stop: Callable[[], bool] = lambda: False,
) -> Iterator[str]:
    """
    Yield text appended to a file, polling its size.

    When the file shrinks it was rotated; reading restarts from its beginning.
    """
    position = path.stat().st_size
    while not should_stop():
        time.sleep(interval)
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            continue
        if size < position:
            position = 0
        if size == position:
            continue
        with path.open("rb") as fh:
            fh.seek(position)
            chunk = fh.read()
        position += len(chunk)
        yield chunk.decode("utf-8", errors="replace")
