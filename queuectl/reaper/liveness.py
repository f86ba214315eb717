"""
Process liveness checks.

Kept behind a plain callable (pid -> bool) so the stale-lock cleanup does not
depend on how a platform answers the question.
"""

import os
from collections.abc import Callable

LivenessCheck = Callable[[int], bool]


def is_process_alive(pid: int) -> bool:
    """
    Check whether a process with the given PID exists (POSIX signal 0).

    A process owned by another user still counts as alive.
    """
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
