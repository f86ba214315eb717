"""
Reaper module.
Contains the stale lock reaper and the process liveness check.
"""

from queuectl.reaper.liveness import LivenessCheck, is_process_alive
from queuectl.reaper.main import Reaper, open_store

__all__ = ["Reaper", "open_store", "is_process_alive", "LivenessCheck"]
