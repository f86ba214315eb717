"""
Core module.
Contains the job queue and dispatcher.
"""

from queuectl.core.queue import JobQueue

__all__ = ["JobQueue"]
