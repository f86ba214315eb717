"""
Worker module.
Polls the queue and executes jobs through the host shell.
"""

from queuectl.worker.executor import run_command
from queuectl.worker.main import Worker, run, start_workers, stop_workers
from queuectl.worker.output import OutputLog
from queuectl.worker.registry import WorkerRegistry

__all__ = [
    "Worker",
    "WorkerRegistry",
    "OutputLog",
    "run",
    "run_command",
    "start_workers",
    "stop_workers",
]
