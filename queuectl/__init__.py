"""
queuectl

A persistent, multi-process job queue: clients submit shell commands as jobs,
independent worker processes poll a shared SQLite store, execute them and
record outcomes with retry/backoff and dead-lettering.
"""

__version__ = "1.0.0"
