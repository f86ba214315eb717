"""
Database module.
Contains database connection, models, and repository implementations.
"""

from queuectl.db.connection import (
    close_db,
    create_engine,
    get_async_session,
    get_engine,
    get_session_factory,
    init_db,
    session_scope,
)
from queuectl.db.models import Base, ConfigEntry, JobRecord, WorkerRecord
from queuectl.db.repository import ConfigRepository, JobRepository, WorkerRepository

__all__ = [
    "get_async_session",
    "get_session_factory",
    "session_scope",
    "create_engine",
    "get_engine",
    "init_db",
    "close_db",
    "Base",
    "JobRecord",
    "WorkerRecord",
    "ConfigEntry",
    "JobRepository",
    "WorkerRepository",
    "ConfigRepository",
]
