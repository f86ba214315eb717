"""
Database connection management.
Handles the async SQLAlchemy engine over SQLite and session creation.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from queuectl.config import get_settings
from queuectl.db.models import Base
from queuectl.errors import StorageError

logger = logging.getLogger(__name__)

# Global engine instance
_engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def _configure_sqlite(dbapi_connection: Any, connection_record: Any) -> None:
    """Apply per-connection pragmas so several processes can share the file."""
    busy_timeout = get_settings().sqlite_busy_timeout_ms
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout)}")
    cursor.close()


def _ensure_sqlite_directory(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return
    if url.database and url.database != ":memory:":
        Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """
    Create an async database engine.

    Args:
        database_url: Database URL. Defaults to the configured SQLite file.

    Returns:
        AsyncEngine: A new SQLAlchemy async engine.
    """
    settings = get_settings()
    url = database_url or settings.resolved_database_url
    _ensure_sqlite_directory(url)

    engine = create_async_engine(url, echo=settings.log_level.upper() == "DEBUG")
    if make_url(url).get_backend_name() == "sqlite":
        event.listen(engine.sync_engine, "connect", _configure_sqlite)
    return engine


def get_engine() -> AsyncEngine:
    """
    Get or create the async database engine.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    global _engine
    if _engine is None:
        _engine = create_engine()
    return _engine


async def create_schema(engine: AsyncEngine) -> None:
    """Create the jobs, workers and config tables if they do not exist."""
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except SQLAlchemyError as e:
        raise StorageError(f"Failed to initialize store: {e}") from e


async def init_db(database_url: str | None = None) -> async_sessionmaker[AsyncSession]:
    """
    Initialize the database connection, schema and session factory.
    Should be called on process startup.

    Args:
        database_url: Optional URL overriding the configured one.

    Returns:
        The session factory bound to the engine.
    """
    global _engine, AsyncSessionLocal
    if database_url is not None:
        if _engine is not None:
            await _engine.dispose()
        _engine = create_engine(database_url)
    engine = get_engine()
    await create_schema(engine)

    AsyncSessionLocal = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    logger.info("Database connection initialized", extra={"url": str(engine.url)})
    return AsyncSessionLocal


async def close_db() -> None:
    """
    Close the database connection.
    Should be called on process shutdown.
    """
    global _engine, AsyncSessionLocal
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        AsyncSessionLocal = None
        logger.info("Database connection closed")


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get the session factory created by init_db.

    Raises:
        RuntimeError: If the database is not initialized.
    """
    if AsyncSessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return AsyncSessionLocal


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """
    Dependency for getting async database sessions.

    Yields:
        AsyncSession: An async database session.
    """
    async with session_scope(get_session_factory()) as session:
        yield session


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """
    Transactional scope around a series of repository calls.

    Commits on success and rolls back on any error, so every write through
    the scope is all-or-nothing. SQLAlchemy errors surface as StorageError.

    Yields:
        AsyncSession: An async database session.
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise StorageError(str(e)) from e
        except Exception:
            await session.rollback()
            raise
