"""
Pytest configuration and shared fixtures.
"""

from collections.abc import AsyncGenerator, Generator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from prometheus_client import CollectorRegistry
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from queuectl.api.main import create_app
from queuectl.config import QueueConfig, get_settings
from queuectl.core.queue import JobQueue
from queuectl.db import close_db, init_db
from queuectl.observability.metrics import MetricsCollector
from queuectl.worker.registry import WorkerRegistry


@pytest.fixture(autouse=True)
def test_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path]:
    """Point every test at its own data directory."""
    data_dir = tmp_path / "data"
    monkeypatch.setenv("QUEUECTL_DATA_DIR", str(data_dir))
    monkeypatch.setenv("QUEUECTL_WORKER_POLL_INTERVAL_SECONDS", "0.05")
    monkeypatch.delenv("QUEUECTL_DATABASE_URL", raising=False)
    monkeypatch.delenv("QUEUECTL_OUTPUT_DIR", raising=False)
    get_settings.cache_clear()

    yield data_dir

    get_settings.cache_clear()


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """Get a fresh SQLite database URL."""
    return f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}"


@pytest_asyncio.fixture
async def session_factory(database_url: str) -> AsyncGenerator[async_sessionmaker[AsyncSession]]:
    """Initialize the store for a test."""
    factory = await init_db(database_url)
    yield factory
    await close_db()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def metrics() -> MetricsCollector:
    """Metrics collector on a private registry."""
    return MetricsCollector(CollectorRegistry())


@pytest.fixture
def queue(session_factory, metrics: MetricsCollector) -> JobQueue:
    """Queue using the stored configuration for defaults."""
    return JobQueue(session_factory, metrics=metrics)


@pytest.fixture
def registry(session_factory) -> WorkerRegistry:
    """Worker registry where every registered PID counts as alive."""
    return WorkerRegistry(session_factory, is_alive=lambda pid: True)


@pytest.fixture
def quick_config() -> QueueConfig:
    """Defaults with small values for fast tests."""
    return QueueConfig(max_retries=2, backoff_base=2, job_timeout=5_000)


@pytest_asyncio.fixture
async def app(session_factory) -> AsyncGenerator[FastAPI]:
    """Create a FastAPI app for testing with initialized database."""
    yield create_app()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def sample_job() -> dict[str, Any]:
    """Create a sample job submission."""
    return {"command": "echo hello"}
