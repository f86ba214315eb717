"""
Application configuration.

Process settings come from environment variables (pydantic-settings);
queue defaults (retry count, backoff base, job timeout) come from the
persisted config table and travel as an explicit QueueConfig value.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from queuectl.constants import (
    DEFAULT_BACKOFF_BASE,
    DEFAULT_JOB_TIMEOUT_MS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_POLL_INTERVAL_SECONDS,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="QUEUECTL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    data_dir: Path = Path("data")
    database_url: str | None = None
    output_dir: Path | None = None
    sqlite_busy_timeout_ms: int = 10_000

    # Worker Configuration
    worker_poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS

    # Metrics presenter
    metrics_host: str = "127.0.0.1"
    metrics_port: int = 8080

    # Observability
    debug: bool = False
    log_level: str = "INFO"
    log_format: str = "console"  # json or console
    otel_service_name: str = "queuectl"
    otel_exporter_otlp_endpoint: str | None = None

    @property
    def resolved_database_url(self) -> str:
        """Database URL, defaulting to a SQLite file inside data_dir."""
        if self.database_url:
            return self.database_url
        return f"sqlite+aiosqlite:///{self.data_dir / 'queue.db'}"

    @property
    def resolved_output_dir(self) -> Path:
        """Directory for job output logs."""
        return self.output_dir or self.data_dir / "outputs"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


class QueueConfig(BaseModel):
    """
    Queue-wide defaults applied to jobs at creation time.

    Built from the config provider and handed to whatever constructs jobs.
    """

    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    backoff_base: float = Field(default=DEFAULT_BACKOFF_BASE, gt=0)
    job_timeout: int = Field(default=DEFAULT_JOB_TIMEOUT_MS, gt=0)
