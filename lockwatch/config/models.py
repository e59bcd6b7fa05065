"""Pydantic models for the YAML configuration."""

from __future__ import annotations

from pydantic import BaseModel, Field


class DatabaseConfig(BaseModel):
    host: str = "postgres"
    port: int = 5432
    name: str = "postgres"
    user: str = "postgres"
    password: str = ""
    driver: str = "PostgreSQL Unicode"
    sslmode: str = "prefer"
    connect_timeout: int = 10
    query_timeout: int = 30  # seconds; the driver cancels the statement after this
    capture_query_blockers: bool = True


class CaptureConfig(BaseModel):
    save_empty_samples: bool = True
    poll_interval_seconds: int = 60
    read_retries: int = Field(default=2, ge=0)
    retry_delay_seconds: float = Field(default=0.1, ge=0)
    insert_batch_size: int = Field(default=1000, ge=1)
    statement_timeout_ms: int | None = None
    lock_timeout_ms: int | None = None


class LockwatchConfig(BaseModel):
    databases: dict[str, DatabaseConfig] = Field(
        default_factory=lambda: {"primary": DatabaseConfig()}
    )
    # History storage; falls back to the first monitored database
    repository: DatabaseConfig | None = None
    capture: CaptureConfig = Field(default_factory=CaptureConfig)

    def repository_config(self) -> DatabaseConfig | None:
        if self.repository is not None:
            return self.repository
        return next(iter(self.databases.values()), None)
