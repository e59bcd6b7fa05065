"""Pydantic response models for the API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from lockwatch.monitor.blocker_sampler import SampleSet, Session


# --- Health ---
class DatabaseHealth(BaseModel):
    database: str
    connected: bool
    server_version_num: int | None = None
    supports_query_blocker_monitoring: bool | None = None
    capture_enabled: bool = True
    error: str | None = None


class HealthResponse(BaseModel):
    status: str
    uptime_seconds: float
    version: str = "1.0.0"
    history_enabled: bool = False
    databases: list[DatabaseHealth] = Field(default_factory=list)


# --- Blockers ---
class SampleSetResponse(BaseModel):
    id: int | None = None
    database: str
    captured_at: datetime
    txid_xmin: int
    txid_xmax: int
    txid_xip: list[int] = Field(default_factory=list)
    blocked_count: int = 0
    root_blockers: list[int] = Field(default_factory=list)
    sessions: list[Session] = Field(default_factory=list)

    @classmethod
    def from_sample_set(cls, sample_set: SampleSet) -> SampleSetResponse:
        return cls(
            id=sample_set.id,
            database=sample_set.database,
            captured_at=sample_set.captured_at,
            txid_xmin=sample_set.txid_xmin,
            txid_xmax=sample_set.txid_xmax,
            txid_xip=sample_set.txid_xip,
            blocked_count=sample_set.blocked_count(),
            root_blockers=[s.pid for s in sample_set.root_blockers()],
            sessions=list(sample_set.sessions.values()),
        )


class CaptureResponse(BaseModel):
    captured: bool
    stored: bool = False
    sample: SampleSetResponse | None = None


class SampleHeaderResponse(BaseModel):
    id: int
    database: str
    captured_at: datetime | str
    txid_xmin: int | None = None
    txid_xmax: int | None = None
    session_count: int = 0


class CaptureRunResponse(BaseModel):
    database: str
    status: str
    sample_id: int | None = None
    sessions: int | None = None
    duration_ms: int | None = None
    error: str | None = None
    error_type: str | None = None


class RunnerStatusResponse(BaseModel):
    running: bool
    databases: list[str] = Field(default_factory=list)
    interval_seconds: int
    last_run: str | None = None
    last_results: list[dict[str, Any]] = Field(default_factory=list)
