"""Query blocker API routes."""

from __future__ import annotations

from contextlib import contextmanager

from fastapi import APIRouter, Depends, HTTPException, Query

from lockwatch.api.dependencies import AppState, get_state
from lockwatch.api.schemas import (
    CaptureResponse,
    CaptureRunResponse,
    RunnerStatusResponse,
    SampleHeaderResponse,
    SampleSetResponse,
)
from lockwatch.core.exceptions import (
    CapabilityError,
    DatabaseConnectionError,
    NotEnabledError,
    TransientError,
)
from lockwatch.monitor.blockers import BlockerMonitor

router = APIRouter(prefix="/api/blockers", tags=["blockers"])


@contextmanager
def _http_errors():
    """Map Lockwatch errors onto HTTP status codes."""
    try:
        yield
    except (CapabilityError, NotEnabledError) as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except (TransientError, DatabaseConnectionError) as e:
        raise HTTPException(status_code=503, detail=str(e)) from e


def _get_monitor(state: AppState, database: str | None) -> BlockerMonitor:
    monitor = state.monitor(database)
    if monitor is None:
        raise HTTPException(status_code=404, detail=f"Unknown database: {database}")
    return monitor


@router.get("", response_model=SampleSetResponse)
def get_current_blockers(database: str | None = None, state: AppState = Depends(get_state)):
    """Current blocking graph (not stored)."""
    monitor = _get_monitor(state, database)
    with _http_errors():
        sample_set = monitor.sample_blockers()
    return SampleSetResponse.from_sample_set(sample_set)


@router.post("/capture", response_model=CaptureResponse)
def capture_blockers(
    database: str | None = None,
    save_empty_samples: bool = True,
    state: AppState = Depends(get_state),
):
    """Capture the blocking graph and store it in history."""
    monitor = _get_monitor(state, database)
    with _http_errors():
        sample_set = monitor.capture_and_persist(save_empty_samples=save_empty_samples)
    if sample_set is None:
        return {"captured": False}
    return {
        "captured": True,
        "stored": sample_set.id is not None,
        "sample": SampleSetResponse.from_sample_set(sample_set),
    }


@router.post("/capture/all", response_model=list[CaptureRunResponse])
def capture_all_databases(state: AppState = Depends(get_state)):
    """Capture every configured database once."""
    return state.runner.run_once()


@router.get("/history", response_model=list[SampleHeaderResponse])
def get_blocker_history(
    database: str | None = None,
    limit: int = Query(default=20, ge=1, le=500),
    state: AppState = Depends(get_state),
):
    """Recent stored samples, newest first."""
    with _http_errors():
        return state.history.recent_samples(database=database, limit=limit)


@router.get("/runner", response_model=RunnerStatusResponse)
def get_runner_status(state: AppState = Depends(get_state)):
    """Background capture loop status."""
    return state.runner.status()
