"""Health API routes."""

from __future__ import annotations

import time

from fastapi import APIRouter, Depends

from lockwatch.api.dependencies import AppState, get_state
from lockwatch.api.schemas import HealthResponse
from lockwatch.core.exceptions import LockwatchError

router = APIRouter(prefix="/api/health", tags=["health"])

_start_time = time.time()


def _database_health(database_id: str, monitor) -> dict:
    result = {
        "database": database_id,
        "connected": monitor.db.test_connection(),
        "capture_enabled": monitor.capture_enabled(),
    }
    if not result["connected"]:
        return result
    try:
        result["server_version_num"] = monitor.features.server_version_num()
        result["supports_query_blocker_monitoring"] = monitor.supports_query_blocker_monitoring()
    except LockwatchError as e:
        result["error"] = str(e)
    return result


@router.get("", response_model=HealthResponse)
def get_health(state: AppState = Depends(get_state)):
    """Connectivity and feature support for every monitored database."""
    databases = [
        _database_health(database_id, monitor) for database_id, monitor in state.monitors.items()
    ]
    try:
        history_enabled = state.history.supports_history()
    except LockwatchError:
        history_enabled = False

    if all(d["connected"] for d in databases):
        status = "healthy"
    elif any(d["connected"] for d in databases):
        status = "degraded"
    else:
        status = "unavailable"

    return {
        "status": status,
        "uptime_seconds": round(time.time() - _start_time, 1),
        "version": "1.0.0",
        "history_enabled": history_enabled,
        "databases": databases,
    }
