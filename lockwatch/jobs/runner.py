"""Periodic blocker capture across every monitored database."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any

from lockwatch.config.models import CaptureConfig
from lockwatch.core.exceptions import LockwatchError
from lockwatch.monitor.blockers import BlockerMonitor

logger = logging.getLogger(__name__)


def capture_database(
    database_id: str, monitor: BlockerMonitor, save_empty_samples: bool = True
) -> dict[str, Any]:
    """Capture one database and report the outcome; capture errors are reported, not raised."""
    start_time = time.time()
    try:
        sample_set = monitor.capture_and_persist(save_empty_samples=save_empty_samples)
    except (LockwatchError, ValueError) as e:
        duration_ms = int((time.time() - start_time) * 1000)
        logger.error(
            "Blocker capture failed for %s: %s", database_id, e, extra={"database": database_id}
        )
        return {
            "database": database_id,
            "status": "failed",
            "error": str(e),
            "error_type": type(e).__name__,
            "duration_ms": duration_ms,
        }

    duration_ms = int((time.time() - start_time) * 1000)
    if sample_set is None:
        return {"database": database_id, "status": "disabled", "duration_ms": duration_ms}

    logger.info(
        "Captured query blockers for %s: %d session(s), %dms",
        database_id,
        len(sample_set.sessions),
        duration_ms,
        extra={"database": database_id},
    )
    return {
        "database": database_id,
        "status": "success",
        "sample_id": sample_set.id,
        "sessions": len(sample_set.sessions),
        "duration_ms": duration_ms,
    }


def capture_all(
    monitors: dict[str, BlockerMonitor], save_empty_samples: bool = True
) -> list[dict[str, Any]]:
    """Capture every database in turn; one failure does not stop the others."""
    return [
        capture_database(database_id, monitor, save_empty_samples)
        for database_id, monitor in monitors.items()
    ]


class CaptureRunner:
    """Runs capture_all on a fixed interval."""

    def __init__(self, monitors: dict[str, BlockerMonitor], capture: CaptureConfig):
        self.monitors = monitors
        self.capture = capture
        self._last_run: float | None = None
        self._last_results: list[dict[str, Any]] = []
        self._running = False

    def run_once(self, save_empty_samples: bool | None = None) -> list[dict[str, Any]]:
        if save_empty_samples is None:
            save_empty_samples = self.capture.save_empty_samples
        results = capture_all(self.monitors, save_empty_samples)
        self._last_run = time.time()
        self._last_results = results
        return results

    def status(self) -> dict[str, Any]:
        last = self._last_run
        return {
            "running": self._running,
            "databases": list(self.monitors),
            "interval_seconds": self.capture.poll_interval_seconds,
            "last_run": (
                datetime.fromtimestamp(last, tz=timezone.utc).isoformat() if last else None
            ),
            "last_results": self._last_results,
        }

    async def run_loop(self) -> None:
        """Background loop: capture, then sleep for the poll interval."""
        self._running = True
        logger.info(
            "Capture runner started for %d database(s) (interval=%ds)",
            len(self.monitors),
            self.capture.poll_interval_seconds,
        )

        while self._running:
            try:
                await asyncio.to_thread(self.run_once)
            except Exception:
                logger.critical("Capture loop error", exc_info=True)
            await asyncio.sleep(self.capture.poll_interval_seconds)

    def stop(self) -> None:
        """Stop the background capture loop."""
        self._running = False
