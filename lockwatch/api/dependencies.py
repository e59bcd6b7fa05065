"""Dependency injection for shared monitor instances."""

from __future__ import annotations

from lockwatch.config.loader import load_config
from lockwatch.config.models import LockwatchConfig
from lockwatch.core.exceptions import ConfigurationError
from lockwatch.db.connection import ConnectionManager
from lockwatch.jobs.runner import CaptureRunner
from lockwatch.monitor.blocker_history import HistoryWriter
from lockwatch.monitor.blockers import BlockerMonitor


class AppState:
    """Holds the repository connection, history writer and one monitor per database."""

    def __init__(self, config: LockwatchConfig | None = None):
        self.config: LockwatchConfig = config or load_config()
        if not self.config.databases:
            raise ConfigurationError("At least one database must be configured")

        capture = self.config.capture
        self.repository: ConnectionManager = ConnectionManager(
            self.config.repository_config(), capture.read_retries, capture.retry_delay_seconds
        )
        self.history: HistoryWriter = HistoryWriter(
            self.repository,
            batch_size=capture.insert_batch_size,
            statement_timeout_ms=capture.statement_timeout_ms,
            lock_timeout_ms=capture.lock_timeout_ms,
        )
        self.monitors: dict[str, BlockerMonitor] = {
            database_id: BlockerMonitor(
                database_id,
                ConnectionManager(db_config, capture.read_retries, capture.retry_delay_seconds),
                self.history,
                db_config,
            )
            for database_id, db_config in self.config.databases.items()
        }
        self.runner: CaptureRunner = CaptureRunner(self.monitors, capture)

    def monitor(self, database_id: str | None = None) -> BlockerMonitor | None:
        """Monitor by id; the first configured database when no id is given."""
        if database_id is None:
            return next(iter(self.monitors.values()), None)
        return self.monitors.get(database_id)


# Singleton
_state: AppState | None = None


def get_state() -> AppState:
    global _state
    if _state is None:
        _state = AppState()
    return _state


def reset_state() -> None:
    """Reset state (for testing)."""
    global _state
    _state = None
