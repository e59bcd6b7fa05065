"""Shared test fixtures and mock database connection."""

from __future__ import annotations

import re
from contextlib import contextmanager
from datetime import datetime, timezone

import pytest

from lockwatch.config.models import CaptureConfig, DatabaseConfig, LockwatchConfig
from lockwatch.core.exceptions import DatabaseQueryError

SAMPLE_TABLE = "pghero_blocker_samples"
SESSION_TABLE = "pghero_blocker_sample_sessions"

CAPTURED_AT = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

_INSERT_TABLE = re.compile(r'INSERT INTO "([^"]+)"')


def header_fields(**overrides) -> dict:
    fields = {
        "sample_database": "appdb",
        "sample_captured_at": CAPTURED_AT,
        "sample_txid_xmin": 5000,
        "sample_txid_xmax": 5004,
        "sample_txid_xip": "{5001,5003}",
    }
    fields.update(overrides)
    return fields


def capture_row(pid: int | None = None, blocked_by: list[int] | None = None, **overrides) -> dict:
    """One row as the capture query returns it through ODBC (arrays as text)."""
    row = header_fields()
    if pid is None:
        row.update(
            {
                name: None
                for name in (
                    "pid", "user", "source", "client_addr", "client_hostname", "client_port",
                    "backend_start", "xact_start", "query_start", "state_change",
                    "wait_event_type", "wait_event", "state", "backend_xid", "backend_xmin",
                    "query", "backend_type", "blocked_by",
                )
            }
        )
        return row
    row.update(
        {
            "pid": pid,
            "user": "app",
            "source": f"worker-{pid}",
            "client_addr": "10.0.0.7",
            "client_hostname": None,
            "client_port": 50000 + pid,
            "backend_start": datetime(2026, 1, 15, 11, 0, tzinfo=timezone.utc),
            "xact_start": datetime(2026, 1, 15, 11, 59, tzinfo=timezone.utc),
            "query_start": datetime(2026, 1, 15, 11, 59, 30, tzinfo=timezone.utc),
            "state_change": datetime(2026, 1, 15, 11, 59, 30, tzinfo=timezone.utc),
            "wait_event_type": "Lock" if blocked_by else None,
            "wait_event": "transactionid" if blocked_by else None,
            "state": "active" if blocked_by else "idle in transaction",
            "backend_xid": 4000000000 + pid,
            "backend_xmin": 4999,
            "query": f"UPDATE accounts SET balance = balance - 1 WHERE id = {pid}",
            "backend_type": "client backend",
            "blocked_by": "{" + ",".join(str(p) for p in (blocked_by or [])) + "}",
        }
    )
    row.update(overrides)
    return row


class MockTransaction:
    """Buffers inserts until the owning MockConnectionManager commits them."""

    def __init__(self, db: MockConnectionManager):
        self.db = db
        self.pending: dict[str, list[dict]] = {}
        self.statements: list[str] = []

    def execute_query(self, sql: str, params: tuple = ()) -> list[dict]:
        self.statements.append(sql)
        self.db._query_log.append(sql)
        match = _INSERT_TABLE.search(sql)
        if match:
            return self._insert(match.group(1), sql)
        return self.db.execute_query(sql, params)

    def execute_nonquery(self, sql: str, params: tuple = ()) -> int:
        self.statements.append(sql)
        self.db._query_log.append(sql)
        match = _INSERT_TABLE.search(sql)
        if match:
            return len(self._insert(match.group(1), sql))
        if "CREATE TABLE" in sql:
            name = sql.split("EXISTS", 1)[1].split("(", 1)[0].strip()
            self.db.existing_tables.add(name)
        return 0

    def _insert(self, table: str, sql: str) -> list[dict]:
        self.db.insert_count += 1
        if self.db.fail_on_insert == self.db.insert_count:
            raise DatabaseQueryError(f"simulated failure inserting into {table}")
        values = sql.split("\nVALUES\n", 1)[1].split("\nRETURNING", 1)[0]
        row_lines = [line for line in values.split("\n") if line.startswith("  (")]
        self.db.insert_statements.append((table, len(row_lines)))
        records = []
        for line in row_lines:
            record = {"id": self.db._next_id(table), "values_sql": line.strip().rstrip(",")}
            if table == SESSION_TABLE:
                record["blocker_sample_id"] = int(line.strip()[1:].split(",", 1)[0])
            records.append(record)
        self.pending.setdefault(table, []).extend(records)
        return [{"id": r["id"]} for r in records]


class MockConnectionManager:
    """Mock database that stores data in-memory for testing."""

    def __init__(self, server_version_num: int = 160002):
        self.server_version_num = server_version_num
        self.existing_tables: set[str] = {SAMPLE_TABLE, SESSION_TABLE}
        self.capture_rows: list[dict] = [capture_row()]
        self._tables: dict[str, list[dict]] = {SAMPLE_TABLE: [], SESSION_TABLE: []}
        self._id_counters: dict[str, int] = {}
        self._query_log: list[str] = []
        self.insert_statements: list[tuple[str, int]] = []
        self.insert_count = 0
        self.fail_on_insert: int | None = None
        self.commits = 0
        self.rollbacks = 0
        self.connected = True

    def execute_query(self, sql: str, params: tuple = ()) -> list[dict]:
        self._query_log.append(sql)
        if "SHOW server_version_num" in sql:
            return [{"server_version_num": str(self.server_version_num)}]
        if "pg_catalog.pg_class" in sql:
            return [{"table_name": t} for t in params if t not in self.existing_tables]
        if "pg_blocking_pids" in sql:
            return [dict(row) for row in self.capture_rows]
        if "SELECT 1 AS ok" in sql:
            return [{"ok": 1}]
        if f"FROM {SAMPLE_TABLE}" in sql:
            headers = [
                {
                    "id": r["id"],
                    "database": "appdb",
                    "captured_at": CAPTURED_AT,
                    "txid_xmin": 5000,
                    "txid_xmax": 5004,
                    "session_count": sum(
                        1 for s in self._tables[SESSION_TABLE] if s["blocker_sample_id"] == r["id"]
                    ),
                }
                for r in reversed(self._tables[SAMPLE_TABLE])
            ]
            return headers[: params[-1]]
        return []

    def select_one(self, sql: str, params: tuple = ()):
        rows = self.execute_query(sql, params)
        return next(iter(rows[0].values()), None) if rows else None

    @contextmanager
    def transaction(self, tx=None, statement_timeout=None, lock_timeout=None, rollback=False):
        if tx is not None:
            yield tx
            return
        owned = MockTransaction(self)
        try:
            yield owned
        except BaseException:
            self.rollbacks += 1
            raise
        if rollback:
            self.rollbacks += 1
            return
        self.commit(owned)

    def commit(self, tx: MockTransaction) -> None:
        for table, records in tx.pending.items():
            self._tables[table].extend(records)
        tx.pending = {}
        self.commits += 1

    def test_connection(self) -> bool:
        return self.connected

    def _next_id(self, table: str) -> int:
        self._id_counters[table] = self._id_counters.get(table, 0) + 1
        return self._id_counters[table]


@pytest.fixture
def mock_db() -> MockConnectionManager:
    return MockConnectionManager()


@pytest.fixture
def config() -> LockwatchConfig:
    return LockwatchConfig(
        databases={"primary": DatabaseConfig(name="appdb")},
        capture=CaptureConfig(poll_interval_seconds=5),
    )
