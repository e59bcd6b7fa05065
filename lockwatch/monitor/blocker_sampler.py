"""Blocker sampling: one atomic pg_stat_activity read rebuilt into a blocking graph.

The capture query keeps the monitored server's work minimal and returns flat,
denormalized rows: header columns repeated on every row, then one row per
session that is blocked or blocking, each with the pids blocking it. The
reverse edges (``blocking``) are derived here in a single forward pass.
"""

from __future__ import annotations

import logging
from bisect import insort
from datetime import datetime
from functools import lru_cache
from typing import Any, Iterable

from pydantic import BaseModel, Field

from lockwatch.core.exceptions import CapabilityError, DatabaseQueryError
from lockwatch.db.connection import ConnectionManager
from lockwatch.db.queries import load_sql
from lockwatch.db.types import (
    BIGINT,
    BIGINT_ARRAY,
    DATETIME,
    INET,
    INTEGER,
    INTEGER_ARRAY,
    TEXT,
    XID,
    column_list,
)
from lockwatch.monitor.features import FeatureGate

logger = logging.getLogger(__name__)

BLOCKER_QUERY_COLUMNS = column_list(
    pid=INTEGER,
    user=TEXT,
    source=TEXT,
    client_addr=INET,
    client_hostname=TEXT,
    client_port=INTEGER,
    backend_start=DATETIME,
    xact_start=DATETIME,
    query_start=DATETIME,
    state_change=DATETIME,
    wait_event_type=TEXT,
    wait_event=TEXT,
    state=TEXT,
    backend_xid=XID,
    backend_xmin=XID,
    query=TEXT,
    backend_type=TEXT,
    blocked_by=INTEGER_ARRAY,
)

# Everything persisted per session: the query columns plus the derived edges
BLOCKER_ATTRIBUTE_COLUMNS = BLOCKER_QUERY_COLUMNS + column_list(blocking=INTEGER_ARRAY)

SAMPLE_HEADER_COLUMNS = column_list(
    sample_database=TEXT,
    sample_captured_at=DATETIME,
    sample_txid_xmin=BIGINT,
    sample_txid_xmax=BIGINT,
    sample_txid_xip=BIGINT_ARRAY,
)


class Session(BaseModel):
    """One backend seen blocking or blocked in a sample."""

    id: int | None = None
    pid: int | None = None
    user: str | None = None
    source: str | None = None
    client_addr: str | None = None
    client_hostname: str | None = None
    client_port: int | None = None
    backend_start: datetime | None = None
    xact_start: datetime | None = None
    query_start: datetime | None = None
    state_change: datetime | None = None
    wait_event_type: str | None = None
    wait_event: str | None = None
    state: str | None = None
    backend_xid: int | None = None
    backend_xmin: int | None = None
    query: str | None = None
    backend_type: str | None = None
    blocked_by: list[int] = Field(default_factory=list)
    blocking: list[int] = Field(default_factory=list)
    # Seen only as someone's blocker; its own row never arrived
    placeholder: bool = False

    @property
    def is_root_blocker(self) -> bool:
        return bool(self.blocking) and not self.blocked_by


class SampleSet(BaseModel):
    """One timestamped snapshot of the blocking graph of a database."""

    id: int | None = None
    captured_at: datetime
    database: str
    txid_xmin: int
    txid_xmax: int
    txid_xip: list[int] = Field(default_factory=list)
    sessions: dict[int, Session] = Field(default_factory=dict)

    def root_blockers(self) -> list[Session]:
        return [s for s in self.sessions.values() if s.is_root_blocker]

    def blocked_count(self) -> int:
        return sum(1 for s in self.sessions.values() if s.blocked_by)


@lru_cache(maxsize=2)
def blocker_sample_sql(backend_type_available: bool) -> str:
    """Capture query for one server capability generation, rendered once."""
    template = load_sql("blockers/sample_set.sql")
    backend_type = "psa.backend_type" if backend_type_available else "NULL::text"
    return template.format(backend_type=backend_type)


def _cast_row(row: dict[str, Any], columns) -> dict[str, Any]:
    return {col.name: col.cast(row.get(col.name)) for col in columns}


def rows_to_sessions(rows: Iterable[dict[str, Any]]) -> dict[int, Session]:
    """Rebuild the blocking graph from capture rows in one pass.

    A blocker may be referenced before its own row arrives; it gets a
    placeholder entry that collects ``blocking`` and is replaced in place by
    the full session later, keeping what it collected. ``blocking`` lists
    are kept sorted so the result does not depend on row order.
    """
    sessions: dict[int, Session] = {}
    for row in rows:
        if row.get("pid") is None:
            continue  # the "no blockers" header-only row
        attributes = _cast_row(row, BLOCKER_QUERY_COLUMNS)
        pid = attributes["pid"]
        blocked_by = [p for p in attributes.pop("blocked_by") or [] if p is not None]

        seen = sessions.get(pid)
        session = Session(
            **attributes,
            blocked_by=blocked_by,
            blocking=seen.blocking if seen is not None else [],
        )
        sessions[pid] = session

        for blocker_pid in blocked_by:
            blocker = sessions.get(blocker_pid)
            if blocker is None:
                blocker = sessions[blocker_pid] = Session(pid=blocker_pid, placeholder=True)
            # pg_blocking_pids() may repeat a pid for parallel workers
            if pid not in blocker.blocking:
                insort(blocker.blocking, pid)
    return sessions


def sample_set_from_rows(rows: list[dict[str, Any]], database: str | None = None) -> SampleSet:
    """Build a complete SampleSet from capture rows, or raise DatabaseQueryError."""
    if not rows:
        raise DatabaseQueryError("Blocker sample query returned no rows")
    try:
        header = _cast_row(rows[0], SAMPLE_HEADER_COLUMNS)
        missing = [
            name
            for name in ("sample_captured_at", "sample_txid_xmin", "sample_txid_xmax", "sample_txid_xip")
            if header[name] is None
        ]
        if missing:
            raise DatabaseQueryError(f"Blocker sample is missing header field(s): {', '.join(missing)}")
        sessions = rows_to_sessions(rows)
        return SampleSet(
            captured_at=header["sample_captured_at"],
            database=database or header["sample_database"],
            txid_xmin=header["sample_txid_xmin"],
            txid_xmax=header["sample_txid_xmax"],
            txid_xip=header["sample_txid_xip"],
            sessions=sessions,
        )
    except ValueError as e:
        raise DatabaseQueryError(f"Malformed blocker sample: {e}") from e


class BlockerSampler:
    """Captures the current blocking graph of one monitored database."""

    def __init__(
        self,
        db: ConnectionManager,
        features: FeatureGate | None = None,
        database: str | None = None,
    ):
        self.db = db
        self.features = features or FeatureGate(db)
        self.database = database

    def sample(self) -> SampleSet:
        """Run the capture query and return the rebuilt graph.

        Raises CapabilityError before 9.6; TransientError when retries of an
        internal server error run out.
        """
        if not self.features.supports_blocking_pids():
            raise CapabilityError(
                "Query blockers requires PostgreSQL 9.6+ support for pg_blocking_pids. "
                f"Actual version: {self.features.server_version_num()}"
            )

        sql = blocker_sample_sql(self.features.backend_type_available())
        rows = self.db.execute_query(sql)
        sample_set = sample_set_from_rows(rows, self.database)

        placeholders = [pid for pid, s in sample_set.sessions.items() if s.placeholder]
        if placeholders:
            logger.warning(
                "Blocker pid(s) %s had no detail row in the sample for %s",
                placeholders,
                sample_set.database,
            )
        logger.info(
            "Sampled %s: %d session(s), %d blocked",
            sample_set.database,
            len(sample_set.sessions),
            sample_set.blocked_count(),
        )
        return sample_set
