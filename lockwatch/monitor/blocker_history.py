"""Blocker history: persist SampleSets into the repository database."""

from __future__ import annotations

import logging
from typing import Any

from lockwatch.core.exceptions import DatabaseQueryError, SchemaMissingError, WriteError
from lockwatch.db.connection import ConnectionManager, Transaction
from lockwatch.db.queries import load_sql, split_statements
from lockwatch.db.repository import insert_typed
from lockwatch.db.types import BIGINT, BIGINT_ARRAY, DATETIME, TEXT, column_list
from lockwatch.monitor.blocker_sampler import BLOCKER_ATTRIBUTE_COLUMNS, SampleSet, Session
from lockwatch.monitor.features import FeatureGate

logger = logging.getLogger(__name__)

BLOCKER_SAMPLE_TABLE = "pghero_blocker_samples"
BLOCKER_SAMPLE_SESSION_TABLE = "pghero_blocker_sample_sessions"

ID_COLUMNS = column_list(id=BIGINT)

INSERT_BLOCKER_SAMPLE_COLUMNS = column_list(
    database=TEXT,
    captured_at=DATETIME,
    txid_xmin=BIGINT,
    txid_xmax=BIGINT,
    txid_xip=BIGINT_ARRAY,
)

INSERT_BLOCKER_SAMPLE_SESSION_COLUMNS = (
    column_list(blocker_sample_id=BIGINT) + BLOCKER_ATTRIBUTE_COLUMNS
)

# Keeps each generated INSERT statement a reasonable size
DEFAULT_BATCH_SIZE = 1000


class HistoryWriter:
    """Writes blocker samples and their sessions to the history tables."""

    def __init__(
        self,
        db: ConnectionManager,
        batch_size: int = DEFAULT_BATCH_SIZE,
        statement_timeout_ms: int | None = None,
        lock_timeout_ms: int | None = None,
    ):
        self.db = db
        self.features = FeatureGate(db)
        self.batch_size = batch_size
        self.statement_timeout_ms = statement_timeout_ms
        self.lock_timeout_ms = lock_timeout_ms
        self._tables_usable = False

    def supports_history(self, raise_if_unsupported: bool = False) -> bool:
        """Check that both history tables exist.

        Only a successful check is remembered; the schema is not expected to
        disappear while the process runs.
        """
        if self._tables_usable:
            return True

        missing = self.features.missing_tables(BLOCKER_SAMPLE_TABLE, BLOCKER_SAMPLE_SESSION_TABLE)
        self._tables_usable = not missing
        if missing:
            logger.info("Blocker history disabled, missing table(s): %s", ", ".join(missing))
            if raise_if_unsupported:
                raise SchemaMissingError(missing)
        return self._tables_usable

    def reset_cache(self) -> None:
        self._tables_usable = False

    def persist(self, sample_set: SampleSet, tx: Transaction | None = None) -> SampleSet:
        """Insert the sample header and its sessions in one transaction.

        Joins ``tx`` when given. Generated ids are written back onto the
        SampleSet and each Session. Any failure rolls the owned transaction
        back, so no header is ever visible without its sessions.
        """
        self.supports_history(raise_if_unsupported=True)

        sessions = list(sample_set.sessions.values())
        with self.db.transaction(
            tx,
            statement_timeout=self.statement_timeout_ms,
            lock_timeout=self.lock_timeout_ms,
        ) as current:
            sample_id = self._insert_sample(current, sample_set)
            session_ids: list[int] = []
            for start in range(0, len(sessions), self.batch_size):
                batch = sessions[start : start + self.batch_size]
                session_ids.extend(self._insert_session_batch(current, sample_id, batch))

        # Only attach ids once the rows are committed (or handed to the caller's tx)
        sample_set.id = sample_id
        for session, session_id in zip(sessions, session_ids):
            session.id = session_id

        logger.info(
            "Stored blocker sample %d for %s with %d session(s)",
            sample_id,
            sample_set.database,
            len(sessions),
        )
        return sample_set

    def _insert_sample(self, tx: Transaction, sample_set: SampleSet) -> int:
        result = insert_typed(
            tx,
            BLOCKER_SAMPLE_TABLE,
            INSERT_BLOCKER_SAMPLE_COLUMNS,
            [[getattr(sample_set, col.name) for col in INSERT_BLOCKER_SAMPLE_COLUMNS]],
            returning=ID_COLUMNS,
        )
        if result[0]["id"] is None:
            raise WriteError(f"Insert into {BLOCKER_SAMPLE_TABLE} returned no id")
        return result[0]["id"]

    def _insert_session_batch(
        self, tx: Transaction, sample_id: int, batch: list[Session]
    ) -> list[int]:
        rows = [
            [sample_id] + [getattr(session, col.name) for col in BLOCKER_ATTRIBUTE_COLUMNS]
            for session in batch
        ]
        result = insert_typed(
            tx,
            BLOCKER_SAMPLE_SESSION_TABLE,
            INSERT_BLOCKER_SAMPLE_SESSION_COLUMNS,
            rows,
            returning=ID_COLUMNS,
        )
        return [row["id"] for row in result]

    def install_schema(self, tx: Transaction | None = None) -> None:
        """Create the history tables and indexes if they do not exist."""
        statements = split_statements(load_sql("schema/blocker_history.sql"))
        with self.db.transaction(tx) as current:
            for statement in statements:
                try:
                    current.execute_nonquery(statement)
                except DatabaseQueryError as e:
                    raise WriteError(f"Schema install failed: {e}") from e
        self.reset_cache()
        logger.info("Blocker history schema installed (%d statements)", len(statements))

    def recent_samples(self, database: str | None = None, limit: int = 20) -> list[dict[str, Any]]:
        """Newest sample headers first, each with its session count."""
        self.supports_history(raise_if_unsupported=True)
        where = "WHERE s.database = ?" if database else ""
        params: tuple = (database, limit) if database else (limit,)
        return self.db.execute_query(
            "SELECT s.id, s.database, s.captured_at, s.txid_xmin, s.txid_xmax, "
            "COUNT(ss.id) AS session_count "
            f"FROM {BLOCKER_SAMPLE_TABLE} s "
            f"LEFT JOIN {BLOCKER_SAMPLE_SESSION_TABLE} ss ON ss.blocker_sample_id = s.id "
            f"{where} "
            "GROUP BY s.id ORDER BY s.captured_at DESC, s.id DESC LIMIT ?",
            params,
        )
