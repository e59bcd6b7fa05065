"""Tests for persisting blocker samples."""

from __future__ import annotations

import pytest

from conftest import SAMPLE_TABLE, SESSION_TABLE, MockTransaction, capture_row
from lockwatch.core.exceptions import NotEnabledError, SchemaMissingError, WriteError
from lockwatch.monitor.blocker_history import HistoryWriter
from lockwatch.monitor.blocker_sampler import sample_set_from_rows


@pytest.fixture
def writer(mock_db):
    return HistoryWriter(mock_db)


def _sample(rows=None):
    return sample_set_from_rows(rows or [capture_row()], database="primary")


def _large_sample(count: int):
    # Every session is blocked by pid 1, whose own row comes first
    rows = [capture_row(1, [])] + [capture_row(pid, [1]) for pid in range(2, count + 1)]
    return _sample(rows)


class TestSupportsHistory:
    def test_tables_present(self, writer):
        assert writer.supports_history() is True

    def test_missing_tables_returns_false(self, writer, mock_db):
        mock_db.existing_tables = set()
        assert writer.supports_history() is False

    def test_raise_names_missing_tables(self, writer, mock_db):
        mock_db.existing_tables = {SAMPLE_TABLE}
        with pytest.raises(NotEnabledError, match=SESSION_TABLE) as exc_info:
            writer.supports_history(raise_if_unsupported=True)
        assert exc_info.value.missing_tables == [SESSION_TABLE]

    def test_raise_names_both_tables(self, writer, mock_db):
        mock_db.existing_tables = set()
        with pytest.raises(SchemaMissingError) as exc_info:
            writer.supports_history(raise_if_unsupported=True)
        assert SAMPLE_TABLE in str(exc_info.value)
        assert SESSION_TABLE in str(exc_info.value)

    def test_success_is_cached(self, writer, mock_db):
        writer.supports_history()
        mock_db.existing_tables = set()
        assert writer.supports_history() is True
        assert sum(1 for sql in mock_db._query_log if "pg_class" in sql) == 1

    def test_reset_cache(self, writer, mock_db):
        writer.supports_history()
        mock_db.existing_tables = set()
        writer.reset_cache()
        assert writer.supports_history() is False

    def test_failure_is_not_cached(self, writer, mock_db):
        mock_db.existing_tables = set()
        assert writer.supports_history() is False
        mock_db.existing_tables = {SAMPLE_TABLE, SESSION_TABLE}
        assert writer.supports_history() is True


class TestPersist:
    def test_empty_sample_writes_header_only(self, writer, mock_db):
        sample_set = writer.persist(_sample())
        assert sample_set.id == 1
        assert len(mock_db._tables[SAMPLE_TABLE]) == 1
        assert mock_db._tables[SESSION_TABLE] == []
        assert mock_db.insert_statements == [(SAMPLE_TABLE, 1)]

    def test_sessions_linked_to_header(self, writer, mock_db):
        sample_set = writer.persist(_sample([capture_row(10, [20]), capture_row(20, [])]))
        stored = mock_db._tables[SESSION_TABLE]
        assert len(stored) == 2
        assert {row["blocker_sample_id"] for row in stored} == {sample_set.id}
        assert [s.id for s in sample_set.sessions.values()] == [row["id"] for row in stored]

    def test_header_values(self, writer, mock_db):
        writer.persist(_sample())
        header_sql = mock_db._tables[SAMPLE_TABLE][0]["values_sql"]
        assert header_sql == (
            "('primary', '2026-01-15 12:00:00+00:00', 5000, 5004, '{5001,5003}'::bigint[])"
        )

    def test_session_row_carries_blocking_array(self, writer, mock_db):
        writer.persist(_sample([capture_row(10, [20]), capture_row(20, [])]))
        blocker_row = mock_db._tables[SESSION_TABLE][1]["values_sql"]
        assert "'{}'::integer[], '{10}'::integer[])" in blocker_row
        assert "'10.0.0.7'" in blocker_row

    def test_2500_sessions_in_three_batches(self, writer, mock_db):
        sample_set = _large_sample(2500)
        assert len(sample_set.sessions) == 2500
        writer.persist(sample_set)
        session_inserts = [n for table, n in mock_db.insert_statements if table == SESSION_TABLE]
        assert session_inserts == [1000, 1000, 500]
        assert all(s.id is not None for s in sample_set.sessions.values())
        assert len({s.id for s in sample_set.sessions.values()}) == 2500
        assert mock_db.commits == 1

    def test_configurable_batch_size(self, mock_db):
        writer = HistoryWriter(mock_db, batch_size=2)
        writer.persist(_sample([capture_row(10, [20]), capture_row(20, []), capture_row(30, [20])]))
        assert [n for table, n in mock_db.insert_statements if table == SESSION_TABLE] == [2, 1]

    def test_persist_twice_gives_independent_headers(self, writer, mock_db):
        first = writer.persist(_sample([capture_row(10, [20]), capture_row(20, [])]))
        first_session_ids = [s.id for s in first.sessions.values()]
        second = writer.persist(_sample([capture_row(10, [20]), capture_row(20, [])]))
        assert first.id != second.id
        by_header = {}
        for row in mock_db._tables[SESSION_TABLE]:
            by_header.setdefault(row["blocker_sample_id"], []).append(row["id"])
        assert by_header[first.id] == first_session_ids
        assert by_header[second.id] == [s.id for s in second.sessions.values()]
        assert not set(by_header[first.id]) & set(by_header[second.id])

    def test_missing_schema_raises_before_writing(self, writer, mock_db):
        mock_db.existing_tables = set()
        sample_set = _sample()
        with pytest.raises(NotEnabledError):
            writer.persist(sample_set)
        assert mock_db.insert_statements == []
        assert sample_set.id is None

    def test_failure_rolls_back_everything(self, writer, mock_db):
        sample_set = _large_sample(1500)
        mock_db.fail_on_insert = 3  # header, first batch, then the second batch fails
        with pytest.raises(WriteError):
            writer.persist(sample_set)
        assert mock_db._tables[SAMPLE_TABLE] == []
        assert mock_db._tables[SESSION_TABLE] == []
        assert mock_db.rollbacks == 1
        assert mock_db.commits == 0
        assert sample_set.id is None
        assert all(s.id is None for s in sample_set.sessions.values())

    def test_joins_caller_transaction(self, writer, mock_db):
        tx = MockTransaction(mock_db)
        sample_set = writer.persist(_sample([capture_row(10, [20]), capture_row(20, [])]), tx=tx)
        # Nothing visible until the caller commits
        assert mock_db.commits == 0
        assert mock_db._tables[SAMPLE_TABLE] == []
        assert sample_set.id is not None
        mock_db.commit(tx)
        assert len(mock_db._tables[SAMPLE_TABLE]) == 1
        assert len(mock_db._tables[SESSION_TABLE]) == 2


class TestInstallSchema:
    def test_creates_tables_and_resets_cache(self, writer, mock_db):
        mock_db.existing_tables = set()
        assert writer.supports_history() is False
        writer.install_schema()
        assert writer.supports_history() is True
        ddl = [sql for sql in mock_db._query_log if sql.startswith("CREATE")]
        assert len(ddl) == 4
        assert mock_db.commits == 1


class TestRecentSamples:
    def test_newest_first_with_counts(self, writer, mock_db):
        writer.persist(_sample())
        writer.persist(_sample([capture_row(10, [20]), capture_row(20, [])]))
        samples = writer.recent_samples(limit=10)
        assert [s["id"] for s in samples] == [2, 1]
        assert [s["session_count"] for s in samples] == [2, 0]

    def test_requires_schema(self, writer, mock_db):
        mock_db.existing_tables = set()
        with pytest.raises(NotEnabledError):
            writer.recent_samples()
