"""pyodbc connection manager for PostgreSQL (psqlODBC driver)."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Iterator

import pyodbc

from lockwatch.config.models import DatabaseConfig
from lockwatch.core.exceptions import (
    DatabaseConnectionError,
    DatabaseQueryError,
    DatabaseTimeoutError,
    TransientError,
    WriteError,
)

logger = logging.getLogger(__name__)

# SQLSTATE class XX is "internal error"; these are worth a short retry
TRANSIENT_SQLSTATE_CLASSES = ("XX",)
# Driver-side timeout (HYT00/HYT01) and server-side cancel (57014 query_canceled)
TIMEOUT_SQLSTATES = frozenset({"HYT00", "HYT01", "57014"})
# Run in autocommit so a later rollback cannot undo it
SESSION_TIME_ZONE_SQL = "SET TIME ZONE 'UTC'"


def sqlstate(error: pyodbc.Error) -> str:
    """SQLSTATE of a pyodbc error; pyodbc puts it in args[0]."""
    if error.args and isinstance(error.args[0], str):
        return error.args[0]
    return ""


def is_transient(error: pyodbc.Error) -> bool:
    return sqlstate(error)[:2] in TRANSIENT_SQLSTATE_CLASSES


def is_timeout(error: pyodbc.Error) -> bool:
    return sqlstate(error) in TIMEOUT_SQLSTATES


def translate_error(error: pyodbc.Error) -> DatabaseQueryError:
    """Map a driver error onto the Lockwatch hierarchy."""
    if is_timeout(error):
        return DatabaseTimeoutError(f"Statement cancelled by timeout: {error}")
    if is_transient(error):
        return TransientError(f"Transient query failure: {error}")
    return DatabaseQueryError(f"Query failed: {error}")


def _execute(cur, sql: str, params: tuple) -> None:
    # No parameter tuple when there is nothing to bind: literal SQL text may
    # legitimately contain "?" inside quoted values.
    if params:
        cur.execute(sql, params)
    else:
        cur.execute(sql)


def _fetch_rows(cur) -> list[dict[str, Any]]:
    columns = [desc[0] for desc in cur.description] if cur.description else []
    if not columns:
        return []
    return [dict(zip(columns, row)) for row in cur.fetchall()]


class Transaction:
    """An open transaction on a single connection.

    Handles are created by ``ConnectionManager.transaction()``; whoever opened
    the handle owns commit and rollback.
    """

    def __init__(self, conn: pyodbc.Connection):
        self.conn = conn

    def execute_query(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        """Execute a statement and return its rows (if any) as dicts."""
        cur = self.conn.cursor()
        try:
            _execute(cur, sql, params)
            return _fetch_rows(cur)
        except pyodbc.Error as e:
            raise translate_error(e) from e
        finally:
            cur.close()

    def execute_nonquery(self, sql: str, params: tuple = ()) -> int:
        """Execute a statement and return rows affected."""
        cur = self.conn.cursor()
        try:
            _execute(cur, sql, params)
            return cur.rowcount
        except pyodbc.Error as e:
            raise translate_error(e) from e
        finally:
            cur.close()


class ConnectionManager:
    """Manages pyodbc connections to one PostgreSQL database."""

    def __init__(
        self,
        config: DatabaseConfig,
        read_retries: int = 2,
        retry_delay_seconds: float = 0.1,
    ):
        self.config = config
        self.read_retries = read_retries
        self.retry_delay_seconds = retry_delay_seconds
        self._conn_str = self._build_connection_string()

    def _build_connection_string(self) -> str:
        parts = [
            f"DRIVER={{{self.config.driver}}}",
            f"SERVER={self.config.host}",
            f"PORT={self.config.port}",
            f"DATABASE={self.config.name}",
            f"UID={self.config.user}",
            f"PWD={self.config.password}",
            f"SSLmode={self.config.sslmode}",
        ]
        return ";".join(parts)

    def get_connection(self) -> pyodbc.Connection:
        """Create and return a new connection with manual commit.

        The session time zone is pinned to UTC before the first transaction,
        so naive timestamps from psqlODBC are UTC on every server.
        """
        try:
            conn = pyodbc.connect(
                self._conn_str, timeout=self.config.connect_timeout, autocommit=True
            )
        except pyodbc.OperationalError as e:
            raise DatabaseConnectionError(f"Cannot connect to PostgreSQL: {e}") from e
        except pyodbc.Error as e:
            raise DatabaseConnectionError(f"Connection error: {e}") from e
        try:
            conn.execute(SESSION_TIME_ZONE_SQL)
            conn.autocommit = False
            conn.timeout = self.config.query_timeout
            return conn
        except pyodbc.Error as e:
            conn.close()
            raise DatabaseConnectionError(f"Cannot set session time zone: {e}") from e

    @contextmanager
    def cursor(self):
        """Context manager yielding a cursor that commits and closes."""
        conn = self.get_connection()
        try:
            cur = conn.cursor()
            yield cur
            conn.commit()
        except pyodbc.Error as e:
            conn.rollback()
            raise translate_error(e) from e
        finally:
            conn.close()

    def execute_query(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        """Execute a read and return rows as a list of dicts.

        Transient failures are retried ``read_retries`` times with a fixed
        delay; timeouts and any other error propagate immediately.
        """
        attempt = 0
        while True:
            try:
                with self.cursor() as cur:
                    _execute(cur, sql, params)
                    return _fetch_rows(cur)
            except DatabaseTimeoutError:
                raise
            except TransientError as e:
                if attempt >= self.read_retries:
                    logger.error("Query failed after %d retries: %s", attempt, e)
                    raise
                attempt += 1
                logger.warning(
                    "Transient query failure, retrying (%d/%d): %s", attempt, self.read_retries, e
                )
                time.sleep(self.retry_delay_seconds)

    def execute_nonquery(self, sql: str, params: tuple = ()) -> int:
        """Execute an INSERT/UPDATE/DELETE/DDL statement and return rows affected."""
        try:
            with self.cursor() as cur:
                _execute(cur, sql, params)
                return cur.rowcount
        except DatabaseQueryError as e:
            raise WriteError(str(e)) from e

    def select_one(self, sql: str, params: tuple = ()) -> Any:
        """First column of the first row, or None."""
        rows = self.execute_query(sql, params)
        if not rows:
            return None
        return next(iter(rows[0].values()), None)

    @contextmanager
    def transaction(
        self,
        tx: Transaction | None = None,
        statement_timeout: int | None = None,
        lock_timeout: int | None = None,
        rollback: bool = False,
    ) -> Iterator[Transaction]:
        """Open a transaction, or join ``tx`` when the caller already holds one.

        A joined transaction is never committed or rolled back here, and its
        timeouts are left as the caller set them. An owned transaction commits
        on normal exit (or rolls back when ``rollback`` is set) and rolls back
        on any exception. Timeouts are in milliseconds and apply via SET LOCAL.
        """
        if tx is not None:
            yield tx
            return

        conn = self.get_connection()
        owned = Transaction(conn)
        try:
            if statement_timeout is not None:
                owned.execute_nonquery(f"SET LOCAL statement_timeout = {int(statement_timeout)}")
            if lock_timeout is not None:
                owned.execute_nonquery(f"SET LOCAL lock_timeout = {int(lock_timeout)}")
            yield owned
            if rollback:
                conn.rollback()
            else:
                try:
                    conn.commit()
                except pyodbc.Error as e:
                    raise WriteError(f"Commit failed: {e}") from e
        except BaseException:
            try:
                conn.rollback()
            except pyodbc.Error as rollback_error:
                logger.warning("Rollback failed: %s", rollback_error)
            raise
        finally:
            conn.close()

    def test_connection(self) -> bool:
        """Test if the database is reachable."""
        try:
            rows = self.execute_query("SELECT 1 AS ok")
            return len(rows) > 0 and rows[0].get("ok") == 1
        except (DatabaseConnectionError, DatabaseQueryError) as e:
            logger.error("Connection test failed: %s", e)
            return False
