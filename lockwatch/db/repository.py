"""Multi-row INSERT builder on top of typed columns."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Iterable

from lockwatch.core.exceptions import DatabaseQueryError, WriteError
from lockwatch.db.connection import Transaction
from lockwatch.db.types import TypedColumn, quote_table_name

logger = logging.getLogger(__name__)


def _row_values(columns: Sequence[TypedColumn], row: Sequence[Any] | Mapping[str, Any]) -> list:
    if isinstance(row, Mapping):
        return [row.get(col.name) for col in columns]
    if len(row) != len(columns):
        raise ValueError(f"Row has {len(row)} values, expected {len(columns)}")
    return list(row)


def build_insert_sql(
    table: str,
    columns: Sequence[TypedColumn],
    rows: Iterable[Sequence[Any] | Mapping[str, Any]],
    returning: Sequence[TypedColumn] = (),
) -> str:
    """Render one INSERT statement with a VALUES row per input row.

    Rows are positional sequences matching ``columns`` or mappings keyed by
    column name (absent keys insert NULL). Every name and value is quoted
    through its typed column.
    """
    if not columns:
        raise ValueError("At least one column is required")
    column_sql = ", ".join(col.quote_name() for col in columns)
    values_sql = []
    for row in rows:
        values = _row_values(columns, row)
        values_sql.append(
            "(" + ", ".join(col.quote_value(value) for col, value in zip(columns, values)) + ")"
        )
    if not values_sql:
        raise ValueError("At least one row is required")

    sql = f"INSERT INTO {quote_table_name(table)}\n  ({column_sql})\nVALUES\n  " + ",\n  ".join(
        values_sql
    )
    if returning:
        sql += "\nRETURNING " + ", ".join(col.quote_name() for col in returning)
    return sql


def insert_typed(
    tx: Transaction,
    table: str,
    columns: Sequence[TypedColumn],
    rows: Iterable[Sequence[Any] | Mapping[str, Any]],
    returning: Sequence[TypedColumn] = (),
) -> list[dict[str, Any]]:
    """Insert rows into ``table`` and return the ``returning`` columns, in input order.

    Zero rows is a no-op. A value that does not fit its column, or a failed
    statement, raises WriteError and is not retried; the caller's
    transaction decides what happens next.
    """
    rows = list(rows)
    if not rows:
        return []

    try:
        sql = build_insert_sql(table, columns, rows, returning)
    except ValueError as e:
        raise WriteError(f"Cannot build insert into {table}: {e}") from e
    try:
        if returning:
            result = tx.execute_query(sql)
        else:
            tx.execute_nonquery(sql)
            result = []
    except DatabaseQueryError as e:
        raise WriteError(f"Insert into {table} failed: {e}") from e

    if returning and len(result) != len(rows):
        raise WriteError(
            f"Insert into {table} returned {len(result)} row(s) for {len(rows)} inserted"
        )
    logger.debug("Inserted %d row(s) into %s", len(rows), table)
    return [{col.name: col.cast(row.get(col.name)) for col in returning} for row in result]
