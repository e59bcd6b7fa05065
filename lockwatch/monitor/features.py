"""Server capability and schema presence checks."""

from __future__ import annotations

import logging

from lockwatch.db.connection import ConnectionManager

logger = logging.getLogger(__name__)

# server_version_num thresholds
VERSION_9_6 = 90600  # pg_blocking_pids()
VERSION_10 = 100000  # pg_stat_activity.backend_type

_MISSING_TABLES_SQL = """
SELECT
  t.table_name
FROM
  UNNEST(ARRAY[{placeholders}]::varchar[]) WITH ORDINALITY AS t(table_name, position)
WHERE NOT EXISTS (
  SELECT
    1
  FROM
    pg_catalog.pg_class c
  INNER JOIN
    pg_catalog.pg_namespace n ON n.oid = c.relnamespace
  WHERE
    n.nspname = 'public'
    AND c.relname = t.table_name
    AND c.relkind = 'r'
)
ORDER BY t.position
"""


class FeatureGate:
    """Answers "can this database do X" with cheap, cached catalog reads."""

    def __init__(self, db: ConnectionManager):
        self.db = db
        self._server_version_num: int | None = None

    def server_version_num(self) -> int:
        if self._server_version_num is None:
            value = self.db.select_one("SHOW server_version_num")
            self._server_version_num = int(value)
            logger.debug("server_version_num=%d", self._server_version_num)
        return self._server_version_num

    def supports_blocking_pids(self) -> bool:
        """pg_blocking_pids() arrived in PostgreSQL 9.6."""
        return self.server_version_num() >= VERSION_9_6

    def backend_type_available(self) -> bool:
        return self.server_version_num() >= VERSION_10

    def missing_tables(self, *tables: str) -> list[str]:
        """Tables (ordinary, in the public schema) that do not exist, in argument order."""
        if not tables:
            return []
        sql = _MISSING_TABLES_SQL.format(placeholders=", ".join("?" for _ in tables))
        rows = self.db.execute_query(sql, tuple(tables))
        return [row["table_name"] for row in rows]

    def table_exists(self, table: str) -> bool:
        return not self.missing_tables(table)

    def reset_cache(self) -> None:
        self._server_version_num = None
