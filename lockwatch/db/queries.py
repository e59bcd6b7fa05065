"""SQL file loader: reads .sql files shipped with the package and caches them."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

SQL_DIR = Path(__file__).resolve().parent.parent / "sql"


@lru_cache(maxsize=64)
def load_sql(relative_path: str) -> str:
    """Load a SQL file relative to the sql/ directory.

    Example: load_sql("blockers/sample_set.sql")
    """
    full_path = (SQL_DIR / relative_path).resolve()
    if not full_path.is_relative_to(SQL_DIR.resolve()):
        raise ValueError(f"Path traversal blocked: {relative_path}")
    if not full_path.exists():
        raise FileNotFoundError(f"SQL file not found: {full_path}")
    logger.debug("Loaded SQL file %s", relative_path)
    return full_path.read_text()


def split_statements(sql: str) -> list[str]:
    """Split a script on statement-terminating semicolons at end of line.

    Only meant for the DDL scripts shipped in sql/schema, which keep one
    statement per ``;``-terminated block and no semicolons inside literals.
    """
    statements = []
    current: list[str] = []
    for line in sql.splitlines():
        stripped = line.strip()
        if not current and (not stripped or stripped.startswith("--")):
            continue
        current.append(line)
        if stripped.endswith(";"):
            statements.append("\n".join(current).rstrip().rstrip(";"))
            current = []
    tail = "\n".join(current).strip()
    if tail:
        statements.append(tail)
    return statements
