"""Structured JSON logging for production observability."""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone


class JsonFormatter(logging.Formatter):
    """Formats log records as single-line JSON for log aggregators."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        database = getattr(record, "database", None)
        if database is not None:
            log_entry["database"] = database
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(
    level: str | None = None,
    json_output: bool | None = None,
) -> None:
    """Install one stdout handler on the root logger.

    ``level`` and ``json_output`` fall back to LOCKWATCH_LOG_LEVEL (default
    INFO) and LOCKWATCH_LOG_FORMAT (``json`` selects JsonFormatter, anything
    else plain text). Calling it again replaces the previous handler.
    """
    if level is None:
        level = os.environ.get("LOCKWATCH_LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.environ.get("LOCKWATCH_LOG_FORMAT", "text").lower() == "json"

    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(JsonFormatter() if json_output else logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()
    root.addHandler(handler)
