"""Lockwatch exception hierarchy for precise error handling."""


class LockwatchError(Exception):
    """Base exception for all Lockwatch errors."""


class DatabaseConnectionError(LockwatchError):
    """Failed to establish a database connection."""


class DatabaseQueryError(LockwatchError):
    """A SQL statement failed."""


class TransientError(DatabaseQueryError):
    """A read failed with an error classified as retryable."""


class DatabaseTimeoutError(TransientError):
    """A statement was cancelled because it exceeded its timeout."""


class WriteError(DatabaseQueryError):
    """An INSERT or DDL statement failed. Writes are never retried."""


class CapabilityError(LockwatchError):
    """The monitored server lacks a feature required for the call."""


class NotEnabledError(LockwatchError):
    """A feature is not enabled for this database (e.g. history tables absent)."""


class SchemaMissingError(NotEnabledError):
    """Required tables are missing from the repository database."""

    def __init__(self, missing_tables: list[str]):
        self.missing_tables = list(missing_tables)
        super().__init__(
            f"Missing table(s): {', '.join(self.missing_tables)} are required to track blocker history"
        )


class ConfigurationError(LockwatchError):
    """Invalid or missing configuration."""
