"""Error taxonomy shared by the registry, drivers, pool, cache and bridge."""

from __future__ import annotations


class SqldeckError(RuntimeError):
    """Base class for every error raised by sqldeck."""


class ConfigError(SqldeckError):
    """Connection configuration was rejected before any I/O happened."""


class DuplicateNameError(ConfigError):
    """Another live connection already uses the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Connection with name '{name}' already exists.")
        self.name = name


class ConnectionNotFoundError(ConfigError, LookupError):
    """No connection is registered under the given identifier."""

    def __init__(self, connection_id: str) -> None:
        super().__init__(f"Connection '{connection_id}' not found.")
        self.connection_id = connection_id


class ScriptNotFoundError(ConfigError, LookupError):
    """No saved script or script folder has the given identifier."""

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Script or folder '{item_id}' not found.")
        self.item_id = item_id


class ConnectionBackendError(SqldeckError):
    """Raised when a dialect driver cannot open a physical connection."""


class AuthError(ConnectionBackendError):
    """The database rejected the supplied credentials."""


class NetworkError(ConnectionBackendError):
    """The database host could not be reached."""


class DatabaseFileNotFoundError(ConnectionBackendError):
    """A file-based database is missing or unreadable."""


class QueryExecutionError(SqldeckError):
    """Raised when a statement fails; the dialect message is kept verbatim."""

    def __init__(self, message: str, *, statement: str | None = None) -> None:
        super().__init__(message)
        self.statement = statement


class QuerySyntaxError(QueryExecutionError):
    """The database could not parse the statement."""


class QueryPermissionError(QueryExecutionError):
    """The connected user lacks the privilege the statement needs."""


class QueryTimeoutError(QueryExecutionError):
    """The dialect aborted the statement because it ran too long."""


class DestructiveStatementError(QueryExecutionError):
    """A destructive statement was submitted without confirmation."""


class QueryCancelledError(SqldeckError):
    """Terminal state of a cancelled execution; not a failure."""

    def __init__(self, statement: str | None = None, *, connection_reset: bool = False) -> None:
        message = "Query was cancelled"
        if connection_reset:
            message += " (connection was reset to recover)"
        super().__init__(message)
        self.statement = statement
        self.connection_reset = connection_reset


class SchemaExtractionError(SqldeckError):
    """Raised when schema metadata cannot be read from the database."""


class AdvisoryError(SqldeckError):
    """Raised when the advisory subprocess cannot be started or spoken to."""


__all__ = [
    "AdvisoryError",
    "AuthError",
    "ConfigError",
    "ConnectionBackendError",
    "ConnectionNotFoundError",
    "DatabaseFileNotFoundError",
    "DestructiveStatementError",
    "DuplicateNameError",
    "NetworkError",
    "QueryCancelledError",
    "QueryExecutionError",
    "QueryPermissionError",
    "QuerySyntaxError",
    "QueryTimeoutError",
    "SchemaExtractionError",
    "ScriptNotFoundError",
    "SqldeckError",
]
