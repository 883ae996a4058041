"""Typed errors raised by the table engine."""

from typing import Optional

# SQLSTATE codes that mean the cached table shape no longer matches the database
SCHEMA_MISMATCH_CODES = {"42703", "42P01"}

QUERY_CANCELED = "57014"

CONNECTION_FAILURE = "08006"


class TableminError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFound(TableminError):
    """Unknown table or row."""


class InvalidArgument(TableminError):
    """Request cannot be served as given (missing key, empty change set...)."""


class IdentifierRejected(TableminError):
    """Table or column name not present in the current catalog snapshot."""

    def __init__(self, identifier: str, kind: str = "identifier"):
        self.identifier = identifier
        self.kind = kind
        super().__init__(f"Unknown {kind}: {identifier!r}")


class TableNotFound(NotFound, IdentifierRejected):
    """Table name that the catalog does not list."""

    def __init__(self, table_name: str):
        IdentifierRejected.__init__(self, table_name, kind="table")


class ReadOnlyViolation(TableminError):
    """Mutating or raw statement attempted while the engine is read-only."""

    def __init__(self, message: str = "Database is configured as read-only"):
        super().__init__(message)


class ExecutionError(TableminError):
    """The database rejected a statement."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(message)

    @property
    def is_schema_mismatch(self) -> bool:
        return self.code in SCHEMA_MISMATCH_CODES

    @property
    def is_integrity_error(self) -> bool:
        return bool(self.code) and self.code.startswith("23")

    @property
    def is_timeout(self) -> bool:
        return self.code == QUERY_CANCELED

    @property
    def is_connection_error(self) -> bool:
        return bool(self.code) and self.code.startswith("08")
