"""Error taxonomy shared by every console operation."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ConnectionConfig


class ConsoleError(RuntimeError):
    """Base class for failures surfaced to the operator."""


class DatabaseConnectionError(ConsoleError):
    """Raised when the target is unreachable or rejects the credentials."""

    def __init__(self, message: str, *, config: "ConnectionConfig | None" = None) -> None:
        super().__init__(message)
        self.config = config


class NotConnectedError(ConsoleError):
    """Raised when an operation needs a session that has no stored connection."""


class QueryExecutionError(ConsoleError):
    """Raised when a statement fails to execute."""


class DataImportError(ConsoleError):
    """Raised when an uploaded file cannot be imported."""


class DDLError(ConsoleError):
    """Raised when index DDL is rejected by the server."""


class _ProcessError(ConsoleError):
    def __init__(self, message: str, *, exit_status: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.exit_status = exit_status
        self.stderr = stderr


class BackupError(_ProcessError):
    """Raised when the dump utility cannot be spawned or exits non-zero."""


class RestoreError(_ProcessError):
    """Raised when the restore utility cannot be spawned or exits non-zero."""


__all__ = [
    "BackupError",
    "ConsoleError",
    "DDLError",
    "DataImportError",
    "DatabaseConnectionError",
    "NotConnectedError",
    "QueryExecutionError",
    "RestoreError",
]
