"""Shared dataclasses used across the console components."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

_KEYWORD_PASSWORD = re.compile(r"(password\s*=\s*)('(?:[^'\\]|\\.)*'|\S+)", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class ConnectionConfig:
    """Connection string captured from the operator; handed to the driver as-is."""

    dsn: str

    @property
    def redacted(self) -> str:
        """DSN with any password masked, safe for logs and rendering."""

        parts = urlsplit(self.dsn)
        if parts.scheme and parts.password:
            userinfo, _, hostinfo = parts.netloc.rpartition("@")
            user = userinfo.split(":", 1)[0]
            netloc = f"{user}:***@{hostinfo}"
            return urlunsplit(parts._replace(netloc=netloc))
        return _KEYWORD_PASSWORD.sub(r"\1***", self.dsn)


@dataclass(frozen=True, slots=True)
class QueryHistoryEntry:
    """One successfully executed statement."""

    statement: str
    submitted_at: datetime
    row_count: int | None


@dataclass(frozen=True, slots=True)
class TableDescriptor:
    name: str


@dataclass(frozen=True, slots=True)
class IndexDescriptor:
    name: str
    definition: str


@dataclass(frozen=True, slots=True)
class BackupArtifact:
    """A dump file found in (or written to) the backups directory."""

    filename: str
    path: Path
    created_at: datetime | None
    size_bytes: int | None = None


@dataclass(frozen=True, slots=True)
class ImportBatch:
    """Rows parsed from one uploaded file, in file order."""

    columns: tuple[str, ...]
    rows: tuple[tuple[str | None, ...], ...]

    def __len__(self) -> int:
        return len(self.rows)


__all__ = [
    "BackupArtifact",
    "ConnectionConfig",
    "ImportBatch",
    "IndexDescriptor",
    "QueryHistoryEntry",
    "TableDescriptor",
]
