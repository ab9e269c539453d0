"""Ad-hoc statement execution and the per-session query history."""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator

import asyncpg

from .errors import QueryExecutionError
from .models import QueryHistoryEntry

LOG = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 10


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Normalized statement output returned to the dashboard."""

    statement: str
    columns: tuple[str, ...]
    rows: tuple[tuple[object, ...], ...]
    status: str
    elapsed_ms: int
    row_count: int | None = None

    def as_dicts(self) -> list[dict[str, object]]:
        return [dict(zip(self.columns, row)) for row in self.rows]


class QueryHistory:
    """Most recent statements, newest first, capped at ``limit`` entries."""

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        if limit < 1:
            raise ValueError("History limit must be positive.")
        self._entries: deque[QueryHistoryEntry] = deque(maxlen=limit)

    @property
    def limit(self) -> int:
        return self._entries.maxlen or 0

    def record(self, entry: QueryHistoryEntry) -> None:
        self._entries.appendleft(entry)

    def entries(self) -> tuple[QueryHistoryEntry, ...]:
        return tuple(self._entries)

    def __iter__(self) -> Iterator[QueryHistoryEntry]:
        return iter(tuple(self._entries))

    def __len__(self) -> int:
        return len(self._entries)


class QueryExecutor:
    """Runs operator SQL verbatim on a pooled connection."""

    async def execute(
        self,
        pool: Any,
        sql: str,
        history: QueryHistory | None = None,
    ) -> QueryResult:
        """Run ``sql`` as typed, minus leading and trailing whitespace.

        The stripped text is what the server sees and what history records.
        """

        statement = sql.strip()
        if not statement:
            raise QueryExecutionError("Provide SQL to execute.")
        submitted_at = datetime.now(tz=timezone.utc)
        started = time.perf_counter()
        try:
            async with pool.acquire() as conn:
                columns, rows, status = await _run(conn, statement)
        except Exception as exc:
            LOG.info("Query failed", extra={"error": str(exc)})
            raise QueryExecutionError(f"Query error: {exc}") from exc
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        row_count = row_count_from_status(status)
        if row_count is None and columns:
            row_count = len(rows)
        result = QueryResult(
            statement=statement,
            columns=columns,
            rows=rows,
            status=status,
            elapsed_ms=elapsed_ms,
            row_count=row_count,
        )
        if history is not None:
            history.record(
                QueryHistoryEntry(statement=statement, submitted_at=submitted_at, row_count=row_count)
            )
        return result


async def _run(conn: Any, statement: str) -> tuple[tuple[str, ...], tuple[tuple[object, ...], ...], str]:
    try:
        prepared = await conn.prepare(statement)
    except asyncpg.PostgresSyntaxError as exc:
        # Several statements in one submission cannot be prepared; the simple
        # protocol runs them all and reports the status of the last one.
        if "multiple commands" not in str(exc):
            raise
        return (), (), await conn.execute(statement)
    records = await prepared.fetch()
    columns = tuple(attr.name for attr in prepared.get_attributes())
    return columns, _records_to_rows(records), prepared.get_statusmsg()


def _records_to_rows(records: Iterable[Any]) -> tuple[tuple[object, ...], ...]:
    return tuple(tuple(record.values()) for record in records)


def row_count_from_status(status: str | None) -> int | None:
    """Extract the affected/returned count from a command tag like ``INSERT 0 3``."""

    if not status:
        return None
    tail = status.rsplit(None, 1)[-1]
    if tail.isdigit():
        return int(tail)
    return None


__all__ = [
    "DEFAULT_HISTORY_LIMIT",
    "QueryExecutor",
    "QueryHistory",
    "QueryResult",
    "row_count_from_status",
]
