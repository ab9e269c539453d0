"""Tests for query execution and history."""

from __future__ import annotations

from datetime import datetime, timezone

import asyncpg
import pytest

from pgconsole.errors import QueryExecutionError
from pgconsole.models import QueryHistoryEntry
from pgconsole.query import QueryExecutor, QueryHistory, row_count_from_status


@pytest.mark.anyio
async def test_executor_fetches_rows(fake_db, fake_pool) -> None:
    fake_db.create_table("accounts", {"id": "integer", "email": "text"}, [(1, "alice@example.com"), (2, "bob@example.com")])
    history = QueryHistory()

    result = await QueryExecutor().execute(fake_pool, "SELECT * FROM accounts", history)

    assert result.columns == ("id", "email")
    assert result.rows == ((1, "alice@example.com"), (2, "bob@example.com"))
    assert result.row_count == 2
    assert result.as_dicts()[0] == {"id": 1, "email": "alice@example.com"}
    assert len(history) == 1
    assert history.entries()[0].statement == "SELECT * FROM accounts"
    assert history.entries()[0].row_count == 2


@pytest.mark.anyio
async def test_executor_reports_affected_rows_for_writes(fake_db, fake_pool) -> None:
    fake_db.script("UPDATE accounts SET active = true", status="UPDATE 3")

    result = await QueryExecutor().execute(fake_pool, "UPDATE accounts SET active = true")

    assert result.columns == ()
    assert result.rows == ()
    assert result.status == "UPDATE 3"
    assert result.row_count == 3


@pytest.mark.anyio
async def test_executor_passes_statement_verbatim(fake_db, fake_pool) -> None:
    fake_db.script("DROP TABLE accounts", status="DROP TABLE")

    result = await QueryExecutor().execute(fake_pool, "  DROP TABLE accounts  ")

    assert fake_db.statements == ["DROP TABLE accounts"]
    assert result.row_count is None


@pytest.mark.anyio
async def test_executor_falls_back_for_multiple_commands(fake_db, fake_pool) -> None:
    sql = "CREATE TABLE t (id int); INSERT INTO t VALUES (1)"
    fake_db.fail_on(sql, asyncpg.PostgresSyntaxError("cannot insert multiple commands into a prepared statement"))
    seen = {}

    async def _execute(statement, *args):  # type: ignore[no-untyped-def]
        seen["sql"] = statement
        return "INSERT 0 1"

    fake_db.execute = _execute  # type: ignore[method-assign]

    result = await QueryExecutor().execute(fake_pool, sql)

    assert seen["sql"] == sql
    assert result.row_count == 1


@pytest.mark.anyio
async def test_executor_wraps_failures_and_skips_history(fake_db, fake_pool) -> None:
    history = QueryHistory()

    with pytest.raises(QueryExecutionError, match="Query error"):
        await QueryExecutor().execute(fake_pool, "SELEC nonsense", history)

    assert len(history) == 0


@pytest.mark.anyio
async def test_executor_rejects_empty_sql(fake_db, fake_pool) -> None:
    with pytest.raises(QueryExecutionError):
        await QueryExecutor().execute(fake_pool, "   ")

    assert fake_db.statements == []


@pytest.mark.anyio
async def test_history_is_bounded_and_newest_first(fake_db, fake_pool) -> None:
    history = QueryHistory(limit=10)
    executor = QueryExecutor()
    for number in range(12):
        sql = f"SELECT {number}"
        fake_db.script(sql, columns=("?column?",), rows=((number,),), status="SELECT 1")
        await executor.execute(fake_pool, sql, history)

    statements = [entry.statement for entry in history]

    assert len(history) == 10
    assert statements[0] == "SELECT 11"
    assert statements[-1] == "SELECT 2"
    timestamps = [entry.submitted_at for entry in history]
    assert timestamps == sorted(timestamps, reverse=True)


def test_history_evicts_oldest_entry() -> None:
    history = QueryHistory(limit=2)
    stamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for statement in ("a", "b", "c"):
        history.record(QueryHistoryEntry(statement=statement, submitted_at=stamp, row_count=None))

    assert [entry.statement for entry in history] == ["c", "b"]
    assert history.limit == 2


def test_history_requires_positive_limit() -> None:
    with pytest.raises(ValueError):
        QueryHistory(limit=0)


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        ("INSERT 0 5", 5),
        ("SELECT 2", 2),
        ("DELETE 0", 0),
        ("CREATE TABLE", None),
        ("", None),
        (None, None),
    ],
)
def test_row_count_from_status(status, expected) -> None:  # type: ignore[no-untyped-def]
    assert row_count_from_status(status) == expected
