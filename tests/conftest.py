"""Shared in-memory doubles for asyncpg pools and external processes."""

from __future__ import annotations

import re
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Sequence

import pytest

from pgconsole.backups import BackupOrchestrator, ProcessOutcome
from pgconsole.config import AppConfig, BackupSettings
from pgconsole.session import SessionManager

_INSERT = re.compile(r"^INSERT INTO (\S+) \(([^)]*)\) VALUES ")
_SELECT_ALL = re.compile(r"^SELECT \* FROM (\S+)$")
_CREATE_INDEX = re.compile(r"^CREATE INDEX (\S+) ON (\S+) USING (\S+) \((.*)\)$")


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeServerError(Exception):
    """Stands in for an error reported by the server."""


@dataclass
class FakeTable:
    columns: dict[str, str]
    rows: list[tuple[object, ...]] = field(default_factory=list)


@dataclass
class ScriptedStatement:
    columns: tuple[str, ...] = ()
    rows: tuple[tuple[object, ...], ...] = ()
    status: str = ""
    effect: Callable[[], None] | None = None


@dataclass(frozen=True)
class FakeAttribute:
    name: str


class FakePrepared:
    def __init__(self, columns: Sequence[str], rows: Sequence[tuple[object, ...]], status: str, effect=None) -> None:
        self._columns = tuple(columns)
        self._rows = [tuple(row) for row in rows]
        self._status = status
        self._effect = effect

    async def fetch(self) -> list[dict[str, object]]:
        if self._effect is not None:
            self._effect()
        return [dict(zip(self._columns, row)) for row in self._rows]

    def get_attributes(self) -> tuple[FakeAttribute, ...]:
        return tuple(FakeAttribute(name) for name in self._columns)

    def get_statusmsg(self) -> str:
        return self._status

    def cursor(self, prefetch: int | None = None):  # type: ignore[no-untyped-def]
        rows = [dict(zip(self._columns, row)) for row in self._rows]

        async def _iterate():  # type: ignore[no-untyped-def]
            for row in rows:
                yield row

        return _iterate()


class FakeDatabase:
    """Tiny stand-in for one PostgreSQL target."""

    def __init__(self) -> None:
        self.tables: dict[str, FakeTable] = {}
        self.indexes: list[tuple[str, str]] = []
        self.scripts: dict[str, ScriptedStatement] = {}
        self.failures: dict[str, Exception] = {}
        self.unreachable: set[str] = set()
        self.statements: list[str] = []
        self.pools: list[FakePool] = []
        self.probes = 0

    def create_table(self, name: str, columns: dict[str, str], rows: Sequence[tuple[object, ...]] = ()) -> FakeTable:
        table = FakeTable(columns=dict(columns), rows=[tuple(row) for row in rows])
        self.tables[name] = table
        return table

    def script(self, sql: str, **kwargs: Any) -> None:
        self.scripts[sql] = ScriptedStatement(**kwargs)

    def fail_on(self, fragment: str, error: Exception | None = None) -> None:
        self.failures[fragment] = error or FakeServerError(f"failure near {fragment!r}")

    def live_pools(self) -> list[FakePool]:
        return [pool for pool in self.pools if not pool.closed]

    def _enter(self, sql: str) -> None:
        self.statements.append(sql)
        for fragment, error in self.failures.items():
            if fragment in sql:
                raise error

    async def fetch(self, sql: str, *args: object) -> list[dict[str, object]]:
        self._enter(sql)
        if "information_schema.tables" in sql:
            return [{"table_name": name} for name in sorted(self.tables)]
        if "pg_indexes" in sql:
            return [{"indexname": name, "indexdef": ddl} for name, ddl in self.indexes]
        if "pg_attribute" in sql:
            table = self.tables.get(str(args[0]))
            if table is None:
                raise FakeServerError(f'relation "{args[0]}" does not exist')
            return [{"attname": name, "data_type": kind} for name, kind in table.columns.items()]
        raise AssertionError(f"Unexpected fetch: {sql}")

    async def execute(self, sql: str, *args: object) -> str:
        self._enter(sql)
        scripted = self.scripts.get(sql)
        if scripted is not None:
            if scripted.effect is not None:
                scripted.effect()
            return scripted.status
        match = _INSERT.match(sql)
        if match:
            table = self._table(match.group(1))
            width = len(match.group(2).split(","))
            rows = [tuple(args[i : i + width]) for i in range(0, len(args), width)]
            table.rows.extend(rows)
            return f"INSERT 0 {len(rows)}"
        match = _CREATE_INDEX.match(sql)
        if match:
            self._table(match.group(2))
            self.indexes.append((match.group(1), sql))
            return "CREATE INDEX"
        raise FakeServerError(f"syntax error in {sql!r}")

    def prepare(self, sql: str) -> FakePrepared:
        self._enter(sql)
        scripted = self.scripts.get(sql)
        if scripted is not None:
            return FakePrepared(scripted.columns, scripted.rows, scripted.status, scripted.effect)
        match = _SELECT_ALL.match(sql)
        if match:
            table = self._table(match.group(1))
            return FakePrepared(tuple(table.columns), list(table.rows), f"SELECT {len(table.rows)}")
        raise FakeServerError(f"syntax error in {sql!r}")

    def _table(self, name: str) -> FakeTable:
        table = self.tables.get(name)
        if table is None:
            raise FakeServerError(f'relation "{name}" does not exist')
        return table


class FakeConnection:
    def __init__(self, db: FakeDatabase) -> None:
        self._db = db
        self.closed = False
        self.transactions = 0

    async def fetchval(self, sql: str) -> datetime:
        self._db._enter(sql)
        return datetime(2024, 1, 1, 12, 0, 0)

    async def fetch(self, sql: str, *args: object) -> list[dict[str, object]]:
        return await self._db.fetch(sql, *args)

    async def execute(self, sql: str, *args: object) -> str:
        return await self._db.execute(sql, *args)

    async def prepare(self, sql: str) -> FakePrepared:
        return self._db.prepare(sql)

    @asynccontextmanager
    async def transaction(self):  # type: ignore[no-untyped-def]
        self.transactions += 1
        yield self

    async def close(self) -> None:
        self.closed = True


class FakePool:
    def __init__(self, db: FakeDatabase, dsn: str | None = None) -> None:
        self._db = db
        self.dsn = dsn
        self.closed = False
        self.acquired = 0

    @asynccontextmanager
    async def acquire(self):  # type: ignore[no-untyped-def]
        if self.closed:
            raise FakeServerError("pool is closed")
        self.acquired += 1
        yield FakeConnection(self._db)

    async def fetch(self, sql: str, *args: object) -> list[dict[str, object]]:
        if self.closed:
            raise FakeServerError("pool is closed")
        return await self._db.fetch(sql, *args)

    async def execute(self, sql: str, *args: object) -> str:
        if self.closed:
            raise FakeServerError("pool is closed")
        return await self._db.execute(sql, *args)

    async def close(self) -> None:
        self.closed = True


class FakeProcessRunner:
    """Records invocations; writes dump output when asked to succeed."""

    def __init__(self, exit_status: int = 0, stderr: str = "", payload: str = "-- dump\n") -> None:
        self.exit_status = exit_status
        self.stderr = stderr
        self.payload = payload
        self.spawn_error: OSError | None = None
        self.calls: list[tuple[str, tuple[str, ...]]] = []

    async def run(self, command: str, args: Sequence[str]) -> ProcessOutcome:
        self.calls.append((command, tuple(args)))
        if self.spawn_error is not None:
            raise self.spawn_error
        for arg in args:
            if arg.startswith("--file=") and command == "pg_dump" and self.exit_status == 0:
                Path(arg.split("=", 1)[1]).write_text(self.payload)
        return ProcessOutcome(exit_status=self.exit_status, stderr=self.stderr)


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def fake_pool(fake_db: FakeDatabase) -> FakePool:
    return FakePool(fake_db)


@pytest.fixture
def patch_asyncpg(monkeypatch: pytest.MonkeyPatch, fake_db: FakeDatabase) -> FakeDatabase:
    """Route ``asyncpg.connect``/``create_pool`` in the registry to ``fake_db``."""

    async def _connect(*, dsn: str, timeout: float):  # type: ignore[no-untyped-def]
        if dsn in fake_db.unreachable:
            raise OSError(f"could not connect to {dsn}")
        fake_db.probes += 1
        return FakeConnection(fake_db)

    async def _create_pool(*, dsn: str, min_size: int, max_size: int, timeout: float) -> FakePool:
        pool = FakePool(fake_db, dsn)
        fake_db.pools.append(pool)
        return pool

    monkeypatch.setattr("pgconsole.connections.asyncpg.connect", _connect)
    monkeypatch.setattr("pgconsole.connections.asyncpg.create_pool", _create_pool)
    return fake_db


@pytest.fixture
def process_runner() -> FakeProcessRunner:
    return FakeProcessRunner()


@pytest.fixture
def backup_settings(tmp_path: Path) -> BackupSettings:
    return BackupSettings(directory=tmp_path / "backups")


@pytest.fixture
def manager(
    patch_asyncpg: FakeDatabase,
    backup_settings: BackupSettings,
    process_runner: FakeProcessRunner,
) -> SessionManager:
    config = AppConfig(backups=backup_settings)
    orchestrator = BackupOrchestrator(
        backup_settings,
        runner=process_runner,
        clock=lambda: datetime(2024, 5, 6, 7, 8, 9),
    )
    return SessionManager(config, backups=orchestrator)
