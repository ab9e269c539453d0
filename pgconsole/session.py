"""Session manager wiring the connection registry to every console operation."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Sequence

from .backups import BackupOrchestrator
from .config import AppConfig
from .connections import ConnectionRegistry
from .errors import ConsoleError, DatabaseConnectionError, NotConnectedError
from .export import ExportFormat, TableExporter
from .importer import BulkImporter, ImportSource
from .indexes import IndexManager
from .introspection import SchemaIntrospector
from .models import (
    BackupArtifact,
    ConnectionConfig,
    IndexDescriptor,
    QueryHistoryEntry,
    TableDescriptor,
)
from .query import QueryExecutor, QueryHistory, QueryResult

LOG = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(slots=True)
class Session:
    """Server-side record for one operator's interaction stream."""

    token: str
    history: QueryHistory
    created_at: datetime
    last_seen: datetime
    config: ConnectionConfig | None = None


@dataclass(frozen=True, slots=True)
class DashboardState:
    """Everything the dashboard renders after a request, best effort."""

    session_id: str
    connection: str | None
    tables: tuple[TableDescriptor, ...] = ()
    indexes: tuple[IndexDescriptor, ...] = ()
    history: tuple[QueryHistoryEntry, ...] = ()
    backups: tuple[BackupArtifact, ...] = ()
    result: QueryResult | None = None
    error: str | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)


class SessionManager:
    """Owns sessions and routes each request to exactly one component."""

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        registry: ConnectionRegistry | None = None,
        executor: QueryExecutor | None = None,
        introspector: SchemaIntrospector | None = None,
        importer: BulkImporter | None = None,
        exporter: TableExporter | None = None,
        index_manager: IndexManager | None = None,
        backups: BackupOrchestrator | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config or AppConfig()
        self._registry = registry or ConnectionRegistry(self._config.pool)
        self._executor = executor or QueryExecutor()
        self._introspector = introspector or SchemaIntrospector()
        self._importer = importer or BulkImporter(self._introspector)
        self._exporter = exporter or TableExporter(prefetch=self._config.export_prefetch)
        self._index_manager = index_manager or IndexManager()
        self._backups = backups or BackupOrchestrator(self._config.backups)
        self._clock = clock
        self._sessions: dict[str, Session] = {}

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def session_ids(self) -> tuple[str, ...]:
        return tuple(self._sessions)

    async def connect(self, dsn: str, session_id: str | None = None) -> str:
        """Test ``dsn`` and bind it to a session; returns the session token.

        On failure nothing is created or replaced and the raised
        :class:`DatabaseConnectionError` carries the attempted config.
        """

        config = ConnectionConfig(dsn=dsn.strip())
        if not config.dsn:
            raise DatabaseConnectionError("Provide a connection string.", config=config)
        token = session_id if session_id in self._sessions else secrets.token_urlsafe(32)
        await self._registry.resolve(token, config)
        now = self._clock()
        session = self._sessions.get(token)
        if session is None:
            session = Session(
                token=token,
                history=QueryHistory(self._config.history_limit),
                created_at=now,
                last_seen=now,
            )
            self._sessions[token] = session
        session.config = config
        session.last_seen = now
        return token

    def session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None or session.config is None:
            raise NotConnectedError("No active connection for this session; connect first.")
        session.last_seen = self._clock()
        return session

    def _pool(self, session_id: str) -> Any:
        self.session(session_id)
        return self._registry.get(session_id)

    async def run_query(self, session_id: str, sql: str) -> QueryResult:
        session = self.session(session_id)
        pool = self._registry.get(session_id)
        return await self._executor.execute(pool, sql, session.history)

    async def submit_query(self, session_id: str, sql: str) -> DashboardState:
        """Run ``sql`` and return the dashboard, with the error in place of a result on failure."""

        try:
            result = await self.run_query(session_id, sql)
        except NotConnectedError:
            raise
        except ConsoleError as exc:
            return await self.dashboard(session_id, error=str(exc))
        return await self.dashboard(session_id, result=result)

    async def list_tables(self, session_id: str) -> list[TableDescriptor]:
        return await self._introspector.list_tables(self._pool(session_id))

    async def list_indexes(self, session_id: str) -> list[IndexDescriptor]:
        return await self._introspector.list_indexes(self._pool(session_id))

    async def import_file(self, session_id: str, table: str, source: ImportSource) -> int:
        return await self._importer.import_file(self._pool(session_id), table, source)

    async def export_table(
        self, session_id: str, table: str, fmt: ExportFormat | str
    ) -> AsyncIterator[bytes]:
        """Resolve the session now; the returned stream reads the table lazily."""

        pool = self._pool(session_id)
        return self._exporter.export(pool, table, fmt)

    async def create_index(
        self,
        session_id: str,
        name: str,
        table: str,
        method: str | None,
        columns: str | Sequence[str],
    ) -> str:
        return await self._index_manager.create_index(self._pool(session_id), name, table, method, columns)

    async def backup(self, session_id: str) -> BackupArtifact:
        self.session(session_id)
        return await self._backups.backup(self._registry.config(session_id))

    async def restore(self, session_id: str, source: str | Path) -> None:
        self.session(session_id)
        await self._backups.restore(self._registry.config(session_id), source)

    async def restore_artifact(self, session_id: str, filename: str) -> None:
        self.session(session_id)
        await self._backups.restore_artifact(self._registry.config(session_id), filename)

    def list_backups(self) -> list[BackupArtifact]:
        return self._backups.list_backups()

    async def dashboard(
        self,
        session_id: str,
        *,
        result: QueryResult | None = None,
        error: str | None = None,
    ) -> DashboardState:
        """Collect the session's dashboard; each listing degrades to empty on its own."""

        session = self.session(session_id)
        pool = self._registry.get(session_id)
        warnings: list[str] = []
        tables: list[TableDescriptor] = []
        indexes: list[IndexDescriptor] = []
        backups: list[BackupArtifact] = []
        try:
            tables = await self._introspector.list_tables(pool)
        except ConsoleError as exc:
            LOG.warning("Table listing unavailable", extra={"session": session_id, "error": str(exc)})
            warnings.append(str(exc))
        try:
            indexes = await self._introspector.list_indexes(pool)
        except ConsoleError as exc:
            LOG.warning("Index listing unavailable", extra={"session": session_id, "error": str(exc)})
            warnings.append(str(exc))
        try:
            backups = self._backups.list_backups()
        except OSError as exc:
            LOG.warning("Backup listing unavailable", extra={"error": str(exc)})
            warnings.append(f"Backups unavailable: {exc}")
        return DashboardState(
            session_id=session_id,
            connection=self._registry.config(session_id).redacted,
            tables=tuple(tables),
            indexes=tuple(indexes),
            history=session.history.entries(),
            backups=tuple(backups),
            result=result,
            error=error,
            warnings=tuple(warnings),
        )

    async def disconnect(self, session_id: str) -> bool:
        """Destroy the session and close its pool."""

        session = self._sessions.pop(session_id, None)
        released = await self._registry.release(session_id)
        return session is not None or released

    async def expire_idle(self, now: datetime | None = None) -> list[str]:
        """Destroy sessions idle for longer than the configured TTL."""

        current = now or self._clock()
        ttl = timedelta(seconds=self._config.session_ttl_seconds)
        expired = [
            token for token, session in self._sessions.items() if current - session.last_seen > ttl
        ]
        for token in expired:
            await self.disconnect(token)
        if expired:
            LOG.info("Expired idle sessions", extra={"count": len(expired)})
        return expired

    async def shutdown(self) -> None:
        self._sessions.clear()
        await self._registry.close_all()


__all__ = ["DashboardState", "Session", "SessionManager"]
