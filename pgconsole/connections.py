"""Connection registry binding console sessions to asyncpg pools."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import asyncpg

from .config import PoolSettings
from .errors import DatabaseConnectionError, NotConnectedError
from .models import ConnectionConfig

LOG = logging.getLogger(__name__)

PROBE_QUERY = "SELECT now()"


@dataclass(frozen=True, slots=True)
class RegistryEntry:
    """The pool currently owned by a session and the config it was opened with."""

    config: ConnectionConfig
    pool: Any


class ConnectionRegistry:
    """Maps session ids to their single live pool.

    The registry is the only writer of the mapping. Lookups are plain dict
    reads, so a concurrent ``get`` observes either the previous entry or its
    replacement; the previous pool is closed only after it has been unlinked.
    """

    def __init__(self, settings: PoolSettings | None = None) -> None:
        self._settings = settings or PoolSettings()
        self._entries: dict[str, RegistryEntry] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def probe(self, config: ConnectionConfig) -> datetime:
        """Open a throwaway connection and read the server clock."""

        try:
            conn = await asyncpg.connect(dsn=config.dsn, timeout=self._settings.connect_timeout)
        except Exception as exc:
            LOG.info("Connection probe failed", extra={"dsn": config.redacted})
            raise DatabaseConnectionError(f"Connection failed: {exc}", config=config) from exc
        try:
            return await conn.fetchval(PROBE_QUERY)
        except Exception as exc:
            raise DatabaseConnectionError(f"Connection failed: {exc}", config=config) from exc
        finally:
            await _close_quietly(conn)

    async def resolve(self, session_id: str, config: ConnectionConfig) -> Any:
        """Validate ``config`` and make it the session's pool, retiring any previous one."""

        await self.probe(config)
        try:
            pool = await asyncpg.create_pool(
                dsn=config.dsn,
                min_size=self._settings.min_size,
                max_size=self._settings.max_size,
                timeout=self._settings.connect_timeout,
            )
        except Exception as exc:
            raise DatabaseConnectionError(f"Connection failed: {exc}", config=config) from exc

        async with self._lock:
            previous = self._entries.get(session_id)
            self._entries[session_id] = RegistryEntry(config=config, pool=pool)
        LOG.info(
            "Session pool ready",
            extra={"session": session_id, "dsn": config.redacted, "replaced": previous is not None},
        )
        if previous is not None:
            await previous.pool.close()
        return pool

    def get(self, session_id: str) -> Any:
        """Return the session's pool or raise :class:`NotConnectedError`."""

        return self.entry(session_id).pool

    def config(self, session_id: str) -> ConnectionConfig:
        return self.entry(session_id).config

    def entry(self, session_id: str) -> RegistryEntry:
        entry = self._entries.get(session_id)
        if entry is None:
            raise NotConnectedError("No active connection for this session; connect first.")
        return entry

    async def release(self, session_id: str) -> bool:
        """Close and forget the session's pool; returns whether one existed."""

        async with self._lock:
            entry = self._entries.pop(session_id, None)
        if entry is None:
            return False
        await entry.pool.close()
        LOG.info("Session pool released", extra={"session": session_id})
        return True

    async def close_all(self) -> None:
        """Release every pool (process shutdown)."""

        async with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        for entry in entries:
            await entry.pool.close()


async def _close_quietly(conn: Any) -> None:
    try:
        await conn.close()
    except Exception:  # pragma: no cover - best effort cleanup
        LOG.debug("Probe connection close failed", exc_info=True)


__all__ = ["ConnectionRegistry", "PROBE_QUERY", "RegistryEntry"]
