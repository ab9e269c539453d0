"""Catalog reads for the dashboard's table and index listings."""

from __future__ import annotations

from typing import Any

from .errors import QueryExecutionError
from .models import IndexDescriptor, TableDescriptor

DEFAULT_SCHEMA = "public"


class SchemaIntrospector:
    """Read-only queries against information_schema and pg_catalog views."""

    _TABLES_QUERY = """
        SELECT table_name
        FROM information_schema.tables
        WHERE table_schema = $1
        ORDER BY table_name
    """

    _INDEXES_QUERY = """
        SELECT indexname, indexdef
        FROM pg_indexes
        WHERE schemaname = $1
        ORDER BY tablename, indexname
    """

    _COLUMN_TYPES_QUERY = """
        SELECT a.attname, format_type(a.atttypid, a.atttypmod) AS data_type
        FROM pg_attribute a
        WHERE a.attrelid = $1::text::regclass
          AND a.attnum > 0
          AND NOT a.attisdropped
        ORDER BY a.attnum
    """

    def __init__(self, schema: str = DEFAULT_SCHEMA) -> None:
        self._schema = schema

    async def list_tables(self, pool: Any) -> list[TableDescriptor]:
        rows = await self._fetch(pool, self._TABLES_QUERY, self._schema)
        return [TableDescriptor(name=str(row["table_name"])) for row in rows]

    async def list_indexes(self, pool: Any) -> list[IndexDescriptor]:
        rows = await self._fetch(pool, self._INDEXES_QUERY, self._schema)
        return [
            IndexDescriptor(name=str(row["indexname"]), definition=str(row["indexdef"]))
            for row in rows
        ]

    async def column_types(self, pool: Any, table: str) -> dict[str, str]:
        """Map each column of ``table`` to its SQL type name, in column order."""

        rows = await self._fetch(pool, self._COLUMN_TYPES_QUERY, table)
        return {str(row["attname"]): str(row["data_type"]) for row in rows}

    @staticmethod
    async def _fetch(pool: Any, query: str, *args: object) -> list[Any]:
        try:
            return list(await pool.fetch(query, *args))
        except Exception as exc:
            raise QueryExecutionError(f"Catalog query failed: {exc}") from exc


__all__ = ["DEFAULT_SCHEMA", "SchemaIntrospector"]
