"""Index creation from operator-supplied names."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from .errors import DDLError
from .identifiers import interpolate_identifier, interpolate_identifier_list

LOG = logging.getLogger(__name__)

DEFAULT_METHOD = "btree"


def parse_columns(columns: str | Sequence[str]) -> list[str]:
    """Accept ``"a, b"`` as typed into a form or an already split sequence."""

    if isinstance(columns, str):
        columns = columns.split(",")
    return [column.strip() for column in columns if column.strip()]


def build_create_index(name: str, table: str, method: str | None, columns: str | Sequence[str]) -> str:
    column_list = parse_columns(columns)
    if not column_list:
        raise DDLError("An index needs at least one column.")
    try:
        return (
            f"CREATE INDEX {interpolate_identifier(name)} "
            f"ON {interpolate_identifier(table)} "
            f"USING {interpolate_identifier(method or DEFAULT_METHOD)} "
            f"({interpolate_identifier_list(column_list)})"
        )
    except ValueError as exc:
        raise DDLError(f"Invalid index definition: {exc}") from exc


class IndexManager:
    """Issues CREATE INDEX as a single DDL statement."""

    async def create_index(
        self,
        pool: Any,
        name: str,
        table: str,
        method: str | None,
        columns: str | Sequence[str],
    ) -> str:
        ddl = build_create_index(name, table, method, columns)
        try:
            status = await pool.execute(ddl)
        except Exception as exc:
            raise DDLError(f"Index creation failed: {exc}") from exc
        LOG.info("Index created", extra={"index": name, "table": table})
        return status


__all__ = ["DEFAULT_METHOD", "IndexManager", "build_create_index", "parse_columns"]
