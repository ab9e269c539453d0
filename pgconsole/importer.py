"""Bulk import of uploaded CSV files as one parameterized INSERT."""

from __future__ import annotations

import csv
import io
import logging
import os
from contextlib import contextmanager
from typing import IO, Any, Iterator, Mapping, Union

from .errors import ConsoleError, DataImportError
from .identifiers import interpolate_identifier, interpolate_identifier_list
from .introspection import SchemaIntrospector
from .models import ImportBatch
from .query import row_count_from_status

LOG = logging.getLogger(__name__)

# asyncpg refuses statements with more bind arguments than this.
MAX_BIND_PARAMETERS = 32767

_TEXT_TYPES = frozenset({"text", "character varying", "character", "name", "citext"})

ImportSource = Union[str, "os.PathLike[str]", IO[bytes], IO[str]]


def read_batch(source: ImportSource) -> ImportBatch:
    """Parse a header-first CSV into an :class:`ImportBatch`.

    Every data row must carry exactly as many cells as the header; empty cells
    become NULL. Blank lines are skipped. Unreadable or non UTF-8 uploads are
    reported as :class:`DataImportError`.
    """

    try:
        with _open_text(source) as handle:
            return _parse_batch(handle)
    except (OSError, UnicodeDecodeError) as exc:
        raise DataImportError(f"Cannot read import file: {exc}") from exc


def _parse_batch(handle: IO[str]) -> ImportBatch:
    reader = csv.reader(handle)
    try:
        header = next(reader)
    except StopIteration:
        raise DataImportError("Import file is empty; expected a header row.") from None
    except csv.Error as exc:
        raise DataImportError(f"Malformed CSV: {exc}") from exc
    columns = tuple(name.strip() for name in header)
    if not columns or not all(columns):
        raise DataImportError("Header row contains an empty column name.")
    if len(set(columns)) != len(columns):
        raise DataImportError("Header row repeats a column name.")

    rows: list[tuple[str | None, ...]] = []
    try:
        for row in reader:
            if not row:
                continue
            if len(row) != len(columns):
                raise DataImportError(
                    f"Line {reader.line_num} has {len(row)} values but the header declares {len(columns)}."
                )
            rows.append(tuple(cell if cell != "" else None for cell in row))
    except csv.Error as exc:
        raise DataImportError(f"Malformed CSV near line {reader.line_num}: {exc}") from exc

    if not rows:
        raise DataImportError("Import file has no data rows.")
    return ImportBatch(columns=columns, rows=tuple(rows))


def build_insert(
    table: str,
    batch: ImportBatch,
    column_types: Mapping[str, str] | None = None,
) -> tuple[str, list[str | None]]:
    """Render the multi-row INSERT for ``batch`` and its flat argument list.

    Cell values are always bound as ``$n`` parameters. Cells are sent as text
    and cast to the column's catalog type when it is not a text type.
    """

    width = len(batch.columns)
    casts = [_cast_for((column_types or {}).get(column)) for column in batch.columns]
    groups: list[str] = []
    values: list[str | None] = []
    for row_index, row in enumerate(batch.rows):
        offset = row_index * width
        cells = ", ".join(f"${offset + j + 1}{casts[j]}" for j in range(width))
        groups.append(f"({cells})")
        values.extend(row)
    sql = (
        f"INSERT INTO {interpolate_identifier(table)} "
        f"({interpolate_identifier_list(batch.columns)}) VALUES {', '.join(groups)}"
    )
    return sql, values


class BulkImporter:
    """Loads one uploaded file into one table, all rows or none."""

    def __init__(self, introspector: SchemaIntrospector | None = None) -> None:
        self._introspector = introspector or SchemaIntrospector()

    async def import_file(self, pool: Any, table: str, source: ImportSource) -> int:
        batch = read_batch(source)
        if len(batch) * len(batch.columns) > MAX_BIND_PARAMETERS:
            raise DataImportError(
                f"Import of {len(batch)} rows x {len(batch.columns)} columns exceeds "
                f"the {MAX_BIND_PARAMETERS} parameter limit of a single statement."
            )
        column_types = await self._resolve_column_types(pool, table, batch)
        sql, values = build_insert(table, batch, column_types)
        try:
            status = await pool.execute(sql, *values)
        except Exception as exc:
            raise DataImportError(f"Import error: {exc}") from exc
        inserted = row_count_from_status(status)
        if inserted is None:
            inserted = len(batch)
        LOG.info("Imported rows", extra={"table": table, "rows": inserted})
        return inserted

    async def _resolve_column_types(self, pool: Any, table: str, batch: ImportBatch) -> dict[str, str]:
        try:
            available = await self._introspector.column_types(pool, table)
        except ConsoleError as exc:
            raise DataImportError(f"Import error: {exc}") from exc
        if not available:
            raise DataImportError(f"Table '{table}' has no columns to import into.")
        resolved: dict[str, str] = {}
        unknown: list[str] = []
        for column in batch.columns:
            # Unquoted identifiers fold to lower case on the server.
            data_type = available.get(column) or available.get(column.lower())
            if data_type is None:
                unknown.append(column)
            else:
                resolved[column] = data_type
        if unknown:
            raise DataImportError(f"Table '{table}' has no column(s): {', '.join(unknown)}.")
        return resolved


def _cast_for(data_type: str | None) -> str:
    if data_type is None or data_type.split("(", 1)[0] in _TEXT_TYPES:
        return ""
    # Catalog type names (format_type output), not operator input.
    return f"::text::{data_type}"


@contextmanager
def _open_text(source: ImportSource) -> Iterator[IO[str]]:
    if isinstance(source, (str, os.PathLike)):
        with open(source, newline="", encoding="utf-8-sig") as handle:
            yield handle
    elif isinstance(source, io.TextIOBase):
        yield source
    else:
        wrapper = io.TextIOWrapper(source, encoding="utf-8-sig", newline="")  # type: ignore[arg-type]
        try:
            yield wrapper
        finally:
            wrapper.detach()


__all__ = ["BulkImporter", "ImportSource", "MAX_BIND_PARAMETERS", "build_insert", "read_batch"]
