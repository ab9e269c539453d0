"""Streaming full-table export as CSV or JSON."""

from __future__ import annotations

import base64
import csv
import datetime
import io
import ipaddress
import logging
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Sequence

import orjson

from .errors import QueryExecutionError
from .identifiers import interpolate_identifier

LOG = logging.getLogger(__name__)

DEFAULT_PREFETCH = 500


class ExportFormat(str, Enum):
    CSV = "csv"
    JSON = "json"

    @classmethod
    def parse(cls, value: str | None) -> ExportFormat:
        """Resolve a requested format; anything unrecognised exports as JSON."""

        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.JSON

    @property
    def content_type(self) -> str:
        if self is ExportFormat.CSV:
            return "text/csv"
        return "application/json"

    def filename(self, table: str) -> str:
        return f"{table}.{self.value}"


class TableExporter:
    """Reads a whole table through a server-side cursor and encodes it chunk by chunk."""

    def __init__(self, *, prefetch: int = DEFAULT_PREFETCH) -> None:
        self._prefetch = prefetch

    async def export(self, pool: Any, table: str, fmt: ExportFormat | str) -> AsyncIterator[bytes]:
        """Yield the encoded table; the pooled connection is held until the stream ends."""

        export_format = fmt if isinstance(fmt, ExportFormat) else ExportFormat.parse(fmt)
        try:
            sql = f"SELECT * FROM {interpolate_identifier(table)}"
            async with pool.acquire() as conn:
                async with conn.transaction():
                    prepared = await conn.prepare(sql)
                    columns = [attr.name for attr in prepared.get_attributes()]
                    records = prepared.cursor(prefetch=self._prefetch)
                    if export_format is ExportFormat.CSV:
                        encoder = _encode_csv(columns, records)
                    else:
                        encoder = _encode_json(columns, records)
                    async for chunk in encoder:
                        yield chunk
        except Exception as exc:
            raise QueryExecutionError(f"Export of '{table}' failed: {exc}") from exc
        LOG.debug("Exported table", extra={"table": table, "format": export_format.value})

    async def export_bytes(self, pool: Any, table: str, fmt: ExportFormat | str) -> bytes:
        """Collect the whole export in memory (small tables, tests, CLI)."""

        chunks = [chunk async for chunk in self.export(pool, table, fmt)]
        return b"".join(chunks)


async def _encode_csv(columns: Sequence[str], records: AsyncIterator[Any]) -> AsyncIterator[bytes]:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(columns)
    yield _drain(buffer)
    async for record in records:
        writer.writerow(_csv_cell(value) for value in record.values())
        yield _drain(buffer)


async def _encode_json(columns: Sequence[str], records: AsyncIterator[Any]) -> AsyncIterator[bytes]:
    yield b"["
    first = True
    async for record in records:
        row = dict(zip(columns, record.values()))
        prefix = b"" if first else b","
        first = False
        yield prefix + orjson.dumps(row, default=_json_default)
    yield b"]"


def _drain(buffer: io.StringIO) -> bytes:
    data = buffer.getvalue().encode("utf-8")
    buffer.seek(0)
    buffer.truncate(0)
    return data


def _csv_cell(value: object) -> object:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "\\x" + bytes(value).hex()
    return value


def _json_default(obj: Any) -> Any:
    """Fallback for values orjson does not encode natively."""

    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, datetime.timedelta):
        return obj.total_seconds()
    if isinstance(obj, (bytes, bytearray, memoryview)):
        data = bytes(obj)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError:
            return base64.b64encode(data).decode("ascii")
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    if isinstance(
        obj,
        (ipaddress.IPv4Address, ipaddress.IPv6Address, ipaddress.IPv4Network, ipaddress.IPv6Network),
    ):
        return str(obj)
    # asyncpg Range
    if hasattr(obj, "lower") and hasattr(obj, "upper") and hasattr(obj, "lower_inc"):
        return {"lower": obj.lower, "upper": obj.upper, "lower_inc": obj.lower_inc, "upper_inc": obj.upper_inc}
    return str(obj)


__all__ = ["DEFAULT_PREFETCH", "ExportFormat", "TableExporter"]
