"""Operator command line over the session manager."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import Awaitable, Callable, Sequence, TextIO

from .config import AppConfig, load_config
from .errors import ConsoleError
from .export import ExportFormat
from .session import SessionManager

LOG = logging.getLogger(__name__)

DSN_ENV = "DATABASE_URL"

Command = Callable[[SessionManager, str, argparse.Namespace, TextIO], Awaitable[None]]


async def _query(manager: SessionManager, session_id: str, args: argparse.Namespace, out: TextIO) -> None:
    result = await manager.run_query(session_id, args.sql)
    if result.columns:
        out.write("\t".join(result.columns) + "\n")
        for row in result.rows:
            out.write("\t".join("" if value is None else str(value) for value in row) + "\n")
    out.write(f"({result.status}, {result.elapsed_ms} ms)\n")


async def _tables(manager: SessionManager, session_id: str, args: argparse.Namespace, out: TextIO) -> None:
    for table in await manager.list_tables(session_id):
        out.write(f"{table.name}\n")


async def _indexes(manager: SessionManager, session_id: str, args: argparse.Namespace, out: TextIO) -> None:
    for index in await manager.list_indexes(session_id):
        out.write(f"{index.name}\t{index.definition}\n")


async def _export(manager: SessionManager, session_id: str, args: argparse.Namespace, out: TextIO) -> None:
    stream = await manager.export_table(session_id, args.table, ExportFormat.parse(args.format))
    async for chunk in stream:
        out.write(chunk.decode("utf-8"))


async def _import(manager: SessionManager, session_id: str, args: argparse.Namespace, out: TextIO) -> None:
    inserted = await manager.import_file(session_id, args.table, args.file)
    out.write(f"Imported {inserted} row(s) into {args.table}\n")


async def _create_index(manager: SessionManager, session_id: str, args: argparse.Namespace, out: TextIO) -> None:
    await manager.create_index(session_id, args.name, args.table, args.method, args.columns)
    out.write(f"Created index {args.name}\n")


async def _backup(manager: SessionManager, session_id: str, args: argparse.Namespace, out: TextIO) -> None:
    artifact = await manager.backup(session_id)
    out.write(f"{artifact.path}\n")


async def _restore(manager: SessionManager, session_id: str, args: argparse.Namespace, out: TextIO) -> None:
    if args.artifact:
        await manager.restore_artifact(session_id, args.source)
    else:
        await manager.restore(session_id, args.source)
    out.write(f"Restored {args.source}\n")


COMMANDS: dict[str, Command] = {
    "query": _query,
    "tables": _tables,
    "indexes": _indexes,
    "export": _export,
    "import": _import,
    "create-index": _create_index,
    "backup": _backup,
    "restore": _restore,
}


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="pgconsole", description="PostgreSQL administration console.")
    parser.add_argument("--dsn", default=os.environ.get(DSN_ENV), help=f"Connection string (default: ${DSN_ENV})")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    sub = parser.add_subparsers(dest="command", required=True)

    query = sub.add_parser("query", help="Run a statement")
    query.add_argument("sql")
    sub.add_parser("tables", help="List tables in the public schema")
    sub.add_parser("indexes", help="List indexes in the public schema")
    export = sub.add_parser("export", help="Write a table to stdout")
    export.add_argument("table")
    export.add_argument("--format", default="csv", help="csv or json")
    load = sub.add_parser("import", help="Insert a CSV file into a table")
    load.add_argument("table")
    load.add_argument("file")
    index = sub.add_parser("create-index", help="Create an index")
    index.add_argument("name")
    index.add_argument("table")
    index.add_argument("columns", help="Comma separated column list")
    index.add_argument("--method", default="btree")
    sub.add_parser("backup", help="Dump the database into the backups directory")
    restore = sub.add_parser("restore", help="Replay a dump into the database")
    restore.add_argument("source", help="Path to a dump, or an artifact name with --artifact")
    restore.add_argument("--artifact", action="store_true", help="Treat source as a name in the backups directory")
    sub.add_parser("backups", help="List backup artifacts")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace, config: AppConfig, out: TextIO) -> int:
    manager = SessionManager(config)
    if args.command == "backups":
        for artifact in manager.list_backups():
            created = artifact.created_at.isoformat(sep=" ") if artifact.created_at else "-"
            out.write(f"{artifact.filename}\t{created}\t{artifact.size_bytes or 0}\n")
        return 0
    if not args.dsn:
        sys.stderr.write(f"A connection string is required (--dsn or ${DSN_ENV}).\n")
        return 2
    try:
        session_id = await manager.connect(args.dsn)
        await COMMANDS[args.command](manager, session_id, args, out)
    except ConsoleError as exc:
        sys.stderr.write(f"{exc}\n")
        return 1
    finally:
        await manager.shutdown()
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    config = load_config()
    logging.basicConfig(
        level=(args.log_level or config.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    LOG.debug("Loaded configuration", extra={"backup_dir": str(config.backups.directory)})
    return asyncio.run(run(args, config, sys.stdout))


__all__ = ["COMMANDS", "main", "parse_args", "run"]
