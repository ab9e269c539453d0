"""Logical backup and restore through the PostgreSQL client utilities."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Protocol, Sequence, runtime_checkable

from .config import BackupSettings
from .errors import BackupError, RestoreError
from .models import BackupArtifact, ConnectionConfig

LOG = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
_ARTIFACT_NAME = re.compile(r"^backup-(\d{8}-\d{6})(?:-\d+)?\.")


@dataclass(frozen=True, slots=True)
class ProcessOutcome:
    """Exit status and captured stderr of a finished child process."""

    exit_status: int
    stderr: str = ""


@runtime_checkable
class ProcessRunner(Protocol):
    """Capability used to launch external utilities."""

    async def run(self, command: str, args: Sequence[str]) -> ProcessOutcome:
        """Run ``command`` to completion; raise ``OSError`` if it cannot be spawned."""


class AsyncioProcessRunner:
    """Runs commands with ``asyncio.create_subprocess_exec`` (no shell, no timeout)."""

    async def run(self, command: str, args: Sequence[str]) -> ProcessOutcome:
        process = await asyncio.create_subprocess_exec(
            command,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await process.communicate()
        return ProcessOutcome(
            exit_status=process.returncode if process.returncode is not None else -1,
            stderr=stderr.decode("utf-8", errors="replace").strip(),
        )


class BackupOrchestrator:
    """Writes dumps into a shared artifacts directory and restores from files."""

    def __init__(
        self,
        settings: BackupSettings | None = None,
        *,
        runner: ProcessRunner | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._settings = settings or BackupSettings()
        self._runner = runner or AsyncioProcessRunner()
        self._clock = clock

    @property
    def directory(self) -> Path:
        return self._settings.directory

    async def backup(self, config: ConnectionConfig) -> BackupArtifact:
        """Dump the target into ``backup-<YYYYMMDD-HHmmss>.<ext>``."""

        created_at = self._clock().replace(microsecond=0)
        path = self._reserve(created_at)
        args = [
            f"--dbname={config.dsn}",
            f"--file={path}",
            "--no-password",
        ]
        LOG.info(
            "Starting backup",
            extra={"command": self._settings.dump_command, "artifact": path.name, "dsn": config.redacted},
        )
        try:
            outcome = await self._runner.run(self._settings.dump_command, args)
        except OSError as exc:
            path.unlink(missing_ok=True)
            raise BackupError(f"Could not start {self._settings.dump_command}: {exc}") from exc
        if outcome.exit_status != 0:
            path.unlink(missing_ok=True)
            LOG.warning("Backup failed", extra={"artifact": path.name, "exit_status": outcome.exit_status})
            raise BackupError(
                _failure_message(self._settings.dump_command, outcome),
                exit_status=outcome.exit_status,
                stderr=outcome.stderr,
            )
        LOG.info("Backup written", extra={"artifact": path.name})
        return BackupArtifact(
            filename=path.name,
            path=path,
            created_at=created_at,
            size_bytes=_size_of(path),
        )

    async def restore(self, config: ConnectionConfig, source: str | Path) -> None:
        """Replay a dump file (usually an upload staged on disk) into the target."""

        path = Path(source)
        if not path.is_file():
            raise RestoreError(f"Restore source '{path}' does not exist.")
        args = [
            f"--dbname={config.dsn}",
            f"--file={path}",
            "--no-password",
            "--quiet",
            "--set=ON_ERROR_STOP=1",
        ]
        LOG.info(
            "Starting restore",
            extra={"command": self._settings.restore_command, "source": path.name, "dsn": config.redacted},
        )
        try:
            outcome = await self._runner.run(self._settings.restore_command, args)
        except OSError as exc:
            raise RestoreError(f"Could not start {self._settings.restore_command}: {exc}") from exc
        if outcome.exit_status != 0:
            LOG.warning("Restore failed", extra={"source": path.name, "exit_status": outcome.exit_status})
            raise RestoreError(
                _failure_message(self._settings.restore_command, outcome),
                exit_status=outcome.exit_status,
                stderr=outcome.stderr,
            )

    async def restore_artifact(self, config: ConnectionConfig, filename: str) -> None:
        """Restore from an artifact that already lives in the backups directory."""

        if Path(filename).name != filename or filename in {"", ".", ".."}:
            raise RestoreError(f"'{filename}' is not a backup artifact name.")
        path = self.directory / filename
        if not path.is_file():
            raise RestoreError(f"Backup '{filename}' not found.")
        await self.restore(config, path)

    def list_backups(self) -> list[BackupArtifact]:
        """Every file in the backups directory, newest first."""

        try:
            entries = [entry for entry in self.directory.iterdir() if entry.is_file()]
        except FileNotFoundError:
            return []
        artifacts = [
            BackupArtifact(
                filename=entry.name,
                path=entry,
                created_at=parse_artifact_timestamp(entry.name),
                size_bytes=_size_of(entry),
            )
            for entry in entries
        ]
        artifacts.sort(key=lambda artifact: artifact.filename, reverse=True)
        artifacts.sort(key=lambda artifact: artifact.created_at or datetime.min, reverse=True)
        return artifacts

    def artifact_name(self, created_at: datetime, attempt: int = 0) -> str:
        stamp = created_at.strftime(TIMESTAMP_FORMAT)
        suffix = f"-{attempt}" if attempt else ""
        return f"backup-{stamp}{suffix}.{self._settings.extension}"

    def _reserve(self, created_at: datetime) -> Path:
        # Two backups in the same second get -1, -2, ... suffixes.
        self.directory.mkdir(parents=True, exist_ok=True)
        attempt = 0
        while True:
            path = self.directory / self.artifact_name(created_at, attempt)
            try:
                with path.open("x"):
                    return path
            except FileExistsError:
                attempt += 1


def parse_artifact_timestamp(filename: str) -> datetime | None:
    match = _ARTIFACT_NAME.match(filename)
    if not match:
        return None
    try:
        return datetime.strptime(match.group(1), TIMESTAMP_FORMAT)
    except ValueError:
        return None


def _failure_message(command: str, outcome: ProcessOutcome) -> str:
    detail = outcome.stderr.splitlines()[-1] if outcome.stderr else "no output"
    return f"{command} exited with status {outcome.exit_status}: {detail}"


def _size_of(path: Path) -> int | None:
    try:
        return path.stat().st_size
    except OSError:
        return None


__all__ = [
    "AsyncioProcessRunner",
    "BackupOrchestrator",
    "ProcessOutcome",
    "ProcessRunner",
    "TIMESTAMP_FORMAT",
    "parse_artifact_timestamp",
]
