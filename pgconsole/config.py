"""App configuration loading helpers."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

import tomllib

from pydantic import BaseModel, Field, ValidationError

CONFIG_FILE = Path.home() / ".config" / "pgconsole" / "config.toml"


class PoolSettings(BaseModel):
    """Sizing for the per-session asyncpg pool."""

    min_size: int = 1
    max_size: int = 5
    connect_timeout: float = 5.0


class BackupSettings(BaseModel):
    """Where dumps are written and which utilities produce/consume them."""

    directory: Path = Path("backups")
    extension: str = "sql"
    dump_command: str = "pg_dump"
    restore_command: str = "psql"


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    port: int = 3000
    session_secret: str | None = None
    session_ttl_seconds: int = 3600
    history_limit: int = 10
    export_prefetch: int = 500
    log_level: str = "INFO"
    pool: PoolSettings = Field(default_factory=PoolSettings)
    backups: BackupSettings = Field(default_factory=BackupSettings)

    def with_backup_directory(self, directory: Path) -> AppConfig:
        """Return a copy writing artifacts to ``directory``."""

        backups = self.backups.model_copy(update={"directory": directory})
        return self.model_copy(update={"backups": backups})


_ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "PORT": ("port",),
    "SESSION_SECRET": ("session_secret",),
    "PGCONSOLE_LOG_LEVEL": ("log_level",),
    "PGCONSOLE_BACKUP_DIR": ("backups", "directory"),
}


def load_config(environ: Mapping[str, str] | None = None) -> AppConfig:
    """Load configuration from disk and the environment; fall back to defaults."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        data = {}
    except (tomllib.TOMLDecodeError, OSError):
        data = {}

    _apply_env(data, os.environ if environ is None else environ)
    try:
        return AppConfig.model_validate(data)
    except ValidationError:
        return AppConfig()


def save_config(config: AppConfig) -> None:
    """Persist configuration to disk."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        f"port = {config.port}",
        f"session_ttl_seconds = {config.session_ttl_seconds}",
        f"history_limit = {config.history_limit}",
        f"export_prefetch = {config.export_prefetch}",
        f'log_level = "{config.log_level}"',
    ]
    if config.session_secret:
        lines.append(f'session_secret = "{config.session_secret}"')
    lines.append("")
    lines.append("[pool]")
    lines.append(f"min_size = {config.pool.min_size}")
    lines.append(f"max_size = {config.pool.max_size}")
    lines.append(f"connect_timeout = {config.pool.connect_timeout}")
    lines.append("")
    lines.append("[backups]")
    lines.append(f'directory = "{config.backups.directory.as_posix()}"')
    lines.append(f'extension = "{config.backups.extension}"')
    lines.append(f'dump_command = "{config.backups.dump_command}"')
    lines.append(f'restore_command = "{config.backups.restore_command}"')
    CONFIG_FILE.write_text("\n".join(lines) + "\n")


def _read_config_file() -> dict[str, object]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    for key in ("port", "session_ttl_seconds", "history_limit", "export_prefetch"):
        value = raw.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            data[key] = value
    for key in ("session_secret", "log_level"):
        value = raw.get(key)
        if isinstance(value, str):
            data[key] = value
    for section in ("pool", "backups"):
        table = raw.get(section)
        if isinstance(table, dict):
            data[section] = dict(table)
    return data


def _apply_env(data: dict[str, object], environ: Mapping[str, str]) -> None:
    for variable, path in _ENV_OVERRIDES.items():
        value = environ.get(variable)
        if not value:
            continue
        target = data
        for key in path[:-1]:
            nested = target.get(key)
            if not isinstance(nested, dict):
                nested = {}
                target[key] = nested
            target = nested
        target[path[-1]] = value
