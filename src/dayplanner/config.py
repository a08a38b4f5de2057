"""Planner configuration loading and validation.

Reads ``planner.toml`` from a config directory, parses all sections, and
returns a validated :class:`PlannerConfig` dataclass. Every section is
optional; a directory without ``planner.toml`` is an error, but an empty file
yields the defaults.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dayplanner.scheduling.availability import WorkingHours
from dayplanner.scheduling.conflicts import VALID_CONFLICT_POLICIES
from dayplanner.scheduling.intervals import is_valid_hhmm

CONFIG_FILENAME = "planner.toml"

# Pattern matching ${VAR_NAME}.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

_STORAGE_BACKENDS = ("memory", "json")


class ConfigError(Exception):
    """Raised when planner configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [planner.logging]."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class ReminderConfig:
    """Reminder timing from [planner.reminders].

    ``horizon_days`` and ``max_occurrences`` bound the per-occurrence fan-out
    for recurring events; whichever is reached first wins.
    """

    offset_minutes: int = 15
    horizon_days: int = 90
    max_occurrences: int = 30
    snooze_minutes: int = 10
    due_today_time: str = "09:00"
    batch_time: str = "08:00"
    overdue_grace_minutes: int = 60


@dataclass
class SyncConfig:
    """Offline queue configuration from [planner.sync].

    ``max_retries`` of ``None`` keeps failing operations queued indefinitely.
    """

    queue_key: str = "@sync_queue"
    last_sync_key: str = "@last_sync"
    max_retries: int | None = None


@dataclass
class StorageConfig:
    backend: str = "memory"
    path: str | None = None


@dataclass
class PlannerConfig:
    """Parsed and validated planner configuration."""

    name: str = "default"
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    reminders: ReminderConfig = field(default_factory=ReminderConfig)
    working_hours: WorkingHours = field(default_factory=WorkingHours)
    conflict_policy: str = "suggest"
    sync: SyncConfig = field(default_factory=SyncConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]
    if isinstance(value, str):
        return _resolve_string(value)
    return value


def _resolve_string(s: str) -> str:
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)
    if missing:
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {', '.join(missing)} "
            f"(original: {s!r})"
        )
    return result


def _section(parent: dict[str, Any], name: str, path: str) -> dict[str, Any]:
    section = parent.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"{path} must be a TOML table")
    return section


def _positive_int(section: dict[str, Any], key: str, default: int, path: str) -> int:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, int) or raw <= 0:
        raise ConfigError(f"Invalid {path}.{key}: {raw!r}. Must be a positive integer.")
    return raw


def _non_negative_int(section: dict[str, Any], key: str, default: int, path: str) -> int:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        raise ConfigError(f"Invalid {path}.{key}: {raw!r}. Must be a non-negative integer.")
    return raw


def _hhmm(section: dict[str, Any], key: str, default: str, path: str) -> str:
    raw = section.get(key, default)
    if not is_valid_hhmm(raw):
        raise ConfigError(f"Invalid {path}.{key}: {raw!r}. Expected HH:MM.")
    return raw


def _parse_logging(section: dict[str, Any]) -> LoggingConfig:
    level = str(section.get("level", "INFO")).upper()
    fmt = str(section.get("format", "text")).lower()
    if fmt not in ("text", "json"):
        raise ConfigError(f"Invalid planner.logging.format: {fmt!r}. Expected 'text' or 'json'.")
    log_root = section.get("log_root")
    return LoggingConfig(level=level, format=fmt, log_root=str(log_root) if log_root else None)


def _parse_reminders(section: dict[str, Any]) -> ReminderConfig:
    path = "planner.reminders"
    return ReminderConfig(
        offset_minutes=_non_negative_int(section, "offset_minutes", 15, path),
        horizon_days=_positive_int(section, "horizon_days", 90, path),
        max_occurrences=_positive_int(section, "max_occurrences", 30, path),
        snooze_minutes=_positive_int(section, "snooze_minutes", 10, path),
        due_today_time=_hhmm(section, "due_today_time", "09:00", path),
        batch_time=_hhmm(section, "batch_time", "08:00", path),
        overdue_grace_minutes=_non_negative_int(section, "overdue_grace_minutes", 60, path),
    )


def _parse_working_hours(section: dict[str, Any]) -> WorkingHours:
    path = "planner.working_hours"
    start = _hhmm(section, "start", "09:00", path)
    end = _hhmm(section, "end", "17:00", path)
    try:
        return WorkingHours(start=start, end=end)
    except ValueError as exc:
        raise ConfigError(f"Invalid {path}: {exc}") from exc


def _parse_conflict_policy(section: dict[str, Any]) -> str:
    raw = section.get("policy", "suggest")
    normalized = str(raw).strip().lower()
    if normalized not in VALID_CONFLICT_POLICIES:
        supported = ", ".join(sorted(VALID_CONFLICT_POLICIES))
        raise ConfigError(f"Invalid planner.conflicts.policy: {raw!r}. Expected one of: {supported}")
    return normalized


def _parse_sync(section: dict[str, Any]) -> SyncConfig:
    queue_key = section.get("queue_key", "@sync_queue")
    if not isinstance(queue_key, str) or not queue_key.strip():
        raise ConfigError("planner.sync.queue_key must be a non-empty string")
    last_sync_key = section.get("last_sync_key", "@last_sync")
    if not isinstance(last_sync_key, str) or not last_sync_key.strip():
        raise ConfigError("planner.sync.last_sync_key must be a non-empty string")
    max_retries = None
    if "max_retries" in section:
        max_retries = _positive_int(section, "max_retries", 1, "planner.sync")
    return SyncConfig(
        queue_key=queue_key.strip(),
        last_sync_key=last_sync_key.strip(),
        max_retries=max_retries,
    )


def _parse_storage(section: dict[str, Any]) -> StorageConfig:
    backend = str(section.get("backend", "memory")).strip().lower()
    if backend not in _STORAGE_BACKENDS:
        raise ConfigError(
            f"Invalid planner.storage.backend: {backend!r}. "
            f"Expected one of: {', '.join(_STORAGE_BACKENDS)}"
        )
    path = section.get("path")
    if backend == "json" and (not isinstance(path, str) or not path.strip()):
        raise ConfigError("planner.storage.path is required when backend is 'json'")
    return StorageConfig(backend=backend, path=path.strip() if isinstance(path, str) else None)


def parse_config(data: dict[str, Any]) -> PlannerConfig:
    """Build a :class:`PlannerConfig` from already-decoded TOML data."""
    data = resolve_env_vars(data)
    planner = _section(data, "planner", "[planner]")

    name = planner.get("name", "default")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError("planner.name must be a non-empty string")

    return PlannerConfig(
        name=name.strip(),
        logging=_parse_logging(_section(planner, "logging", "planner.logging")),
        reminders=_parse_reminders(_section(planner, "reminders", "planner.reminders")),
        working_hours=_parse_working_hours(
            _section(planner, "working_hours", "planner.working_hours")
        ),
        conflict_policy=_parse_conflict_policy(
            _section(planner, "conflicts", "planner.conflicts")
        ),
        sync=_parse_sync(_section(planner, "sync", "planner.sync")),
        storage=_parse_storage(_section(planner, "storage", "planner.storage")),
    )


def load_config(config_dir: Path) -> PlannerConfig:
    """Load and validate ``planner.toml`` from *config_dir*.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or has invalid values.
    """
    toml_path = Path(config_dir) / CONFIG_FILENAME
    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc
    return parse_config(data)
