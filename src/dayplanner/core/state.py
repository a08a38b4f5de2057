"""Key-value storage collaborators.

The planner treats persistence as an opaque key-value store with
``get``/``set``/``remove``. Values are any JSON-serialisable structure.

Three backends are provided:

- :class:`InMemoryStateStore` for tests and ephemeral sessions.
- :class:`JsonFileStateStore`, a single JSON document on disk.
- :class:`PostgresStateStore`, a JSONB ``state`` table accessed via asyncpg.

Backend failures surface as :class:`PersistenceError` so callers can report a
failed write instead of silently losing data.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import asyncpg

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when a storage read or write fails.

    Attributes:
        key: The storage key involved.
        operation: ``"get"``, ``"set"`` or ``"remove"``.
    """

    def __init__(self, key: str, operation: str, message: str) -> None:
        self.key = key
        self.operation = operation
        super().__init__(f"Storage {operation} failed for key {key!r}: {message}")


@runtime_checkable
class StateStore(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def remove(self, key: str) -> None: ...


def decode_jsonb(val: Any) -> Any:
    """Decode a JSONB value, repairing accidental double-encoding."""
    if not isinstance(val, str):
        return val
    val = json.loads(val)
    if isinstance(val, str):
        logger.warning("Double-encoded JSONB detected, applying second decode pass")
        try:
            val = json.loads(val)
        except (json.JSONDecodeError, ValueError):
            pass
    return val


class InMemoryStateStore:
    """Dict-backed store. Values are deep-copied in and out."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def get(self, key: str) -> Any | None:
        return copy.deepcopy(self._data.get(key))

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)


class JsonFileStateStore:
    """All keys in one JSON document, rewritten atomically on every change."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(str(self._path), "get", str(exc)) from exc
        if not isinstance(data, dict):
            raise PersistenceError(str(self._path), "get", "document root is not an object")
        return data

    def _write(self, data: dict[str, Any], key: str, operation: str) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(data, default=str), encoding="utf-8")
            tmp_path.replace(self._path)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(key, operation, str(exc)) from exc

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            return self._read().get(key)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            data = self._read()
            data[key] = value
            self._write(data, key, "set")

    async def remove(self, key: str) -> None:
        async with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data, key, "remove")


class PostgresStateStore:
    """JSONB ``state`` table (``key TEXT PRIMARY KEY, value JSONB``) via asyncpg."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get(self, key: str) -> Any | None:
        try:
            row = await self._pool.fetchval("SELECT value FROM state WHERE key = $1", key)
        except (asyncpg.PostgresError, OSError) as exc:
            raise PersistenceError(key, "get", str(exc)) from exc
        if row is None:
            return None
        return decode_jsonb(row)

    async def set(self, key: str, value: Any) -> None:
        json_value = json.dumps(value, default=str)
        try:
            await self._pool.execute(
                """
                INSERT INTO state (key, value, updated_at)
                VALUES ($1, $2::jsonb, now())
                ON CONFLICT (key) DO UPDATE
                    SET value = EXCLUDED.value,
                        updated_at = now()
                """,
                key,
                json_value,
            )
        except (asyncpg.PostgresError, OSError) as exc:
            raise PersistenceError(key, "set", str(exc)) from exc

    async def remove(self, key: str) -> None:
        try:
            await self._pool.execute("DELETE FROM state WHERE key = $1", key)
        except (asyncpg.PostgresError, OSError) as exc:
            raise PersistenceError(key, "remove", str(exc)) from exc
