"""Snapshot and restore of the planner's data keys."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from dayplanner.core.state import StateStore

logger = logging.getLogger(__name__)

BACKUP_KEY = "@app_backup"
BACKUP_VERSION = "1.0"

# Backup section name -> storage key.
DATA_KEYS: dict[str, str] = {
    "timetable_events": "@timetable_events",
    "tasks": "@tasks",
    "medications": "@medications",
    "user_preferences": "@user_preferences",
    "productivity_logs": "@productivity_logs",
}


async def create_backup(storage: StateStore, *, now: datetime | None = None) -> dict[str, Any]:
    """Copy every known data key into one document stored under ``@app_backup``."""
    backup: dict[str, Any] = {
        "version": BACKUP_VERSION,
        "created_at": (now or datetime.now()).isoformat(),
    }
    for section, key in DATA_KEYS.items():
        backup[section] = await storage.get(key)
    await storage.set(BACKUP_KEY, backup)
    logger.info("Created backup of %d section(s)", sum(1 for s in DATA_KEYS if backup[s]))
    return backup


async def restore_backup(storage: StateStore, backup: dict[str, Any] | None = None) -> list[str]:
    """Write the non-empty sections of *backup* back to their keys.

    With no *backup* given, the one stored under ``@app_backup`` is used.
    Returns the storage keys that were restored.
    """
    if backup is None:
        backup = await storage.get(BACKUP_KEY)
    if not backup:
        logger.warning("No backup available to restore")
        return []

    restored: list[str] = []
    for section, key in DATA_KEYS.items():
        value = backup.get(section)
        if value:
            await storage.set(key, value)
            restored.append(key)
    logger.info("Restored %d section(s) from backup", len(restored))
    return restored
