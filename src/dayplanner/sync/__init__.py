"""Offline operation queue, offline-aware storage helpers and backups."""

from dayplanner.sync.queue import OfflineQueue, StorageReplayTarget, SyncReplayError
from dayplanner.sync.storage import Connectivity, StaticConnectivity

__all__ = [
    "Connectivity",
    "OfflineQueue",
    "StaticConnectivity",
    "StorageReplayTarget",
    "SyncReplayError",
]
