"""Tests for the offline-aware storage helpers and backups."""

from __future__ import annotations

from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from dayplanner.core.state import InMemoryStateStore, PersistenceError
from dayplanner.models import OperationType
from dayplanner.sync.backup import BACKUP_KEY, create_backup, restore_backup
from dayplanner.sync.queue import OfflineQueue
from dayplanner.sync.storage import (
    StaticConnectivity,
    add_item,
    delete_item,
    load_or_default,
    save_or_mutate,
    update_item,
)

pytestmark = pytest.mark.unit


@pytest.fixture
def storage() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def queue(storage) -> OfflineQueue:
    return OfflineQueue(storage)


class TestSaveOrMutate:
    async def test_online_writes_locally_without_queueing(self, storage, queue):
        queued = await save_or_mutate(
            storage, queue, StaticConnectivity(True), "@tasks", [{"id": "t1"}], "CREATE_TASK", "t1"
        )

        assert not queued
        assert await storage.get("@tasks") == [{"id": "t1"}]
        assert await queue.size() == 0

    async def test_offline_writes_locally_and_queues(self, storage, queue):
        queued = await save_or_mutate(
            storage,
            queue,
            StaticConnectivity(False),
            "@user_preferences",
            {"theme": "dark"},
            OperationType.UPDATE_MEDICATION,
        )

        assert queued
        assert await storage.get("@user_preferences") == {"theme": "dark"}
        [op] = await queue.pending()
        assert op.data == {"theme": "dark"}
        assert op.item_id is None

    async def test_local_write_failure_propagates_and_nothing_is_queued(self, queue):
        failing = AsyncMock()
        failing.set.side_effect = PersistenceError("@tasks", "set", "disk full")

        with pytest.raises(PersistenceError, match="disk full"):
            await save_or_mutate(
                failing, queue, StaticConnectivity(False), "@tasks", [], OperationType.CREATE_TASK
            )
        assert await queue.size() == 0


class TestItemHelpers:
    async def test_add_update_delete_offline(self, storage, queue):
        offline = StaticConnectivity(False)

        assert await add_item(
            storage, queue, offline, "@tasks", {"id": "t1", "title": "A"}, "CREATE_TASK"
        )
        await update_item(storage, queue, offline, "@tasks", "t1", {"title": "B"}, "UPDATE_TASK")
        await add_item(storage, queue, offline, "@tasks", {"id": "t2", "title": "C"}, "CREATE_TASK")
        assert await delete_item(storage, queue, offline, "@tasks", "t2", "DELETE_TASK")

        assert await storage.get("@tasks") == [{"id": "t1", "title": "B"}]
        ops = await queue.pending()
        assert [op.type for op in ops] == [
            OperationType.CREATE_TASK,
            OperationType.UPDATE_TASK,
            OperationType.CREATE_TASK,
            OperationType.DELETE_TASK,
        ]
        assert ops[1].data == {"id": "t1", "title": "B"}
        assert ops[3].data is None

    async def test_add_existing_id_replaces(self, storage, queue):
        online = StaticConnectivity(True)
        await add_item(storage, queue, online, "@tasks", {"id": "t1", "v": 1}, "CREATE_TASK")

        queued = await add_item(storage, queue, online, "@tasks", {"id": "t1", "v": 2}, "UPDATE_TASK")

        assert not queued
        assert await storage.get("@tasks") == [{"id": "t1", "v": 2}]

    async def test_update_unknown_id_inserts(self, storage, queue):
        await update_item(
            storage, queue, StaticConnectivity(True), "@tasks", "new", {"title": "X"}, "UPDATE_TASK"
        )

        assert await storage.get("@tasks") == [{"title": "X", "id": "new"}]

    async def test_non_list_value_is_a_persistence_error(self, storage, queue):
        await storage.set("@tasks", {"id": "t1"})

        with pytest.raises(PersistenceError):
            await add_item(storage, queue, StaticConnectivity(True), "@tasks", {"id": "t2"}, "CREATE_TASK")

    async def test_load_or_default(self, storage):
        assert await load_or_default(storage, "@tasks", []) == []
        await storage.set("@tasks", [{"id": "t1"}])
        assert await load_or_default(storage, "@tasks", []) == [{"id": "t1"}]


class TestBackup:
    async def test_create_and_restore(self, storage):
        await storage.set("@tasks", [{"id": "t1"}])
        await storage.set("@medications", [{"id": "m1"}])

        backup = await create_backup(storage, now=datetime(2024, 1, 15, 8, 0))

        assert backup["created_at"] == "2024-01-15T08:00:00"
        assert backup["tasks"] == [{"id": "t1"}]
        assert backup["timetable_events"] is None
        assert (await storage.get(BACKUP_KEY)) == backup

        await storage.remove("@tasks")
        await storage.set("@medications", [])
        restored = await restore_backup(storage)

        assert restored == ["@tasks", "@medications"]
        assert await storage.get("@tasks") == [{"id": "t1"}]
        assert await storage.get("@medications") == [{"id": "m1"}]

    async def test_empty_sections_are_not_restored(self, storage):
        await storage.set("@tasks", [{"id": "keep"}])

        restored = await restore_backup(storage, {"tasks": [], "medications": None})

        assert restored == []
        assert await storage.get("@tasks") == [{"id": "keep"}]

    async def test_restore_without_backup(self, storage):
        assert await restore_backup(storage) == []
