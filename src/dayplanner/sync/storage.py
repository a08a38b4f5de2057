"""Offline-aware storage helpers.

Every helper writes to the local store first and, when the device is offline,
also appends the mutation to the :class:`~dayplanner.sync.queue.OfflineQueue`
so it can be replayed later. Local write failures propagate as
:class:`~dayplanner.core.state.PersistenceError`.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from dayplanner.core.state import PersistenceError, StateStore
from dayplanner.models import OperationType
from dayplanner.sync.queue import OfflineQueue, upsert_item

_SAME_AS_DATA = object()


@runtime_checkable
class Connectivity(Protocol):
    async def is_online(self) -> bool: ...


class StaticConnectivity:
    """Connectivity with a manually toggled flag."""

    def __init__(self, online: bool = True) -> None:
        self.online = online

    async def is_online(self) -> bool:
        return self.online


async def load_or_default(storage: StateStore, key: str, default: Any = None) -> Any:
    value = await storage.get(key)
    return default if value is None else value


async def _load_items(storage: StateStore, key: str) -> list[Any]:
    items = await load_or_default(storage, key, [])
    if not isinstance(items, list):
        raise PersistenceError(key, "get", "expected a list of items")
    return items


async def save_or_mutate(
    storage: StateStore,
    queue: OfflineQueue,
    connectivity: Connectivity,
    key: str,
    data: Any,
    op_type: OperationType | str,
    item_id: str | None = None,
    queued_data: Any = _SAME_AS_DATA,
) -> bool:
    """Write ``data`` under ``key`` locally; queue the operation when offline.

    ``queued_data`` is what goes into the queue entry when it differs from the
    full value written locally (a single item rather than the whole list).

    Returns ``True`` when the operation was queued.
    """
    await storage.set(key, data)
    if await connectivity.is_online():
        return False
    await queue.enqueue(
        op_type,
        key,
        data if queued_data is _SAME_AS_DATA else queued_data,
        item_id=item_id,
    )
    return True


async def add_item(
    storage: StateStore,
    queue: OfflineQueue,
    connectivity: Connectivity,
    key: str,
    item: dict[str, Any],
    op_type: OperationType | str,
) -> bool:
    """Append *item*, or replace the item with the same id. Returns ``True`` when queued."""
    items = upsert_item(await _load_items(storage, key), item["id"], item)
    return await save_or_mutate(
        storage, queue, connectivity, key, items, op_type, item_id=item["id"], queued_data=item
    )


async def update_item(
    storage: StateStore,
    queue: OfflineQueue,
    connectivity: Connectivity,
    key: str,
    item_id: str,
    updates: dict[str, Any],
    op_type: OperationType | str,
) -> bool:
    """Merge *updates* into the item with *item_id*.

    An unknown id is inserted as a new item, so replaying an update after the
    item was created elsewhere converges on the same state.
    """
    items = await _load_items(storage, key)
    existing = next(
        (item for item in items if isinstance(item, dict) and item.get("id") == item_id), None
    )
    merged = {**(existing or {}), **updates, "id": item_id}
    items = upsert_item(items, item_id, merged)
    return await save_or_mutate(
        storage, queue, connectivity, key, items, op_type, item_id=item_id, queued_data=merged
    )


async def delete_item(
    storage: StateStore,
    queue: OfflineQueue,
    connectivity: Connectivity,
    key: str,
    item_id: str,
    op_type: OperationType | str,
) -> bool:
    items = [
        item
        for item in await _load_items(storage, key)
        if not (isinstance(item, dict) and item.get("id") == item_id)
    ]
    return await save_or_mutate(
        storage, queue, connectivity, key, items, op_type, item_id=item_id, queued_data=None
    )
