"""Durable offline operation queue.

Mutations made while disconnected are appended to a log persisted under a
single storage key (``@sync_queue`` by default) and replayed in FIFO order
once connectivity returns.

Appends are serialized by an :class:`asyncio.Lock`, so concurrent appends never
lose entries. Replay is a single sequential pass; a second replay started while
one is running returns immediately. Entries appended during a replay are kept
for the next pass.

Replay is state-based: :func:`apply_operation` writes the operation's full item
(or removes it) rather than applying a delta, so replaying an entry twice
leaves the store exactly as replaying it once.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from opentelemetry import trace
from pydantic import ValidationError

from dayplanner.core.metrics import PlannerMetrics
from dayplanner.core.state import PersistenceError, StateStore
from dayplanner.models import OperationType, QueuedOperation

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_KEY = "@sync_queue"
DEFAULT_LAST_SYNC_KEY = "@last_sync"

ReplayExecutor = Callable[[QueuedOperation], Awaitable[None]]


class SyncReplayError(Exception):
    """Raised by a replay executor when an operation could not be applied.

    The operation stays queued and its ``retry_count`` is incremented.
    """

    def __init__(self, operation_id: str, message: str) -> None:
        self.operation_id = operation_id
        super().__init__(f"Replay of {operation_id} failed: {message}")


def new_operation_id(now: datetime) -> str:
    """``op_<epoch ms>_<9 hex chars>``."""
    return f"op_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass
class ReplayResult:
    replayed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    remaining: int = 0
    skipped: bool = False


class OfflineQueue:
    """Append-only operation log over a :class:`StateStore` key."""

    def __init__(
        self,
        storage: StateStore,
        key: str = DEFAULT_QUEUE_KEY,
        *,
        last_sync_key: str = DEFAULT_LAST_SYNC_KEY,
        max_retries: int | None = None,
        clock: Callable[[], datetime] = datetime.now,
        metrics: PlannerMetrics | None = None,
    ) -> None:
        if max_retries is not None and max_retries < 1:
            raise ValueError(f"max_retries must be a positive integer or None, got {max_retries}")
        self._storage = storage
        self._key = key
        self._last_sync_key = last_sync_key
        self._max_retries = max_retries
        self._clock = clock
        self._metrics = metrics or PlannerMetrics()
        self._lock = asyncio.Lock()
        self._replaying = False

    @property
    def key(self) -> str:
        return self._key

    @property
    def is_replaying(self) -> bool:
        return self._replaying

    async def _load(self) -> list[QueuedOperation]:
        raw = await self._storage.get(self._key)
        if not raw:
            return []
        if not isinstance(raw, list):
            raise PersistenceError(self._key, "get", "queue payload is not a list")
        operations: list[QueuedOperation] = []
        for item in raw:
            try:
                operations.append(QueuedOperation.model_validate(item))
            except ValidationError:
                logger.warning("Discarding malformed queued operation: %r", item)
        return operations

    async def _save(self, operations: list[QueuedOperation]) -> None:
        await self._storage.set(self._key, [op.model_dump(mode="json") for op in operations])

    async def enqueue(
        self,
        op_type: OperationType | str,
        storage_key: str,
        data: Any,
        item_id: str | None = None,
    ) -> QueuedOperation:
        now = self._clock()
        operation = QueuedOperation(
            id=new_operation_id(now),
            type=OperationType(op_type),
            storage_key=storage_key,
            item_id=item_id,
            data=data,
            enqueued_at=now,
        )
        async with self._lock:
            operations = await self._load()
            operations.append(operation)
            await self._save(operations)
        self._metrics.operation_enqueued(operation.type.value)
        logger.info("Queued %s for %s (%s)", operation.type, storage_key, operation.id)
        return operation

    async def pending(self) -> list[QueuedOperation]:
        async with self._lock:
            return await self._load()

    async def size(self) -> int:
        return len(await self.pending())

    async def remove(self, operation_id: str) -> bool:
        async with self._lock:
            operations = await self._load()
            kept = [op for op in operations if op.id != operation_id]
            if len(kept) == len(operations):
                return False
            await self._save(kept)
            return True

    async def clear(self) -> None:
        async with self._lock:
            await self._storage.remove(self._key)

    async def last_sync(self) -> datetime | None:
        raw = await self._storage.get(self._last_sync_key)
        if not raw:
            return None
        return datetime.fromisoformat(raw)

    async def replay(self, executor: ReplayExecutor) -> ReplayResult:
        """Replay queued operations through *executor*, oldest first.

        A successful operation is removed. A failing one stays queued with its
        ``retry_count`` incremented, unless ``max_retries`` is set and reached,
        in which case it is dropped and logged.
        """
        if self._replaying:
            logger.debug("Replay already in progress; skipping")
            return ReplayResult(skipped=True)

        self._replaying = True
        try:
            tracer = trace.get_tracer("dayplanner")
            with tracer.start_as_current_span("dayplanner.sync.replay") as span:
                result = await self._replay(executor)
                span.set_attribute("replayed", len(result.replayed))
                span.set_attribute("failed", len(result.failed))
                span.set_attribute("remaining", result.remaining)
                return result
        finally:
            self._replaying = False

    async def _replay(self, executor: ReplayExecutor) -> ReplayResult:
        result = ReplayResult()
        async with self._lock:
            snapshot = await self._load()

        failures: dict[str, int] = {}
        for operation in snapshot:
            try:
                await executor(operation)
            except SyncReplayError as exc:
                logger.warning("%s", exc)
                failures[operation.id] = operation.retry_count + 1
            except Exception:
                logger.exception("Replay of %s (%s) failed", operation.id, operation.type)
                failures[operation.id] = operation.retry_count + 1
            else:
                result.replayed.append(operation.id)
                self._metrics.operation_replayed("ok")

        for operation_id, retries in failures.items():
            if self._max_retries is not None and retries >= self._max_retries:
                result.dropped.append(operation_id)
                self._metrics.operation_replayed("dropped")
                logger.error(
                    "Dropping queued operation %s after %d failed attempt(s)", operation_id, retries
                )
            else:
                result.failed.append(operation_id)
                self._metrics.operation_replayed("retry")

        done = set(result.replayed) | set(result.dropped)
        async with self._lock:
            # Re-read so entries appended during the pass are kept.
            current = await self._load()
            kept: list[QueuedOperation] = []
            for operation in current:
                if operation.id in done:
                    continue
                if operation.id in failures:
                    operation = operation.model_copy(update={"retry_count": failures[operation.id]})
                kept.append(operation)
            await self._save(kept)
            result.remaining = len(kept)

        await self._storage.set(self._last_sync_key, self._clock().isoformat())
        if snapshot:
            logger.info(
                "Replayed %d/%d queued operation(s); %d remaining",
                len(result.replayed),
                len(snapshot),
                result.remaining,
            )
        return result


def upsert_item(items: list[Any], item_id: str, data: Any) -> list[Any]:
    replaced = False
    updated: list[Any] = []
    for item in items:
        if isinstance(item, dict) and item.get("id") == item_id:
            updated.append(data)
            replaced = True
        else:
            updated.append(item)
    if not replaced:
        updated.append(data)
    return updated


async def apply_operation(storage: StateStore, operation: QueuedOperation) -> None:
    """Write *operation* to *storage* as a full-state upsert or removal.

    Operations without an ``item_id`` replace (or, for deletes, remove) the
    whole value at ``storage_key``. Operations with one treat the value as a
    list of ``{"id": ...}`` items.
    """
    key = operation.storage_key
    if operation.item_id is None:
        if operation.type.is_delete:
            await storage.remove(key)
        else:
            await storage.set(key, operation.data)
        return

    current = await storage.get(key)
    if current is None:
        current = []
    if not isinstance(current, list):
        raise PersistenceError(key, "get", "expected a list of items")

    if operation.type.is_delete:
        updated = [
            item
            for item in current
            if not (isinstance(item, dict) and item.get("id") == operation.item_id)
        ]
    else:
        updated = upsert_item(current, operation.item_id, operation.data)
    await storage.set(key, updated)


class StorageReplayTarget:
    """Replay executor that applies operations to a (remote) :class:`StateStore`."""

    def __init__(self, storage: StateStore) -> None:
        self._storage = storage

    async def __call__(self, operation: QueuedOperation) -> None:
        try:
            await apply_operation(self._storage, operation)
        except PersistenceError as exc:
            raise SyncReplayError(operation.id, str(exc)) from exc
