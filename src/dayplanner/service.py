"""Planner service: the create/update/delete flow for events, tasks and medications.

Each mutation is validated, checked for conflicts (events only), written
locally through the offline-aware storage helpers, and then has its reminders
rescheduled. Conflicts are advisory unless the configured policy is
``block``. Reminder failures never fail a mutation; storage failures do.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from dayplanner.config import PlannerConfig, StorageConfig
from dayplanner.core.metrics import PlannerMetrics
from dayplanner.core.state import (
    InMemoryStateStore,
    JsonFileStateStore,
    PersistenceError,
    StateStore,
)
from dayplanner.models import (
    Event,
    ItemType,
    Medication,
    OperationType,
    Task,
    ValidationResult,
)
from dayplanner.reminders.facility import NotificationFacility
from dayplanner.reminders.scheduler import ReminderScheduler, SchedulerState
from dayplanner.scheduling.conflicts import ConflictAdvisory, check_conflicts
from dayplanner.scheduling.validation import (
    validate_event,
    validate_medication,
    validate_recurrence_pattern,
    validate_task,
)
from dayplanner.sync.queue import OfflineQueue, ReplayExecutor, ReplayResult
from dayplanner.sync.storage import (
    Connectivity,
    StaticConnectivity,
    add_item,
    delete_item,
    load_or_default,
)

logger = logging.getLogger(__name__)

EVENTS_KEY = "@timetable_events"
TASKS_KEY = "@tasks"
MEDICATIONS_KEY = "@medications"

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass
class MutationResult:
    success: bool
    errors: list[str] = field(default_factory=list)
    advisory: ConflictAdvisory | None = None
    queued: bool = False
    item: BaseModel | None = None


def build_store(config: StorageConfig) -> StateStore:
    """Create the local store selected by ``[planner.storage]``."""
    if config.backend == "json":
        return JsonFileStateStore(Path(config.path))
    return InMemoryStateStore()


def _coerce(
    model: type[ModelT],
    data: ModelT | Mapping[str, Any],
    validator,
) -> tuple[ModelT | None, ValidationResult]:
    """Validate field-level rules first, then build the model."""
    result = validator(data)
    if not result.is_valid:
        return None, result
    if isinstance(data, model):
        return data, result
    try:
        return model.model_validate(data), result
    except ValidationError as exc:
        result.errors.extend(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        return None, result


class PlannerService:
    """Wires storage, the offline queue, conflicts and reminders together."""

    def __init__(
        self,
        storage: StateStore,
        scheduler: ReminderScheduler,
        *,
        config: PlannerConfig | None = None,
        connectivity: Connectivity | None = None,
        queue: OfflineQueue | None = None,
        remote: ReplayExecutor | None = None,
    ) -> None:
        self._config = config or PlannerConfig()
        self._storage = storage
        self._scheduler = scheduler
        self._connectivity = connectivity or StaticConnectivity(online=True)
        self._queue = queue or OfflineQueue(
            storage,
            self._config.sync.queue_key,
            last_sync_key=self._config.sync.last_sync_key,
            max_retries=self._config.sync.max_retries,
        )
        self._remote = remote
        self._reminder_state: SchedulerState | None = None

    @property
    def queue(self) -> OfflineQueue:
        return self._queue

    async def reminder_state(self) -> SchedulerState:
        if self._reminder_state is None:
            self._reminder_state = await self._scheduler.initialize()
        return self._reminder_state

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _load_models(self, key: str, model: type[ModelT]) -> list[ModelT]:
        items = await load_or_default(self._storage, key, [])
        loaded: list[ModelT] = []
        for item in items:
            try:
                loaded.append(model.model_validate(item))
            except ValidationError:
                logger.warning("Skipping malformed %s entry under %s", model.__name__, key)
        return loaded

    async def list_events(self) -> list[Event]:
        return await self._load_models(EVENTS_KEY, Event)

    async def list_tasks(self) -> list[Task]:
        return await self._load_models(TASKS_KEY, Task)

    async def list_medications(self) -> list[Medication]:
        return await self._load_models(MEDICATIONS_KEY, Medication)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def _save_event(
        self, data: Event | Mapping[str, Any], op_type: OperationType
    ) -> MutationResult:
        event, validation = _coerce(Event, data, validate_event)
        if event is not None and event.is_recurring and event.recurrence is not None:
            pattern_result = validate_recurrence_pattern(event.recurrence)
            if not pattern_result.is_valid:
                validation.errors.extend(pattern_result.errors)
                event = None
        if event is None:
            return MutationResult(success=False, errors=validation.errors)

        try:
            committed = await self.list_events()
            advisory = check_conflicts(
                event,
                committed,
                policy=self._config.conflict_policy,
                working_hours=self._config.working_hours,
            )
            if advisory.status == "conflict" and self._config.conflict_policy == "block":
                return MutationResult(
                    success=False,
                    errors=[f"Event conflicts with {len(advisory.conflicts)} existing event(s)"],
                    advisory=advisory,
                )
            queued = await self._write_item(EVENTS_KEY, event, op_type)
        except PersistenceError as exc:
            logger.error("Failed to save event %s: %s", event.id, exc)
            return MutationResult(success=False, errors=[str(exc)])

        state = await self.reminder_state()
        if op_type is OperationType.UPDATE_EVENT:
            await self._scheduler.cancel_for_item(state, event.id, ItemType.TIMETABLE_EVENT)
        await self._scheduler.schedule_event_reminder(state, event)
        return MutationResult(success=True, advisory=advisory, queued=queued, item=event)

    async def create_event(self, data: Event | Mapping[str, Any]) -> MutationResult:
        return await self._save_event(data, OperationType.CREATE_EVENT)

    async def update_event(self, data: Event | Mapping[str, Any]) -> MutationResult:
        return await self._save_event(data, OperationType.UPDATE_EVENT)

    async def delete_event(self, event_id: str) -> MutationResult:
        result = await self._delete(EVENTS_KEY, event_id, OperationType.DELETE_EVENT)
        if result.success:
            state = await self.reminder_state()
            await self._scheduler.cancel_for_item(state, event_id, ItemType.TIMETABLE_EVENT)
        return result

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def _save_task(
        self, data: Task | Mapping[str, Any], op_type: OperationType
    ) -> MutationResult:
        task, validation = _coerce(Task, data, validate_task)
        if task is None:
            return MutationResult(success=False, errors=validation.errors)
        try:
            queued = await self._write_item(TASKS_KEY, task, op_type)
        except PersistenceError as exc:
            logger.error("Failed to save task %s: %s", task.id, exc)
            return MutationResult(success=False, errors=[str(exc)])

        state = await self.reminder_state()
        await self._scheduler.cancel_for_item(state, task.id, ItemType.TASK_REMINDER)
        await self._scheduler.schedule_task_reminders(state, task)
        await self._refresh_high_priority_batch(state)
        return MutationResult(success=True, queued=queued, item=task)

    async def create_task(self, data: Task | Mapping[str, Any]) -> MutationResult:
        return await self._save_task(data, OperationType.CREATE_TASK)

    async def update_task(self, data: Task | Mapping[str, Any]) -> MutationResult:
        return await self._save_task(data, OperationType.UPDATE_TASK)

    async def delete_task(self, task_id: str) -> MutationResult:
        result = await self._delete(TASKS_KEY, task_id, OperationType.DELETE_TASK)
        if result.success:
            state = await self.reminder_state()
            await self._scheduler.cancel_for_item(state, task_id, ItemType.TASK_REMINDER)
            await self._refresh_high_priority_batch(state)
        return result

    async def _refresh_high_priority_batch(self, state: SchedulerState) -> None:
        try:
            tasks = await self.list_tasks()
        except PersistenceError:
            logger.exception("Failed to load tasks for the high-priority summary")
            return
        await self._scheduler.schedule_high_priority_batch(state, tasks)

    # ------------------------------------------------------------------
    # Medications
    # ------------------------------------------------------------------

    async def update_medication(self, data: Medication | Mapping[str, Any]) -> MutationResult:
        medication, validation = _coerce(Medication, data, validate_medication)
        if medication is None:
            return MutationResult(success=False, errors=validation.errors)
        try:
            queued = await self._write_item(
                MEDICATIONS_KEY, medication, OperationType.UPDATE_MEDICATION
            )
        except PersistenceError as exc:
            logger.error("Failed to save medication %s: %s", medication.id, exc)
            return MutationResult(success=False, errors=[str(exc)])

        state = await self.reminder_state()
        await self._scheduler.cancel_for_item(state, medication.id, ItemType.MEDICATION_REMINDER)
        await self._scheduler.schedule_medication(state, medication)
        return MutationResult(success=True, queued=queued, item=medication)

    # ------------------------------------------------------------------
    # Storage and sync
    # ------------------------------------------------------------------

    async def _write_item(self, key: str, item: BaseModel, op_type: OperationType) -> bool:
        return await add_item(
            self._storage,
            self._queue,
            self._connectivity,
            key,
            item.model_dump(mode="json"),
            op_type,
        )

    async def _delete(self, key: str, item_id: str, op_type: OperationType) -> MutationResult:
        try:
            queued = await delete_item(
                self._storage, self._queue, self._connectivity, key, item_id, op_type
            )
        except PersistenceError as exc:
            logger.error("Failed to delete %s from %s: %s", item_id, key, exc)
            return MutationResult(success=False, errors=[str(exc)])
        return MutationResult(success=True, queued=queued)

    async def sync(self) -> ReplayResult | None:
        """Replay queued operations against the remote target when online."""
        if self._remote is None:
            return None
        if not await self._connectivity.is_online():
            logger.info("Offline; %d operation(s) waiting to sync", await self._queue.size())
            return None
        return await self._queue.replay(self._remote)


def create_service(
    config: PlannerConfig,
    facility: NotificationFacility,
    *,
    storage: StateStore | None = None,
    connectivity: Connectivity | None = None,
    remote: ReplayExecutor | None = None,
) -> PlannerService:
    """Assemble a :class:`PlannerService` from configuration."""
    metrics = PlannerMetrics(config.name)
    storage = storage or build_store(config.storage)
    scheduler = ReminderScheduler(facility, config.reminders, metrics=metrics)
    queue = OfflineQueue(
        storage,
        config.sync.queue_key,
        last_sync_key=config.sync.last_sync_key,
        max_retries=config.sync.max_retries,
        metrics=metrics,
    )
    return PlannerService(
        storage,
        scheduler,
        config=config,
        connectivity=connectivity,
        queue=queue,
        remote=remote,
    )
