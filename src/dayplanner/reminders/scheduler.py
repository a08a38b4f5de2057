"""Reminder scheduling: turn events, tasks and medications into notifications.

State is explicit. :meth:`ReminderScheduler.initialize` returns a
:class:`SchedulerState` that callers pass to every other call; the scheduler
itself holds only its collaborators and configuration.

Per notification id the lifecycle is::

    unscheduled -> scheduled -> cancelled -> unscheduled
                             -> fired

Every registration goes through :meth:`ReminderScheduler._upsert`, which
cancels any existing registration for the id before registering the new one.
A fired id starts a fresh lifecycle when scheduled again.

All operations are best-effort. Facility errors are logged and counted, never
raised, so a missed reminder can never block the edit that triggered it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import StrEnum
from typing import Any, Literal

from opentelemetry import trace

from dayplanner.config import ReminderConfig
from dayplanner.core.metrics import PlannerMetrics
from dayplanner.models import (
    Event,
    ItemType,
    Medication,
    NotificationRecord,
    ReminderKind,
    Task,
    TaskPriority,
)
from dayplanner.reminders.facility import NotificationFacility
from dayplanner.scheduling.intervals import (
    add_days,
    add_months,
    at_time_of_day,
    parse_hhmm,
    same_day,
)
from dayplanner.scheduling.recurrence import expand

logger = logging.getLogger(__name__)

HIGH_PRIORITY_BATCH_ID = "high_priority_morning"

# Titles listed by name in the batch message; the rest are summarised as "and N more".
_BATCH_LISTED_TITLES = 3

# Fan-out window for recurring events, in calendar months from now.
_RECURRING_HORIZON_MONTHS = 3

TaskReminderKind = Literal["due_today", "overdue"]


class ReminderStatus(StrEnum):
    UNSCHEDULED = "unscheduled"
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    FIRED = "fired"


@dataclass
class SchedulerState:
    """Caller-held scheduler state.

    ``statuses`` only tracks ids this scheduler has touched; anything else is
    :attr:`ReminderStatus.UNSCHEDULED`.
    """

    initialized: bool = False
    has_permissions: bool = False
    statuses: dict[str, ReminderStatus] = field(default_factory=dict)

    def status(self, notification_id: str) -> ReminderStatus:
        return self.statuses.get(notification_id, ReminderStatus.UNSCHEDULED)

    def scheduled_ids(self) -> list[str]:
        return sorted(k for k, v in self.statuses.items() if v is ReminderStatus.SCHEDULED)


def event_notification_id(event_id: str) -> str:
    return f"timetable_{event_id}"


def task_notification_id(task_id: str, kind: TaskReminderKind) -> str:
    return f"task_{task_id}_{kind}"


def medication_notification_id(medication_id: str, time_of_day: str) -> str:
    hour, minute = parse_hhmm(time_of_day)
    return f"medication_{medication_id}_{hour:02d}:{minute:02d}"


def snooze_notification_id(notification_id: str) -> str:
    return f"{notification_id}_snooze"


def _format_hhmm(value: datetime) -> str:
    return value.strftime("%H:%M")


def format_batch_message(titles: list[str]) -> str:
    """``"You have N high-priority task(s): A, B, C and M more"``."""
    count = len(titles)
    listed = ", ".join(titles[:_BATCH_LISTED_TITLES])
    message = f"You have {count} high-priority task{'s' if count > 1 else ''}: {listed}"
    remaining = count - _BATCH_LISTED_TITLES
    if remaining > 0:
        message += f" and {remaining} more"
    return message


class ReminderScheduler:
    """Register and cancel notifications on a :class:`NotificationFacility`."""

    def __init__(
        self,
        facility: NotificationFacility,
        config: ReminderConfig | None = None,
        *,
        clock: Callable[[], datetime] = datetime.now,
        metrics: PlannerMetrics | None = None,
    ) -> None:
        self._facility = facility
        self._config = config or ReminderConfig()
        self._clock = clock
        self._metrics = metrics or PlannerMetrics()

    @property
    def config(self) -> ReminderConfig:
        return self._config

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> SchedulerState:
        """Ask the facility for permission and return a fresh state.

        Facilities without a ``request_permissions`` coroutine are treated as
        always permitted. A failing permission request leaves the state
        initialized but without permissions, so every later call is a no-op.
        """
        state = SchedulerState(initialized=True)
        request = getattr(self._facility, "request_permissions", None)
        if request is None:
            state.has_permissions = True
            return state
        try:
            state.has_permissions = bool(await request())
        except Exception:
            logger.exception("Failed to request notification permissions")
            self._metrics.reminder_failed("permissions")
            state.has_permissions = False
        if not state.has_permissions:
            logger.warning("Notification permissions not granted; reminders are disabled")
        return state

    def _can_schedule(self, state: SchedulerState) -> bool:
        return state.initialized and state.has_permissions

    async def _cancel(self, state: SchedulerState, notification_id: str) -> bool:
        try:
            await self._facility.cancel(notification_id)
        except Exception:
            logger.exception("Failed to cancel notification %s", notification_id)
            self._metrics.reminder_failed("cancel")
            return False
        state.statuses[notification_id] = ReminderStatus.CANCELLED
        return True

    async def _upsert(self, state: SchedulerState, record: NotificationRecord) -> bool:
        """Cancel any existing registration for ``record.id``, then register it.

        The cancel is issued regardless of ``state``: the facility may still
        hold a registration the state does not know about (a state from a
        fresh ``initialize()``, or a repeating reminder marked fired).
        """
        if record.fire_at <= self._clock():
            logger.debug("Skipping %s: fire time %s is not in the future", record.id, record.fire_at)
            return False
        cancelled = await self._cancel(state, record.id)
        try:
            await self._facility.register(record)
        except Exception:
            logger.exception("Failed to register notification %s", record.id)
            self._metrics.reminder_failed("register")
            if cancelled:
                # Nothing is registered under this id any more.
                state.statuses.pop(record.id, None)
            return False
        state.statuses[record.id] = ReminderStatus.SCHEDULED
        self._metrics.reminder_registered(record.kind.value)
        logger.debug("Scheduled %s at %s", record.id, record.fire_at)
        return True

    async def cancel(self, state: SchedulerState, notification_id: str) -> bool:
        return await self._cancel(state, notification_id)

    def mark_fired(self, state: SchedulerState, notification_id: str) -> None:
        """Record that the facility delivered ``notification_id``."""
        state.statuses[notification_id] = ReminderStatus.FIRED

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _event_record(
        self,
        event: Event,
        notification_id: str,
        kind: ReminderKind,
        offset_minutes: int,
    ) -> NotificationRecord:
        return NotificationRecord(
            id=notification_id,
            kind=kind,
            fire_at=event.start_at - timedelta(minutes=offset_minutes),
            title=f"Upcoming: {event.title}",
            message=f"Starting in {offset_minutes} minutes at {_format_hhmm(event.start_at)}",
            payload={
                "kind": kind.value,
                "item_id": getattr(event, "parent_event_id", event.id),
                "item_type": ItemType.TIMETABLE_EVENT.value,
                "event_id": event.id,
                "event_title": event.title,
                "start_at": event.start_at.isoformat(),
                "category": event.category.value,
            },
        )

    async def schedule_event_reminder(
        self,
        state: SchedulerState,
        event: Event,
        offset_minutes: int | None = None,
    ) -> list[str]:
        """Schedule the reminder for *event* and, if recurring, its occurrences.

        Returns the ids actually registered. The anchor reminder and the
        per-occurrence reminders are skipped independently when their fire
        time has already passed.
        """
        if not self._can_schedule(state) or not event.notification_enabled:
            return []
        offset = self._config.offset_minutes if offset_minutes is None else offset_minutes

        registered: list[str] = []
        anchor_id = event_notification_id(event.id)
        if await self._upsert(state, self._event_record(event, anchor_id, ReminderKind.EVENT, offset)):
            registered.append(anchor_id)

        if event.is_recurring and event.recurrence is not None:
            registered.extend(await self._schedule_recurring(state, event, offset))
        return registered

    async def _schedule_recurring(
        self, state: SchedulerState, event: Event, offset: int
    ) -> list[str]:
        now = self._clock()
        horizon = min(
            add_months(now, _RECURRING_HORIZON_MONTHS),
            add_days(now, self._config.horizon_days),
        )
        registered: list[str] = []
        count = 0
        for occurrence in expand(event, now, horizon):
            if occurrence.start_at == event.start_at:
                # Covered by the anchor reminder.
                continue
            if count >= self._config.max_occurrences:
                break
            count += 1
            record = self._event_record(
                occurrence, occurrence.id, ReminderKind.RECURRING_INSTANCE, offset
            )
            if await self._upsert(state, record):
                registered.append(occurrence.id)
        return registered

    async def reschedule_events(
        self,
        state: SchedulerState,
        events: Iterable[Event],
        offset_minutes: int | None = None,
    ) -> None:
        tracer = trace.get_tracer("dayplanner")
        with tracer.start_as_current_span("dayplanner.reschedule_events") as span:
            total = 0
            if self._can_schedule(state):
                for event in events:
                    await self.cancel_for_item(state, event.id, ItemType.TIMETABLE_EVENT)
                    total += len(await self.schedule_event_reminder(state, event, offset_minutes))
            span.set_attribute("reminders_registered", total)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def schedule_task_reminder(
        self,
        state: SchedulerState,
        task: Task,
        kind: TaskReminderKind,
    ) -> str | None:
        if not self._can_schedule(state) or task.is_completed:
            return None

        if kind == "due_today":
            fire_at = at_time_of_day(task.due_at, self._config.due_today_time)
            title = f"Task Due Today: {task.title}"
            message = f"Don't forget to complete your {task.priority.value} priority task"
            reminder_kind = ReminderKind.TASK_DUE_TODAY
        elif kind == "overdue":
            fire_at = task.due_at + timedelta(minutes=self._config.overdue_grace_minutes)
            title = f"Overdue Task: {task.title}"
            message = f"This {task.priority.value} priority task is now overdue"
            reminder_kind = ReminderKind.TASK_OVERDUE
        else:
            raise ValueError(f"Unknown task reminder kind: {kind!r}")

        notification_id = task_notification_id(task.id, kind)
        record = NotificationRecord(
            id=notification_id,
            kind=reminder_kind,
            fire_at=fire_at,
            title=title,
            message=message,
            payload={
                "kind": reminder_kind.value,
                "item_id": task.id,
                "item_type": ItemType.TASK_REMINDER.value,
                "task_id": task.id,
                "priority": task.priority.value,
                "due_at": task.due_at.isoformat(),
            },
        )
        if await self._upsert(state, record):
            return notification_id
        return None

    async def schedule_task_reminders(self, state: SchedulerState, task: Task) -> list[str]:
        """Apply the default task policy.

        A due-today reminder when the task is due today, and an overdue
        reminder for high-priority tasks.
        """
        registered: list[str] = []
        if not self._can_schedule(state) or task.is_completed:
            return registered
        if same_day(task.due_at, self._clock()):
            notification_id = await self.schedule_task_reminder(state, task, "due_today")
            if notification_id:
                registered.append(notification_id)
        if task.priority is TaskPriority.HIGH:
            notification_id = await self.schedule_task_reminder(state, task, "overdue")
            if notification_id:
                registered.append(notification_id)
        return registered

    async def schedule_high_priority_batch(
        self, state: SchedulerState, tasks: Iterable[Task]
    ) -> str | None:
        """Schedule tomorrow morning's summary of incomplete high-priority tasks."""
        if not self._can_schedule(state):
            return None
        pending = [t for t in tasks if t.priority is TaskPriority.HIGH and not t.is_completed]
        if not pending:
            if state.status(HIGH_PRIORITY_BATCH_ID) is ReminderStatus.SCHEDULED:
                await self._cancel(state, HIGH_PRIORITY_BATCH_ID)
            return None

        tomorrow: date = (self._clock() + timedelta(days=1)).date()
        record = NotificationRecord(
            id=HIGH_PRIORITY_BATCH_ID,
            kind=ReminderKind.HIGH_PRIORITY_BATCH,
            fire_at=at_time_of_day(tomorrow, self._config.batch_time),
            title="High Priority Tasks",
            message=format_batch_message([t.title for t in pending]),
            payload={
                "kind": ReminderKind.HIGH_PRIORITY_BATCH.value,
                "item_id": HIGH_PRIORITY_BATCH_ID,
                "item_type": ItemType.TASK_REMINDER.value,
                "task_ids": [t.id for t in pending],
            },
        )
        if await self._upsert(state, record):
            return HIGH_PRIORITY_BATCH_ID
        return None

    async def reschedule_tasks(self, state: SchedulerState, tasks: Iterable[Task]) -> None:
        tasks = list(tasks)
        tracer = trace.get_tracer("dayplanner")
        with tracer.start_as_current_span("dayplanner.reschedule_tasks") as span:
            total = 0
            if self._can_schedule(state):
                for task in tasks:
                    await self.cancel_for_item(state, task.id, ItemType.TASK_REMINDER)
                    total += len(await self.schedule_task_reminders(state, task))
                if await self.schedule_high_priority_batch(state, tasks):
                    total += 1
            span.set_attribute("reminders_registered", total)

    # ------------------------------------------------------------------
    # Medications
    # ------------------------------------------------------------------

    async def schedule_medication_reminder(
        self,
        state: SchedulerState,
        medicine_name: str,
        time_of_day: str,
        medication_id: str,
    ) -> str | None:
        """Schedule a daily reminder at the next ``HH:MM`` strictly after now."""
        if not self._can_schedule(state):
            return None
        now = self._clock()
        fire_at = at_time_of_day(now, time_of_day)
        if fire_at <= now:
            fire_at = add_days(fire_at, 1)

        notification_id = medication_notification_id(medication_id, time_of_day)
        time_of_day = notification_id.rsplit("_", 1)[1]
        record = NotificationRecord(
            id=notification_id,
            kind=ReminderKind.MEDICATION,
            fire_at=fire_at,
            title=f"Time for {medicine_name}",
            message="Don't forget to take your medication",
            repeat="day",
            payload={
                "kind": ReminderKind.MEDICATION.value,
                "item_id": medication_id,
                "item_type": ItemType.MEDICATION_REMINDER.value,
                "medication_id": medication_id,
                "time": time_of_day,
            },
        )
        if await self._upsert(state, record):
            return notification_id
        return None

    async def schedule_medication(self, state: SchedulerState, medication: Medication) -> list[str]:
        registered: list[str] = []
        if not medication.is_active:
            return registered
        for time_of_day in medication.reminder_times:
            notification_id = await self.schedule_medication_reminder(
                state, medication.name, time_of_day, medication.id
            )
            if notification_id:
                registered.append(notification_id)
        return registered

    # ------------------------------------------------------------------
    # Lookup, cancellation and follow-ups
    # ------------------------------------------------------------------

    async def _list_scheduled(self) -> list[NotificationRecord]:
        try:
            return await self._facility.list_scheduled()
        except Exception:
            logger.exception("Failed to list scheduled notifications")
            self._metrics.reminder_failed("list")
            return []

    async def cancel_for_item(
        self,
        state: SchedulerState,
        item_id: str,
        item_type: ItemType | str,
    ) -> list[str]:
        """Cancel every scheduled notification whose payload names this item."""
        item_type = ItemType(item_type)
        cancelled: list[str] = []
        for record in await self._list_scheduled():
            payload = record.payload
            if payload.get("item_id") == item_id and payload.get("item_type") == item_type.value:
                if await self._cancel(state, record.id):
                    cancelled.append(record.id)
        if cancelled:
            logger.info("Cancelled %d notification(s) for %s %s", len(cancelled), item_type, item_id)
        return cancelled

    async def snooze(
        self,
        state: SchedulerState,
        record: NotificationRecord | str,
        minutes: int | None = None,
    ) -> str | None:
        """Re-register a delivered notification as ``<id>_snooze`` a few minutes from now."""
        if isinstance(record, str):
            found = {r.id: r for r in await self._list_scheduled()}.get(record)
            if found is None:
                logger.warning("Cannot snooze unknown notification %s", record)
                return None
            record = found

        delay = self._config.snooze_minutes if minutes is None else minutes
        payload: dict[str, Any] = dict(record.payload)
        payload["kind"] = ReminderKind.SNOOZE.value
        payload["snoozed_from"] = record.id
        snoozed = NotificationRecord(
            id=snooze_notification_id(record.id),
            kind=ReminderKind.SNOOZE,
            fire_at=self._clock() + timedelta(minutes=delay),
            title=record.title,
            message=f"{record.message} (Snoozed)",
            payload=payload,
        )
        if await self._upsert(state, snoozed):
            return snoozed.id
        return None

    async def cleanup_expired(self, state: SchedulerState) -> list[str]:
        """Cancel one-shot registrations whose fire time has already passed."""
        now = self._clock()
        removed: list[str] = []
        for record in await self._list_scheduled():
            if record.repeat is None and record.fire_at <= now:
                if await self._cancel(state, record.id):
                    removed.append(record.id)
        return removed

    async def notification_stats(self) -> dict[str, int]:
        records = await self._list_scheduled()
        by_type = {t: 0 for t in ItemType}
        for record in records:
            item_type = record.payload.get("item_type")
            if item_type in by_type:
                by_type[ItemType(item_type)] += 1
        return {
            "scheduled": len(records),
            "event_reminders": by_type[ItemType.TIMETABLE_EVENT],
            "task_reminders": by_type[ItemType.TASK_REMINDER],
            "medication_reminders": by_type[ItemType.MEDICATION_REMINDER],
        }
