"""Domain models for events, tasks, medications, reminders, and queued operations.

All instants are naive local wall-clock datetimes taken from the host clock.
Timezone-aware inputs are converted to host-local time and made naive when a
model is validated, so comparisons against ``datetime.now()`` never mix naive
and aware values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def to_local_naive(value: datetime) -> datetime:
    """Return *value* as a naive host-local datetime."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


class EventCategory(StrEnum):
    WORK = "work"
    PERSONAL = "personal"
    HEALTH = "health"
    OTHER = "other"


class TaskPriority(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RecurrenceType(StrEnum):
    """Supported recurrence cadences.

    ``CUSTOM`` currently steps exactly like ``DAILY``.
    """

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class ReminderKind(StrEnum):
    """What a registered notification is reminding about."""

    EVENT = "event"
    RECURRING_INSTANCE = "recurring_instance"
    TASK_DUE_TODAY = "task_due_today"
    TASK_OVERDUE = "task_overdue"
    MEDICATION = "medication"
    HIGH_PRIORITY_BATCH = "high_priority_batch"
    SNOOZE = "snooze"


class ItemType(StrEnum):
    """Coarse item family used by cancel-by-item lookups."""

    TIMETABLE_EVENT = "timetable_event"
    TASK_REMINDER = "task_reminder"
    MEDICATION_REMINDER = "medication_reminder"


class OperationType(StrEnum):
    CREATE_EVENT = "CREATE_EVENT"
    UPDATE_EVENT = "UPDATE_EVENT"
    DELETE_EVENT = "DELETE_EVENT"
    CREATE_TASK = "CREATE_TASK"
    UPDATE_TASK = "UPDATE_TASK"
    DELETE_TASK = "DELETE_TASK"
    UPDATE_MEDICATION = "UPDATE_MEDICATION"

    @property
    def is_delete(self) -> bool:
        return self.value.startswith("DELETE_")


class _InstantModel(BaseModel):
    """Base model that normalizes every datetime field to host-local naive."""

    @field_validator("*", mode="after")
    @classmethod
    def _normalize_instants(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return to_local_naive(value)
        return value


class RecurrencePattern(_InstantModel):
    """How a recurring event repeats.

    ``interval`` is deliberately not range-constrained here: a stored pattern
    with a non-positive interval must still load, and expansion bounds it with
    a hard iteration cap. Use ``validate_recurrence_pattern`` to reject it at
    the edge.
    """

    model_config = ConfigDict(extra="forbid")

    type: RecurrenceType
    interval: int = 1
    end_date: datetime | None = None


class Event(_InstantModel):
    """A timetable event."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    title: str
    description: str | None = None
    start_at: datetime
    duration_minutes: int = Field(gt=0)
    category: EventCategory = EventCategory.OTHER
    is_recurring: bool = False
    recurrence: RecurrencePattern | None = None
    notification_enabled: bool = True

    @property
    def end_at(self) -> datetime:
        return self.start_at + timedelta(minutes=self.duration_minutes)


class Occurrence(Event):
    """One concrete, dated materialization of a recurring event.

    Occurrences are recomputed on demand and never persisted.
    """

    parent_event_id: str
    is_recurring_instance: bool = True


class Task(_InstantModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    title: str
    description: str | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    due_at: datetime
    is_completed: bool = False
    completed_at: datetime | None = None
    category: str = "general"
    estimated_duration_minutes: int | None = None


class Medication(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    name: str
    dosage: str = ""
    reminder_times: list[str] = Field(default_factory=list)
    is_active: bool = True


class TimeSlot(_InstantModel):
    """A free interval with half-open ``[start_at, end_at)`` semantics."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    start_at: datetime
    end_at: datetime

    @property
    def duration_minutes(self) -> float:
        return (self.end_at - self.start_at).total_seconds() / 60


class NotificationRecord(_InstantModel):
    """A registration handed to the notification facility.

    ``payload`` always carries ``kind``, ``item_id`` and ``item_type`` so that
    registrations can be found again without knowing their exact id.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    kind: ReminderKind
    fire_at: datetime
    title: str
    message: str
    repeat: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class QueuedOperation(_InstantModel):
    """A mutation recorded while offline, replayed later as a state write."""

    model_config = ConfigDict(extra="forbid")

    id: str
    type: OperationType
    storage_key: str
    item_id: str | None = None
    data: Any = None
    enqueued_at: datetime
    retry_count: int = 0


@dataclass
class ValidationResult:
    """Field-level validation outcome. Returned, never raised."""

    errors: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors
