"""Structural validation for events, tasks, medications, and recurrence patterns.

Validators accept raw mappings (partially filled forms, decoded JSON) and
return a :class:`ValidationResult` listing field-level messages. They never
raise on invalid input.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from dayplanner.models import EventCategory, RecurrenceType, TaskPriority, ValidationResult
from dayplanner.scheduling.intervals import is_valid_hhmm

MAX_EVENT_DURATION_MINUTES = 24 * 60


def _as_mapping(value: Mapping[str, Any] | BaseModel) -> Mapping[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump()
    return value


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def validate_recurrence_pattern(
    pattern: Mapping[str, Any] | BaseModel,
    *,
    now: datetime | None = None,
) -> ValidationResult:
    """Validate a pattern at the edge, before it is stored.

    An end date that is already in the past is rejected here; stored patterns
    whose end date has since passed are still valid to expand.
    """
    data = _as_mapping(pattern)
    result = ValidationResult()

    if data.get("type") not in {t.value for t in RecurrenceType}:
        result.errors.append("Valid recurrence type is required")

    interval = data.get("interval", 1)
    if not _is_number(interval) or interval <= 0:
        result.errors.append("Recurrence interval must be greater than 0")

    end_date = data.get("end_date")
    if end_date is not None:
        if not isinstance(end_date, datetime):
            result.errors.append("Recurrence end date must be a valid date")
        elif end_date <= (now or datetime.now()):
            result.errors.append("Recurrence end date must be in the future")
    return result


def validate_event(event: Mapping[str, Any] | BaseModel) -> ValidationResult:
    data = _as_mapping(event)
    result = ValidationResult()

    if _is_blank(data.get("title")):
        result.errors.append("Title is required")

    if not isinstance(data.get("start_at"), datetime):
        result.errors.append("Valid start time is required")

    duration = data.get("duration_minutes")
    if not _is_number(duration) or duration <= 0:
        result.errors.append("Duration must be greater than 0 minutes")
    elif duration > MAX_EVENT_DURATION_MINUTES:
        result.errors.append("Duration cannot exceed 24 hours")

    if data.get("category") not in {c.value for c in EventCategory}:
        result.errors.append("Valid category is required")

    recurrence = data.get("recurrence")
    if data.get("is_recurring") and recurrence is not None:
        pattern = _as_mapping(recurrence)
        if pattern.get("type") not in {t.value for t in RecurrenceType}:
            result.errors.append("Valid recurrence type is required")
        interval = pattern.get("interval", 1)
        if not _is_number(interval) or interval <= 0:
            result.errors.append("Recurrence interval must be greater than 0")
    return result


def validate_task(task: Mapping[str, Any] | BaseModel) -> ValidationResult:
    data = _as_mapping(task)
    result = ValidationResult()

    if _is_blank(data.get("title")):
        result.errors.append("Title is required")

    if data.get("priority") not in {p.value for p in TaskPriority}:
        result.errors.append("Valid priority is required")

    if not isinstance(data.get("due_at"), datetime):
        result.errors.append("Valid due date is required")

    if _is_blank(data.get("category")):
        result.errors.append("Category is required")

    estimated = data.get("estimated_duration_minutes")
    if estimated is not None and (not _is_number(estimated) or estimated <= 0):
        result.errors.append("Estimated duration must be greater than 0 minutes")
    return result


def validate_medication(medication: Mapping[str, Any] | BaseModel) -> ValidationResult:
    data = _as_mapping(medication)
    result = ValidationResult()

    if _is_blank(data.get("name")):
        result.errors.append("Medication name is required")

    if _is_blank(data.get("dosage")):
        result.errors.append("Dosage is required")

    times = data.get("reminder_times") or []
    if not times:
        result.errors.append("At least one reminder time is required")
    for index, value in enumerate(times, start=1):
        if not is_valid_hhmm(value):
            result.errors.append(f"Reminder time {index} must be in HH:MM format")
    return result
