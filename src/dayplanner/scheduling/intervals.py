"""Interval math shared by recurrence, conflict, availability, and reminders."""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta

from dateutil.relativedelta import relativedelta

from dayplanner.models import Event

# 24-hour HH:MM; hours may omit the leading zero.
HHMM_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")


def add_days(value: datetime, days: int) -> datetime:
    return value + timedelta(days=days)


def add_weeks(value: datetime, weeks: int) -> datetime:
    return add_days(value, weeks * 7)


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the end of the target month."""
    return value + relativedelta(months=months)


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open interval overlap: back-to-back intervals do not overlap."""
    return start_a < end_b and end_a > start_b


def event_end(event: Event) -> datetime:
    return event.start_at + timedelta(minutes=event.duration_minutes)


def start_of_day(value: datetime | date) -> datetime:
    if isinstance(value, datetime):
        return value.replace(hour=0, minute=0, second=0, microsecond=0)
    return datetime.combine(value, time.min)


def same_day(a: datetime | date, b: datetime | date) -> bool:
    return start_of_day(a) == start_of_day(b)


def is_valid_hhmm(value: str) -> bool:
    return isinstance(value, str) and HHMM_PATTERN.match(value) is not None


def parse_hhmm(value: str) -> tuple[int, int]:
    """Parse ``"HH:MM"`` into ``(hour, minute)``.

    Raises:
        ValueError: If *value* is not a valid 24-hour time.
    """
    if not is_valid_hhmm(value):
        raise ValueError(f"Invalid time {value!r}; expected HH:MM")
    hour, minute = value.split(":")
    return int(hour), int(minute)


def at_time_of_day(day: datetime | date, value: str) -> datetime:
    """Return *day* at the wall-clock time given as ``"HH:MM"``."""
    hour, minute = parse_hhmm(value)
    return start_of_day(day).replace(hour=hour, minute=minute)


def minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60
