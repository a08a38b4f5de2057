"""Availability planning: free slots within working hours and placement suggestions."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from dayplanner.models import Event, TimeSlot
from dayplanner.scheduling.intervals import at_time_of_day, event_end, minutes_between, parse_hhmm
from dayplanner.scheduling.recurrence import occurrences_for_date, occurrences_overlapping

DEFAULT_SLOT_MINUTES = 60


@dataclass(frozen=True)
class WorkingHours:
    """Daily working window as ``HH:MM`` wall-clock bounds."""

    start: str = "09:00"
    end: str = "17:00"

    def __post_init__(self) -> None:
        if parse_hhmm(self.end) <= parse_hhmm(self.start):
            raise ValueError(f"working hours end {self.end!r} must be after start {self.start!r}")

    def bounds(self, day: datetime | date) -> tuple[datetime, datetime]:
        return at_time_of_day(day, self.start), at_time_of_day(day, self.end)


DEFAULT_WORKING_HOURS = WorkingHours()


def free_slots(
    committed: Iterable[Event],
    day: datetime | date,
    slot_duration: int = DEFAULT_SLOT_MINUTES,
    working_hours: WorkingHours = DEFAULT_WORKING_HOURS,
) -> list[TimeSlot]:
    """Return the ordered free gaps of at least *slot_duration* minutes on *day*.

    Committed intervals include recurring occurrences and events still running
    from the previous day.
    Gaps shorter than *slot_duration* are omitted rather than partially offered.
    """
    work_start, work_end = working_hours.bounds(day)
    day_events = occurrences_overlapping(committed, work_start, work_end)

    slots: list[TimeSlot] = []
    cursor = work_start
    for event in day_events:
        if cursor >= work_end:
            break
        gap_end = min(event.start_at, work_end)
        if gap_end > cursor and minutes_between(cursor, gap_end) >= slot_duration:
            slots.append(TimeSlot(start_at=cursor, end_at=gap_end))
        end = event_end(event)
        if end > cursor:
            cursor = end

    if cursor < work_end and minutes_between(cursor, work_end) >= slot_duration:
        slots.append(TimeSlot(start_at=cursor, end_at=work_end))
    return slots


def suggest_optimal_time(
    committed: Iterable[Event],
    day: datetime | date,
    duration: int,
    preferred_time: str | None = None,
    working_hours: WorkingHours = DEFAULT_WORKING_HOURS,
) -> datetime | None:
    """Best start instant for a *duration*-minute event on *day*.

    A slot that starts at or before *preferred_time* and still fits the event
    from that time wins; otherwise the first free slot's start. ``None`` when
    nothing fits.
    """
    slots = free_slots(committed, day, duration, working_hours)
    if not slots:
        return None

    if preferred_time is not None:
        preferred = at_time_of_day(day, preferred_time)
        length = timedelta(minutes=duration)
        for slot in slots:
            start = max(preferred, slot.start_at)
            if slot.start_at <= preferred and start + length <= slot.end_at:
                return start

    return slots[0].start_at


def total_scheduled_minutes(events: Iterable[Event], day: datetime | date) -> int:
    return sum(event.duration_minutes for event in occurrences_for_date(events, day))
