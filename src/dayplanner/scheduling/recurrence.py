"""Recurrence expansion: turn a recurring event into concrete dated occurrences.

Every occurrence is computed from the anchor (the base event's original start)
as ``anchor + n * step`` rather than by chaining steps, so monthly recurrences
anchored on the 29th-31st do not drift after a short month.

Expansion is bounded twice: by the requested range (and the pattern's end
date), and by ``MAX_EXPANSION_ITERATIONS`` regardless of the date math, so a
stored pattern with a non-positive interval can never loop forever.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta

from dayplanner.models import Event, Occurrence, RecurrencePattern, RecurrenceType
from dayplanner.scheduling.intervals import (
    add_days,
    add_months,
    event_end,
    overlaps,
    same_day,
    start_of_day,
)

logger = logging.getLogger(__name__)

MAX_EXPANSION_ITERATIONS = 1000

# Occurrence ids are "<base id>_<YYYY-MM-DD>".
OCCURRENCE_DATE_FORMAT = "%Y-%m-%d"


def _range_start(value: datetime | date) -> datetime:
    return start_of_day(value) if not isinstance(value, datetime) else value


def _range_end(value: datetime | date) -> datetime:
    """A bare date as a range end covers that whole day."""
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.max)


def _step_days(pattern: RecurrencePattern) -> int:
    if pattern.type == RecurrenceType.WEEKLY:
        return pattern.interval * 7
    # DAILY and CUSTOM share the same stepping rule.
    return pattern.interval


def _nth_occurrence(anchor: datetime, pattern: RecurrencePattern, n: int) -> datetime:
    if pattern.type == RecurrenceType.MONTHLY:
        return add_months(anchor, n * pattern.interval)
    return add_days(anchor, n * _step_days(pattern))


def _first_index_at_or_after(anchor: datetime, pattern: RecurrencePattern, moment: datetime) -> int:
    """Smallest n >= 0 whose occurrence is at or after *moment*.

    Non-positive intervals never advance, so they always start from the anchor
    and leave termination to the iteration cap.
    """
    if pattern.interval < 1 or moment <= anchor:
        return 0

    if pattern.type == RecurrenceType.MONTHLY:
        months = (moment.year - anchor.year) * 12 + (moment.month - anchor.month)
        n = max(0, months // pattern.interval - 1)
        while _nth_occurrence(anchor, pattern, n) < moment:
            n += 1
        return n

    step = timedelta(days=_step_days(pattern))
    return -(-(moment - anchor) // step)


def occurrence_id(base_id: str, when: datetime | date) -> str:
    return f"{base_id}_{when.strftime(OCCURRENCE_DATE_FORMAT)}"


def make_occurrence(base_event: Event, when: datetime | date) -> Occurrence:
    """Materialize *base_event* on the calendar day of *when*.

    The anchor's time of day is preserved; every other field is inherited.
    """
    anchor = base_event.start_at
    start_at = start_of_day(when).replace(
        hour=anchor.hour,
        minute=anchor.minute,
        second=anchor.second,
        microsecond=anchor.microsecond,
    )
    parent_id = getattr(base_event, "parent_event_id", None) or base_event.id
    data = base_event.model_dump()
    data.update(
        id=occurrence_id(parent_id, start_at),
        start_at=start_at,
        parent_event_id=parent_id,
        is_recurring_instance=True,
    )
    return Occurrence.model_validate(data)


def expand(
    base_event: Event,
    range_start: datetime | date,
    range_end: datetime | date,
) -> list[Occurrence]:
    """Return the occurrences of *base_event* within ``[range_start, range_end]``.

    Returns an empty list for non-recurring events. Regenerating the same
    range yields identical occurrence ids.
    """
    pattern = base_event.recurrence
    if not base_event.is_recurring or pattern is None:
        return []

    start = _range_start(range_start)
    end = _range_end(range_end)
    stop_at = end if pattern.end_date is None else min(end, pattern.end_date)
    anchor = base_event.start_at

    occurrences: list[Occurrence] = []
    seen: set[str] = set()
    n = _first_index_at_or_after(anchor, pattern, start)
    for _ in range(MAX_EXPANSION_ITERATIONS):
        current = _nth_occurrence(anchor, pattern, n)
        if current > stop_at:
            break
        if current >= start and current >= anchor:
            occurrence = make_occurrence(base_event, current)
            if occurrence.id not in seen:
                seen.add(occurrence.id)
                occurrences.append(occurrence)
        n += 1
    else:
        logger.warning(
            "Recurrence expansion for event %s stopped at the %d-iteration cap (interval=%d)",
            base_event.id,
            MAX_EXPANSION_ITERATIONS,
            pattern.interval,
        )
    return occurrences


def should_occur_on_date(event: Event, target: datetime | date) -> bool:
    """Cheap per-date membership test, without enumerating the sequence."""
    pattern = event.recurrence
    if not event.is_recurring or pattern is None:
        return same_day(event.start_at, target)

    base_day = start_of_day(event.start_at)
    check_day = start_of_day(target)
    if check_day < base_day:
        return False
    if pattern.end_date is not None and check_day > start_of_day(pattern.end_date):
        return False
    if pattern.interval < 1:
        return check_day == base_day

    if pattern.type == RecurrenceType.MONTHLY:
        months = (check_day.year - base_day.year) * 12 + (check_day.month - base_day.month)
        if months % pattern.interval != 0:
            return False
        # Same clamping as expansion: a 31st anchor lands on the last day of short months.
        return add_months(base_day, months) == check_day

    days = (check_day - base_day).days
    return days % _step_days(pattern) == 0


def find_next_occurrence(event: Event, from_date: datetime) -> datetime | None:
    """Earliest occurrence instant after *from_date*.

    The anchor itself is returned when it is at or after *from_date*. Returns
    ``None`` when the event does not recur, the recurrence has ended, or the
    search exhausted the iteration cap without advancing.
    """
    pattern = event.recurrence
    if not event.is_recurring or pattern is None:
        return None

    anchor = event.start_at
    candidate: datetime | None = None
    if anchor >= from_date:
        candidate = anchor
    else:
        n = _first_index_at_or_after(anchor, pattern, from_date)
        for _ in range(MAX_EXPANSION_ITERATIONS):
            current = _nth_occurrence(anchor, pattern, n)
            if current > from_date:
                candidate = current
                break
            n += 1

    if candidate is None:
        return None
    if pattern.end_date is not None and candidate > pattern.end_date:
        return None
    return candidate


def upcoming_occurrences(
    event: Event,
    count: int = 5,
    *,
    now: datetime | None = None,
) -> list[datetime]:
    """Start instants of the next *count* occurrences from *now*."""
    pattern = event.recurrence
    if not event.is_recurring or pattern is None:
        return [event.start_at]

    now = now or datetime.now()
    anchor = event.start_at
    n = 0 if anchor >= now else _first_index_at_or_after(anchor, pattern, now)

    results: list[datetime] = []
    for _ in range(count * 10):
        if len(results) >= count:
            break
        current = _nth_occurrence(anchor, pattern, n)
        if pattern.end_date is not None and current > pattern.end_date:
            break
        if current >= anchor and current not in results:
            results.append(current)
        n += 1
    return results


def occurrences_for_date(events: Iterable[Event], target: datetime | date) -> list[Event]:
    """All events on *target*: one-off events on that day plus recurring occurrences."""
    day_events: list[Event] = []
    for event in events:
        if event.is_recurring and event.recurrence is not None:
            if should_occur_on_date(event, target):
                day_events.append(make_occurrence(event, target))
        elif same_day(event.start_at, target):
            day_events.append(event)
    return sorted(day_events, key=lambda e: e.start_at)


def occurrences_in_range(
    events: Iterable[Event],
    range_start: datetime | date,
    range_end: datetime | date,
) -> list[Event]:
    events = list(events)
    day = start_of_day(range_start)
    last = start_of_day(range_end)
    result: list[Event] = []
    while day <= last:
        result.extend(occurrences_for_date(events, day))
        day = add_days(day, 1)
    return result


def occurrences_overlapping(
    events: Iterable[Event],
    window_start: datetime,
    window_end: datetime,
) -> list[Event]:
    """Every event or recurring occurrence whose interval overlaps the window.

    Unlike :func:`occurrences_for_date` this includes events that started
    earlier, e.g. the previous evening, and are still running at
    *window_start*.
    """
    overlapping: list[Event] = []
    for event in events:
        if (
            event.is_recurring
            and event.recurrence is not None
            and not getattr(event, "is_recurring_instance", False)
        ):
            lookback = window_start - timedelta(minutes=event.duration_minutes)
            candidates: list[Event] = list(expand(event, lookback, window_end))
        else:
            candidates = [event]
        overlapping.extend(
            candidate
            for candidate in candidates
            if overlaps(candidate.start_at, event_end(candidate), window_start, window_end)
        )
    return sorted(overlapping, key=lambda e: e.start_at)


def describe_recurrence(pattern: RecurrencePattern) -> str:
    """Human-readable summary, e.g. ``"Every 2 weeks"``."""
    interval = pattern.interval if pattern.interval > 0 else 1
    if pattern.type == RecurrenceType.DAILY:
        return "Daily" if interval == 1 else f"Every {interval} days"
    if pattern.type == RecurrenceType.WEEKLY:
        return "Weekly" if interval == 1 else f"Every {interval} weeks"
    if pattern.type == RecurrenceType.MONTHLY:
        return "Monthly" if interval == 1 else f"Every {interval} months"
    return f"Every {interval} days (custom)"
