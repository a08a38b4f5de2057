"""Conflict detection between a candidate event and a committed set.

Conflicts are advisory: :func:`check_conflicts` reports overlaps and, under the
``suggest`` policy, alternative start times. Whether a conflict blocks a write
is the caller's decision.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Literal

from dayplanner.models import Event, TimeSlot
from dayplanner.scheduling.availability import DEFAULT_WORKING_HOURS, WorkingHours, free_slots
from dayplanner.scheduling.intervals import event_end, overlaps
from dayplanner.scheduling.recurrence import occurrences_overlapping

ConflictPolicy = Literal["suggest", "allow_overlap", "block"]
VALID_CONFLICT_POLICIES: frozenset[str] = frozenset({"suggest", "allow_overlap", "block"})

DEFAULT_SUGGESTION_COUNT = 3
# Spacing between back-to-back fallback suggestions.
_SUGGESTION_GAP = timedelta(minutes=15)


@dataclass
class ConflictAdvisory:
    """Outcome of a conflict check.

    ``status`` is ``"clear"`` when nothing overlaps, ``"allow_overlap"`` when
    overlaps were found but the policy tolerates them, and ``"conflict"``
    otherwise.
    """

    status: str
    conflicts: list[Event] = field(default_factory=list)
    suggested_slots: list[TimeSlot] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "conflicts": [_conflict_to_payload(event) for event in self.conflicts],
            "suggested_slots": [
                {"start_at": slot.start_at.isoformat(), "end_at": slot.end_at.isoformat()}
                for slot in self.suggested_slots
            ],
        }


def has_conflict(a: Event, b: Event) -> bool:
    """Symmetric, irreflexive pairwise conflict test."""
    if a.id == b.id:
        return False
    return overlaps(a.start_at, event_end(a), b.start_at, event_end(b))


def find_conflicts(candidate: Event, committed: Iterable[Event]) -> list[Event]:
    """Every committed event, other than *candidate* itself, overlapping it."""
    return [event for event in committed if has_conflict(candidate, event)]


def check_conflicts(
    candidate: Event,
    committed: Iterable[Event],
    *,
    policy: ConflictPolicy = "suggest",
    working_hours: WorkingHours = DEFAULT_WORKING_HOURS,
    suggestion_count: int = DEFAULT_SUGGESTION_COUNT,
) -> ConflictAdvisory:
    """Find committed events overlapping the candidate, recurring occurrences included.

    Events that started earlier (the previous evening, say) and are still
    running at the candidate's start count as conflicts too.

    Occurrences generated from the candidate's own series are never treated
    as conflicts with it.
    """
    if policy not in VALID_CONFLICT_POLICIES:
        supported = ", ".join(sorted(VALID_CONFLICT_POLICIES))
        raise ValueError(f"conflict policy must be one of: {supported}")

    committed = [
        event
        for event in committed
        if event.id != candidate.id and getattr(event, "parent_event_id", None) != candidate.id
    ]
    overlapping = [
        event
        for event in occurrences_overlapping(committed, candidate.start_at, event_end(candidate))
        if getattr(event, "parent_event_id", None) != candidate.id
    ]
    conflicts = find_conflicts(candidate, overlapping)
    if not conflicts:
        return ConflictAdvisory(status="clear")

    if policy == "allow_overlap":
        return ConflictAdvisory(status="allow_overlap", conflicts=conflicts)

    suggestions: list[TimeSlot] = []
    if policy == "suggest":
        suggestions = _build_suggested_slots(
            candidate,
            committed,
            conflicts,
            working_hours=working_hours,
            count=suggestion_count,
        )
    return ConflictAdvisory(status="conflict", conflicts=conflicts, suggested_slots=suggestions)


def _build_suggested_slots(
    candidate: Event,
    committed: list[Event],
    conflicts: list[Event],
    *,
    working_hours: WorkingHours,
    count: int,
) -> list[TimeSlot]:
    if count < 1:
        return []
    duration = timedelta(minutes=candidate.duration_minutes)

    suggestions = [
        TimeSlot(start_at=slot.start_at, end_at=slot.start_at + duration)
        for slot in free_slots(
            committed,
            candidate.start_at,
            candidate.duration_minutes,
            working_hours,
        )
    ][:count]
    if suggestions:
        return suggestions

    # No room inside working hours: line suggestions up after the last conflict.
    cursor: datetime = max(candidate.start_at, max(event_end(c) for c in conflicts))
    for _ in range(count):
        suggestions.append(TimeSlot(start_at=cursor, end_at=cursor + duration))
        cursor = cursor + duration + _SUGGESTION_GAP
    return suggestions


def _conflict_to_payload(conflict: Event) -> dict[str, str]:
    return {
        "event_id": conflict.id,
        "title": conflict.title,
        "start_at": conflict.start_at.isoformat(),
        "end_at": event_end(conflict).isoformat(),
    }
