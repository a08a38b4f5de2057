"""Tests for conflict detection and conflict advisories."""

from __future__ import annotations

from datetime import datetime

import pytest

from conftest import build_event
from dayplanner.scheduling.conflicts import check_conflicts, find_conflicts, has_conflict

pytestmark = pytest.mark.unit

DAY = datetime(2024, 1, 15)


def _at(hour: int, minute: int = 0) -> datetime:
    return DAY.replace(hour=hour, minute=minute)


@pytest.fixture
def a():
    return build_event("a", _at(10), 60)


@pytest.fixture
def b():
    return build_event("b", _at(10, 30), 60)


@pytest.fixture
def c():
    return build_event("c", _at(11), 60)


class TestHasConflict:
    def test_partial_overlap_conflicts(self, a, b):
        assert has_conflict(a, b)

    def test_back_to_back_does_not_conflict(self, a, c):
        assert not has_conflict(a, c)

    def test_is_symmetric(self, a, b, c):
        events = [a, b, c, build_event("d", _at(9), 240)]
        for x in events:
            for y in events:
                assert has_conflict(x, y) == has_conflict(y, x)

    def test_is_irreflexive(self, a):
        assert not has_conflict(a, a)
        assert not has_conflict(a, a.model_copy(update={"title": "renamed"}))

    def test_containment_conflicts(self, a):
        outer = build_event("outer", _at(9), 180)

        assert has_conflict(a, outer)

    def test_find_conflicts_excludes_self(self, a, b, c):
        assert [e.id for e in find_conflicts(a, [a, b, c])] == ["b"]


class TestCheckConflicts:
    def test_no_conflict_is_clear(self, a, c):
        advisory = check_conflicts(c, [a])

        assert advisory.status == "clear"
        assert not advisory.has_conflicts
        assert advisory.suggested_slots == []

    def test_suggest_policy_offers_free_slots(self, a, b, c):
        advisory = check_conflicts(b, [a, c])

        assert advisory.status == "conflict"
        assert [e.id for e in advisory.conflicts] == ["a", "c"]
        assert [(s.start_at, s.end_at) for s in advisory.suggested_slots] == [
            (_at(9), _at(10)),
            (_at(12), _at(13)),
        ]

    def test_allow_overlap_policy_reports_without_suggestions(self, a, b):
        advisory = check_conflicts(b, [a], policy="allow_overlap")

        assert advisory.status == "allow_overlap"
        assert [e.id for e in advisory.conflicts] == ["a"]
        assert advisory.suggested_slots == []

    def test_block_policy_reports_conflict(self, a, b):
        advisory = check_conflicts(b, [a], policy="block")

        assert advisory.status == "conflict"
        assert advisory.suggested_slots == []

    def test_invalid_policy_raises(self, a, b):
        with pytest.raises(ValueError, match="conflict policy"):
            check_conflicts(b, [a], policy="ignore")

    def test_recurring_committed_events_conflict_on_their_dates(self):
        standup = build_event(
            "standup",
            datetime(2024, 1, 1, 10, 0),
            30,
            recurrence={"type": "daily", "interval": 1},
        )
        candidate = build_event("review", _at(10, 15), 30)

        advisory = check_conflicts(candidate, [standup])

        assert [e.id for e in advisory.conflicts] == ["standup_2024-01-15"]

    def test_own_occurrences_are_not_conflicts(self):
        series = build_event(
            "series",
            datetime(2024, 1, 1, 10, 0),
            60,
            recurrence={"type": "daily", "interval": 1},
        )
        candidate = series.model_copy(update={"start_at": _at(10)})

        assert check_conflicts(candidate, [series]).status == "clear"

    def test_event_running_past_midnight_conflicts(self):
        late = build_event("late", datetime(2024, 1, 14, 23, 0), 180)
        candidate = build_event("cand", _at(0, 30), 60)

        advisory = check_conflicts(candidate, [late], policy="block")

        assert advisory.status == "conflict"
        assert [e.id for e in advisory.conflicts] == ["late"]

    def test_recurring_overnight_occurrence_from_previous_day_conflicts(self):
        night_shift = build_event(
            "night",
            datetime(2024, 1, 1, 23, 0),
            180,
            recurrence={"type": "daily", "interval": 1},
        )
        candidate = build_event("cand", _at(1), 30)

        advisory = check_conflicts(candidate, [night_shift])

        assert [e.id for e in advisory.conflicts] == ["night_2024-01-14"]

    def test_candidate_running_into_next_day_conflicts(self):
        early = build_event("early", datetime(2024, 1, 16, 0, 15), 30)
        candidate = build_event("cand", _at(23, 30), 60)

        assert [e.id for e in check_conflicts(candidate, [early]).conflicts] == ["early"]

    def test_fallback_suggestions_follow_last_conflict(self):
        all_day = build_event("all-day", _at(9), 8 * 60)
        candidate = build_event("late", _at(10), 60)

        advisory = check_conflicts(candidate, [all_day])

        assert [(s.start_at, s.end_at) for s in advisory.suggested_slots] == [
            (_at(17), _at(18)),
            (_at(18, 15), _at(19, 15)),
            (_at(19, 30), _at(20, 30)),
        ]

    def test_payload(self, a, b):
        payload = check_conflicts(b, [a], policy="allow_overlap").to_payload()

        assert payload == {
            "status": "allow_overlap",
            "conflicts": [
                {
                    "event_id": "a",
                    "title": "A",
                    "start_at": "2024-01-15T10:00:00",
                    "end_at": "2024-01-15T11:00:00",
                }
            ],
            "suggested_slots": [],
        }
