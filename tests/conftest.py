"""Shared fixtures for the dayplanner test suite."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

import pytest

from dayplanner.models import Event, RecurrencePattern, Task


def build_event(
    event_id: str = "evt",
    start_at: datetime = datetime(2024, 1, 15, 10, 0),
    duration_minutes: int = 60,
    **overrides: Any,
) -> Event:
    recurrence = overrides.pop("recurrence", None)
    if isinstance(recurrence, dict):
        recurrence = RecurrencePattern(**recurrence)
    return Event(
        id=event_id,
        title=overrides.pop("title", event_id.title()),
        start_at=start_at,
        duration_minutes=duration_minutes,
        is_recurring=recurrence is not None,
        recurrence=recurrence,
        **overrides,
    )


def build_task(task_id: str = "task", due_at: datetime = datetime(2024, 1, 15, 17, 0), **overrides):
    return Task(id=task_id, title=overrides.pop("title", task_id.title()), due_at=due_at, **overrides)


class FrozenClock:
    """Callable clock that returns a settable instant."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def make_event() -> Callable[..., Event]:
    return build_event


@pytest.fixture
def make_task() -> Callable[..., Task]:
    return build_task


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 1, 15, 8, 0))
