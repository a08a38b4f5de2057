"""Tests for the OpenTelemetry planner instruments."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import pytest
from opentelemetry import metrics
from opentelemetry.metrics import _internal as _metrics_internal
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.util._once import Once

from conftest import build_event
from dayplanner.core.metrics import PlannerMetrics
from dayplanner.core.state import InMemoryStateStore
from dayplanner.reminders.facility import InMemoryNotificationFacility
from dayplanner.reminders.scheduler import ReminderScheduler
from dayplanner.sync.queue import OfflineQueue

pytestmark = pytest.mark.unit


def _reset_metrics_global_state() -> None:
    """Reset the OTel global MeterProvider so each test can install its own."""
    _metrics_internal._METER_PROVIDER_SET_ONCE = Once()
    _metrics_internal._METER_PROVIDER = None


@pytest.fixture
def reader():
    _reset_metrics_global_state()
    reader = InMemoryMetricReader()
    provider = MeterProvider(metric_readers=[reader])
    metrics.set_meter_provider(provider)
    yield reader
    provider.shutdown()
    _reset_metrics_global_state()


def _collect(reader: InMemoryMetricReader) -> dict[str, Any]:
    result: dict[str, Any] = {}
    data = reader.get_metrics_data()
    if data is None:
        return result
    for rm in data.resource_metrics:
        for sm in rm.scope_metrics:
            for metric in sm.metrics:
                result[metric.name] = list(metric.data.data_points)
    return result


def test_counters_carry_planner_and_label(reader):
    planner_metrics = PlannerMetrics("work")

    planner_metrics.reminder_registered("event")
    planner_metrics.reminder_registered("event")
    planner_metrics.reminder_failed("cancel")
    planner_metrics.operation_enqueued("CREATE_TASK")
    planner_metrics.operation_replayed("ok")

    collected = _collect(reader)
    [registered] = collected["dayplanner.reminders.registered_total"]
    assert registered.value == 2
    assert dict(registered.attributes) == {"planner": "work", "kind": "event"}
    [failed] = collected["dayplanner.reminders.failures_total"]
    assert dict(failed.attributes)["operation"] == "cancel"
    [enqueued] = collected["dayplanner.sync.enqueued_total"]
    assert dict(enqueued.attributes)["type"] == "CREATE_TASK"
    [replayed] = collected["dayplanner.sync.replayed_total"]
    assert dict(replayed.attributes)["outcome"] == "ok"


async def test_scheduler_and_queue_record_metrics(reader):
    planner_metrics = PlannerMetrics()
    scheduler = ReminderScheduler(
        InMemoryNotificationFacility(),
        clock=lambda: datetime(2024, 1, 15, 8, 0),
        metrics=planner_metrics,
    )
    queue = OfflineQueue(InMemoryStateStore(), metrics=planner_metrics)
    state = await scheduler.initialize()

    await scheduler.schedule_event_reminder(state, build_event(start_at=datetime(2024, 1, 15, 12)))
    await queue.enqueue("CREATE_EVENT", "@timetable_events", {"id": "evt"}, "evt")

    collected = _collect(reader)
    assert collected["dayplanner.reminders.registered_total"][0].value == 1
    assert collected["dayplanner.sync.enqueued_total"][0].value == 1
