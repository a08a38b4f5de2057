"""OpenTelemetry metrics instruments for reminder scheduling and offline sync.

Instruments are created lazily from the global MeterProvider, so callers do
not need to pass a Meter instance around. Without a configured SDK provider
every recording is a silent no-op.

Instruments
-----------
  dayplanner.reminders.registered_total   Counter  (label: kind)
      Notification registrations handed to the facility.

  dayplanner.reminders.failures_total     Counter  (label: operation)
      Facility errors that were logged and swallowed.

  dayplanner.sync.enqueued_total          Counter  (label: type)
      Operations appended to the offline queue.

  dayplanner.sync.replayed_total          Counter  (label: outcome=ok|retry|dropped)
      Replay attempts by outcome.
"""

from __future__ import annotations

from opentelemetry import metrics

_METER_NAME = "dayplanner"


def get_meter() -> metrics.Meter:
    """Return a Meter from the current global provider."""
    return metrics.get_meter(_METER_NAME)


class PlannerMetrics:
    """Convenience wrapper recording planner metrics with consistent labels."""

    def __init__(self, planner_name: str = "default") -> None:
        self._planner = planner_name
        meter = get_meter()
        self._registered = meter.create_counter(
            name="dayplanner.reminders.registered_total",
            description="Notification registrations handed to the facility",
            unit="reminders",
        )
        self._failures = meter.create_counter(
            name="dayplanner.reminders.failures_total",
            description="Notification facility errors that were swallowed",
            unit="errors",
        )
        self._enqueued = meter.create_counter(
            name="dayplanner.sync.enqueued_total",
            description="Operations appended to the offline queue",
            unit="operations",
        )
        self._replayed = meter.create_counter(
            name="dayplanner.sync.replayed_total",
            description="Offline queue replay attempts by outcome",
            unit="operations",
        )

    def reminder_registered(self, kind: str) -> None:
        self._registered.add(1, {"planner": self._planner, "kind": kind})

    def reminder_failed(self, operation: str) -> None:
        self._failures.add(1, {"planner": self._planner, "operation": operation})

    def operation_enqueued(self, op_type: str) -> None:
        self._enqueued.add(1, {"planner": self._planner, "type": op_type})

    def operation_replayed(self, outcome: str) -> None:
        self._replayed.add(1, {"planner": self._planner, "outcome": outcome})
