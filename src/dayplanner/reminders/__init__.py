"""Reminder scheduling over a platform notification facility."""

from dayplanner.reminders.facility import (
    InMemoryNotificationFacility,
    NotificationFacility,
    SchedulingError,
)
from dayplanner.reminders.scheduler import ReminderScheduler, ReminderStatus, SchedulerState

__all__ = [
    "InMemoryNotificationFacility",
    "NotificationFacility",
    "ReminderScheduler",
    "ReminderStatus",
    "SchedulerState",
    "SchedulingError",
]
