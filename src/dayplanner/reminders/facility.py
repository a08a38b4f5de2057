"""Notification facility interface and an in-process implementation.

The facility is the platform's local-notification service. It owns every
registration once handed over; the planner only registers, cancels and lists
by id. Both primitives are idempotent: registering an existing id replaces it,
cancelling an unknown id is a no-op.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from dayplanner.models import NotificationRecord

logger = logging.getLogger(__name__)


class SchedulingError(Exception):
    """Raised by a facility when a registration or cancellation fails."""


@runtime_checkable
class NotificationFacility(Protocol):
    async def register(self, record: NotificationRecord) -> None: ...

    async def cancel(self, notification_id: str) -> None: ...

    async def list_scheduled(self) -> list[NotificationRecord]: ...


class InMemoryNotificationFacility:
    """Dict-backed facility for tests, the CLI and headless use.

    ``fire()`` simulates the platform delivering a notification: the record is
    removed from the scheduled set and appended to ``delivered``. Records with
    ``repeat`` set stay scheduled, like a daily OS trigger would.
    """

    def __init__(self) -> None:
        self._scheduled: dict[str, NotificationRecord] = {}
        self.delivered: list[NotificationRecord] = []

    async def register(self, record: NotificationRecord) -> None:
        self._scheduled[record.id] = record

    async def cancel(self, notification_id: str) -> None:
        self._scheduled.pop(notification_id, None)

    async def list_scheduled(self) -> list[NotificationRecord]:
        return sorted(self._scheduled.values(), key=lambda r: (r.fire_at, r.id))

    def get(self, notification_id: str) -> NotificationRecord | None:
        return self._scheduled.get(notification_id)

    def fire(self, notification_id: str) -> NotificationRecord:
        record = self._scheduled.get(notification_id)
        if record is None:
            raise SchedulingError(f"No scheduled notification with id {notification_id!r}")
        if record.repeat is None:
            del self._scheduled[notification_id]
        self.delivered.append(record)
        logger.debug("Delivered notification %s", notification_id)
        return record

    def __len__(self) -> int:
        return len(self._scheduled)

    def __contains__(self, notification_id: object) -> bool:
        return notification_id in self._scheduled
