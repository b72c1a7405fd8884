"""InMemoryNotificationStore — in-memory implementation for testing."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from ...ports.stores import INotificationStore, NotificationQuery

if TYPE_CHECKING:
    import builtins

    from ...domain.notification import Notification, NotificationStatus


class InMemoryNotificationStore(INotificationStore):
    """In-memory implementation of ``INotificationStore`` for testing.

    Status updates go through ``Notification.advance`` under a lock, so the
    status machine holds even when sibling jobs finish concurrently.
    Returned objects are copies; mutating them does not touch the store.
    """

    def __init__(self) -> None:
        self._notifications: dict[str, Notification] = {}
        self._lock = asyncio.Lock()

    async def create(self, notification: Notification) -> Notification:
        async with self._lock:
            self._notifications[notification.id] = notification.model_copy(deep=True)
        return notification

    async def find_by_id(self, notification_id: str) -> Notification | None:
        stored = self._notifications.get(notification_id)
        return stored.model_copy(deep=True) if stored is not None else None

    async def update_status(
        self, notification_id: str, status: NotificationStatus
    ) -> Notification | None:
        async with self._lock:
            stored = self._notifications.get(notification_id)
            if stored is None:
                return None
            stored.advance(status)
            return stored.model_copy(deep=True)

    async def attach_jobs(
        self, notification_id: str, job_ids: builtins.list[str]
    ) -> None:
        async with self._lock:
            stored = self._notifications.get(notification_id)
            if stored is None:
                return
            stored.job_ids = [*stored.job_ids, *job_ids]
            stored.updated_at = datetime.now(timezone.utc)

    async def list(
        self, query: NotificationQuery | None = None
    ) -> builtins.list[Notification]:
        query = query or NotificationQuery()
        matches = [
            n
            for n in self._notifications.values()
            if (query.status is None or n.status == query.status)
            and (query.priority is None or n.priority == query.priority)
            and (query.channel is None or query.channel in n.channels)
        ]
        matches.sort(key=lambda n: n.created_at, reverse=True)
        page = matches[query.offset : query.offset + query.limit]
        return [n.model_copy(deep=True) for n in page]

    # --- Test helpers ---

    def clear(self) -> None:
        self._notifications.clear()
