"""Persistence ports for templates, notifications and delivery logs.

Storage technology is an external concern; in-memory adapters ship in
``notification_dispatch.adapters.memory`` for tests and single-process use.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from ..domain.values import as_utc

if TYPE_CHECKING:
    import builtins

    from ..domain.delivery_log import DeliveryLog, DeliveryStatus
    from ..domain.notification import Notification, NotificationStatus
    from ..domain.template import Template
    from ..domain.values import Priority


@dataclass(frozen=True)
class DeliveryLogQuery:
    """Filters for delivery log searches.

    ``limit=None`` returns every match (used by the aggregate projections).
    Naive ``from_date``/``to_date`` values are taken as UTC.
    """

    notification_id: str | None = None
    channel: str | None = None
    status: DeliveryStatus | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    limit: int | None = 50
    offset: int = 0
    newest_first: bool = True

    def __post_init__(self) -> None:
        for name in ("from_date", "to_date"):
            value = getattr(self, name)
            if isinstance(value, datetime):
                object.__setattr__(self, name, as_utc(value))


@dataclass(frozen=True)
class NotificationQuery:
    """Filters for notification listings."""

    status: NotificationStatus | None = None
    priority: Priority | None = None
    channel: str | None = None
    limit: int = 50
    offset: int = 0


@runtime_checkable
class ITemplateStore(Protocol):
    """Read side of the template store used by the orchestrator."""

    async def find_by_name(self, name: str) -> Template | None:
        """Return the template stored under ``name``."""
        ...


@runtime_checkable
class INotificationStore(Protocol):
    """Store for the notification aggregate."""

    async def create(self, notification: Notification) -> Notification:
        """Persist a new notification."""
        ...

    async def find_by_id(self, notification_id: str) -> Notification | None:
        """Fetch a notification by ID."""
        ...

    async def update_status(
        self, notification_id: str, status: NotificationStatus
    ) -> Notification | None:
        """Apply a status transition through ``Notification.advance``.

        Returns the updated notification, or ``None`` when it does not exist.

        Raises:
            NotificationStateError: if the transition is not allowed.
        """
        ...

    async def attach_jobs(
        self, notification_id: str, job_ids: builtins.list[str]
    ) -> None:
        """Record the job IDs created for a notification."""
        ...

    async def list(
        self, query: NotificationQuery | None = None
    ) -> builtins.list[Notification]:
        """List notifications, newest first."""
        ...


@runtime_checkable
class IDeliveryLogStore(Protocol):
    """Append-only store of delivery attempts."""

    async def append(self, log: DeliveryLog) -> DeliveryLog:
        """Persist a new log entry. Entries are never mutated."""
        ...

    async def get(self, log_id: str) -> DeliveryLog | None:
        """Fetch a log entry by ID."""
        ...

    async def find(self, query: DeliveryLogQuery) -> builtins.list[DeliveryLog]:
        """Return log entries matching ``query``."""
        ...
