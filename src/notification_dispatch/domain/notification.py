"""Notification — aggregate for one logical send request."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..exceptions import NotificationStateError
from .values import ContextData, Priority, Recipient, unique_channels


class NotificationStatus(str, Enum):
    """Lifecycle states for a notification."""

    PENDING = "pending"
    QUEUED = "queued"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Forward order; SENT and FAILED share a rank so per-channel outcomes can
# overwrite each other (last write wins).
_RANK = {
    NotificationStatus.PENDING: 0,
    NotificationStatus.QUEUED: 1,
    NotificationStatus.PROCESSING: 2,
    NotificationStatus.SENT: 3,
    NotificationStatus.FAILED: 3,
}

SETTLED_STATUSES = frozenset({NotificationStatus.SENT, NotificationStatus.FAILED})


class Notification(BaseModel):
    """Aggregate representing one send request fanned out over channels.

    Status transitions::

        PENDING    → QUEUED | PROCESSING
        QUEUED     → PROCESSING
        PROCESSING → SENT | FAILED
        SENT      ↔ FAILED            (last per-channel outcome wins)
        any non-terminal → CANCELLED  (terminal)

    Moving to a lower-ranked status is a no-op, so a sibling channel's job
    marking PROCESSING never rewinds an already settled notification.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    template_name: str
    template_id: str | None = None
    recipient: Recipient
    data: ContextData = Field(default_factory=dict)
    channels: list[str]
    priority: Priority = Priority.NORMAL
    status: NotificationStatus = NotificationStatus.PENDING
    scheduled_for: datetime | None = None
    job_ids: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("channels")
    @classmethod
    def _channels_not_empty(cls, value: list[str]) -> list[str]:
        channels = unique_channels(value)
        if not channels:
            raise ValueError("a notification needs at least one channel")
        return channels

    @property
    def is_terminal(self) -> bool:
        return self.status is NotificationStatus.CANCELLED

    def _touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)

    def advance(self, target: NotificationStatus) -> bool:
        """Apply a status transition.

        Returns ``True`` when the status changed and ``False`` for idempotent
        or backward moves.

        Raises:
            NotificationStateError: if the notification is already cancelled,
                or a settled notification is asked to cancel.
        """
        current = self.status
        if current is NotificationStatus.CANCELLED:
            raise NotificationStateError(
                f"Notification {self.id} is cancelled; cannot move to {target.value}"
            )
        if target is NotificationStatus.CANCELLED:
            return self.cancel()
        if target is current or _RANK[target] < _RANK[current]:
            return False
        self.status = target
        self._touch()
        return True

    def cancel(self) -> bool:
        """Any non-terminal status → CANCELLED."""
        if self.status in SETTLED_STATUSES:
            raise NotificationStateError(
                f"Cannot cancel notification {self.id} in {self.status.value} state"
            )
        if self.status is NotificationStatus.CANCELLED:
            return False
        self.status = NotificationStatus.CANCELLED
        self._touch()
        return True
