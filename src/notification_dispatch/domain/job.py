"""Job — one (notification, channel) execution unit held by the dispatch queue."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .values import ContextData, Priority, Recipient


class JobState(str, Enum):
    """Queue-side lifecycle of a job. Each job is in exactly one state."""

    WAITING = "waiting"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class JobPayload(BaseModel):
    """Everything a worker needs to re-render and deliver without the store."""

    model_config = ConfigDict(frozen=True)

    template_name: str
    recipient: Recipient
    data: ContextData = Field(default_factory=dict)
    # Full channel set of the notification; the template's native channel
    # is guaranteed to be part of it.
    channels: list[str] = Field(default_factory=list)
    priority: Priority = Priority.NORMAL


class Job(BaseModel):
    """Detached work item.

    ``ready_at`` is never earlier than ``submitted_at``; the job is eligible
    for leasing only once the current time reaches ``ready_at``.

    ``lease_id`` is stamped by every ``lease`` and must be presented to
    ``ack``/``retry``; it is ``None`` whenever the job is not active.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    notification_id: str
    channel: str
    payload: JobPayload
    priority_weight: int = Priority.NORMAL.weight
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ready_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    attempts_made: int = 0
    max_attempts: int = Field(default=3, ge=1)
    state: JobState = JobState.WAITING
    leased_at: datetime | None = None
    lease_id: str | None = None
    finished_at: datetime | None = None

    @classmethod
    def for_channel(
        cls,
        notification_id: str,
        channel: str,
        payload: JobPayload,
        max_attempts: int = 3,
    ) -> Job:
        """Build the job for one channel of a notification."""
        return cls(
            notification_id=notification_id,
            channel=channel,
            payload=payload,
            priority_weight=payload.priority.weight,
            max_attempts=max_attempts,
        )

    @property
    def next_attempt(self) -> int:
        """1-based number of the attempt a worker is about to make."""
        return self.attempts_made + 1
