"""DeliveryLog — immutable audit record of one delivery attempt."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .values import as_utc


class DeliveryStatus(str, Enum):
    """Delivery status outcomes."""

    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class DeliveryLog(BaseModel):
    """Immutable record of a delivery attempt.

    Two logs are appended per attempt: ``processing`` before the channel is
    invoked, then ``sent``/``failed`` with the outcome.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    notification_id: str
    channel: str
    status: DeliveryStatus
    attempt: int = Field(default=1, ge=1)
    duration_ms: int | None = None
    response: dict[str, Any] | None = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("created_at")
    @classmethod
    def _created_at_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @classmethod
    def processing(
        cls, notification_id: str, channel: str, attempt: int
    ) -> DeliveryLog:
        """Create the log appended right before a send."""
        return cls(
            notification_id=notification_id,
            channel=channel,
            status=DeliveryStatus.PROCESSING,
            attempt=attempt,
        )

    @classmethod
    def sent(
        cls,
        notification_id: str,
        channel: str,
        attempt: int,
        duration_ms: int,
        response: dict[str, Any] | None = None,
    ) -> DeliveryLog:
        """Create a successful delivery log."""
        return cls(
            notification_id=notification_id,
            channel=channel,
            status=DeliveryStatus.SENT,
            attempt=attempt,
            duration_ms=duration_ms,
            response=response,
        )

    @classmethod
    def failed(
        cls,
        notification_id: str,
        channel: str,
        attempt: int,
        duration_ms: int | None,
        error: str,
        response: dict[str, Any] | None = None,
    ) -> DeliveryLog:
        """Create a failed delivery log."""
        return cls(
            notification_id=notification_id,
            channel=channel,
            status=DeliveryStatus.FAILED,
            attempt=attempt,
            duration_ms=duration_ms,
            error=error,
            response=response,
        )

    @classmethod
    def cancelled(
        cls, notification_id: str, channel: str, attempt: int
    ) -> DeliveryLog:
        """Create the log recorded when a job is dropped for a cancelled notification."""
        return cls(
            notification_id=notification_id,
            channel=channel,
            status=DeliveryStatus.CANCELLED,
            attempt=attempt,
            error="Notification cancelled",
        )
