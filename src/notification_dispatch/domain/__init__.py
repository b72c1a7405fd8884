"""Domain models: notification aggregate, jobs, delivery logs, templates."""

from __future__ import annotations

from .delivery_log import DeliveryLog, DeliveryStatus
from .job import Job, JobPayload, JobState
from .notification import SETTLED_STATUSES, Notification, NotificationStatus
from .template import Template
from .values import (
    ContextData,
    ContextValue,
    Priority,
    Recipient,
    merge_context,
    unique_channels,
)

__all__ = [
    "ContextData",
    "ContextValue",
    "DeliveryLog",
    "DeliveryStatus",
    "Job",
    "JobPayload",
    "JobState",
    "Notification",
    "NotificationStatus",
    "Priority",
    "Recipient",
    "SETTLED_STATUSES",
    "Template",
    "merge_context",
    "unique_channels",
]
