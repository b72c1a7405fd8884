"""Ports (protocols) the dispatch pipeline depends on."""

from __future__ import annotations

from .background_worker import IBackgroundWorker
from .channel import IChannel, SendParams, SendResult
from .queue import IDispatchQueue, QueueStats
from .renderer import ITemplateRenderer
from .stores import (
    DeliveryLogQuery,
    IDeliveryLogStore,
    INotificationStore,
    ITemplateStore,
    NotificationQuery,
)

__all__ = [
    "DeliveryLogQuery",
    "IBackgroundWorker",
    "IChannel",
    "IDeliveryLogStore",
    "IDispatchQueue",
    "INotificationStore",
    "ITemplateRenderer",
    "ITemplateStore",
    "NotificationQuery",
    "QueueStats",
    "SendParams",
    "SendResult",
]
