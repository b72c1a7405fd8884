"""In-memory store adapters for tests and single-process deployments."""

from __future__ import annotations

from .delivery_logs import InMemoryDeliveryLogStore
from .notifications import InMemoryNotificationStore
from .templates import InMemoryTemplateStore

__all__ = [
    "InMemoryDeliveryLogStore",
    "InMemoryNotificationStore",
    "InMemoryTemplateStore",
]
