"""Value types shared by requests, notifications and jobs."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, model_validator

# Render-context values are restricted to a small closed set of scalar kinds.
ContextValue = Union[str, bool, int, float, datetime, None]
ContextData = dict[str, ContextValue]

_SCALAR_TYPES = (str, bool, int, float, datetime)


class Priority(str, Enum):
    """Notification priority; ``weight`` orders the dispatch queue."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"

    @property
    def weight(self) -> int:
        return _PRIORITY_WEIGHTS[self]


_PRIORITY_WEIGHTS = {
    Priority.HIGH: 1,
    Priority.NORMAL: 5,
    Priority.LOW: 10,
}


class Recipient(BaseModel):
    """Open recipient bag.

    The well-known fields are typed; any extra field is accepted as long as
    its value is a scalar context value.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    email: str | None = None
    phone: str | None = None
    name: str | None = None
    push_token: str | None = None
    webhook_url: str | None = None

    @model_validator(mode="after")
    def _extras_are_scalars(self) -> Recipient:
        for key, value in (self.model_extra or {}).items():
            if value is not None and not isinstance(value, _SCALAR_TYPES):
                raise ValueError(
                    f"recipient.{key} must be a string, number, boolean or "
                    f"timestamp, got {type(value).__name__}"
                )
        return self

    def as_context(self) -> ContextData:
        """Return the recipient fields that are set, extras included."""
        return self.model_dump(exclude_none=True)


def merge_context(recipient: Recipient, data: dict[str, Any]) -> ContextData:
    """Merge recipient fields and request data; data wins on key clashes."""
    return {**recipient.as_context(), **data}


def unique_channels(channels: list[str] | None) -> list[str]:
    """Collapse duplicate channel names, keeping first-seen order."""
    seen: dict[str, None] = {}
    for channel in channels or []:
        name = channel.strip().lower()
        if name:
            seen.setdefault(name, None)
    return list(seen)


def as_utc(value: datetime) -> datetime:
    """Treat a naive timestamp as UTC; aware ones are returned unchanged."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
