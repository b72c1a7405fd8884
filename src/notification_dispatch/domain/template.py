"""Template — read-only definition resolved by name."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Template(BaseModel):
    """Immutable template definition.

    ``variables`` is the explicit list of required variable names; when it is
    ``None`` the renderer derives the list from the placeholders in the
    subject and body.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = Field(min_length=1, max_length=100)
    channel: str
    subject: str | None = None
    body: str
    variables: list[str] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("channel")
    @classmethod
    def _normalize_channel(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("channel must not be empty")
        return value
