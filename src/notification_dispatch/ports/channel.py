"""Channel port — the capability contract every delivery medium implements."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from ..domain.values import Recipient


@dataclass(frozen=True)
class SendParams:
    """Rendered content addressed to one recipient."""

    recipient: Recipient
    body: str
    subject: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SendResult:
    """Outcome of ``IChannel.send``.

    Ordinary delivery failures (provider rejection, timeout) are reported
    with ``success=False``; only programming or configuration errors raise.
    """

    success: bool
    message_id: str | None = None
    provider: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(
        cls,
        message_id: str,
        provider: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SendResult:
        """Create a successful result."""
        return cls(
            success=True,
            message_id=message_id,
            provider=provider,
            metadata=metadata or {},
        )

    @classmethod
    def failed(
        cls,
        error: str,
        provider: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SendResult:
        """Create a failed result."""
        return cls(
            success=False,
            error=error,
            provider=provider,
            metadata=metadata or {},
        )


@runtime_checkable
class IChannel(Protocol):
    """
    Delivery medium identified by a unique ``name``.

    ``send`` may be called concurrently from several workers; implementations
    that hold a live connection must serialize or pool it internally.
    """

    name: str

    async def send(self, params: SendParams) -> SendResult:
        """Deliver the message and report the outcome."""
        ...

    async def is_available(self) -> bool:
        """Cheap liveness check. Returns ``False`` instead of raising."""
        ...

    def validate_recipient(self, recipient: Recipient) -> bool:
        """Pure, fast check that the recipient is addressable on this channel."""
        ...
