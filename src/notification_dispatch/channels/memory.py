"""In-memory and console channels for tests and local development."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from typing import TYPE_CHECKING

from ..ports.channel import IChannel, SendParams, SendResult
from .validation import RECIPIENT_REQUIREMENTS, is_valid_email, is_valid_phone

if TYPE_CHECKING:
    from ..domain.values import Recipient

logger = logging.getLogger("notification_dispatch.channels.memory")

def _default_recipient_check(channel: str, recipient: Recipient) -> bool:
    if channel == "email":
        return is_valid_email(recipient.email)
    if channel == "sms":
        return is_valid_phone(recipient.phone)
    requirement = RECIPIENT_REQUIREMENTS.get(channel)
    return requirement is None or bool(getattr(recipient, requirement[0], None))


class InMemoryChannel(IChannel):
    """
    Test double (Fake) that stores sent messages in a list for assertions.

    Failures are scriptable: ``fail_next(n)`` makes the next ``n`` sends
    return a structured failure, ``raise_next(n)`` makes them raise, and
    ``available`` drives ``is_available``.
    """

    def __init__(self, name: str = "email", *, delay: float = 0.0) -> None:
        self.name = name
        self.delay = delay
        self.available = True
        self.accept_all_recipients = False
        self.sent_messages: list[SendParams] = []
        self.attempts = 0
        self._outcomes: deque[tuple[str, str]] = deque()

    def fail_next(self, count: int = 1, error: str = "SMTP error") -> None:
        self._outcomes.extend([("fail", error)] * count)

    def raise_next(self, count: int = 1, error: str = "connection reset") -> None:
        self._outcomes.extend([("raise", error)] * count)

    def validate_recipient(self, recipient: Recipient) -> bool:
        return self.accept_all_recipients or _default_recipient_check(
            self.name, recipient
        )

    async def is_available(self) -> bool:
        return self.available

    async def send(self, params: SendParams) -> SendResult:
        self.attempts += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self._outcomes:
            kind, error = self._outcomes.popleft()
            if kind == "raise":
                raise ConnectionError(error)
            return SendResult.failed(error, provider="memory")
        self.sent_messages.append(params)
        return SendResult.ok(f"memory-{uuid.uuid4().hex[:12]}", provider="memory")

    def assert_sent(self, count: int = 1, *, body: str | None = None) -> None:
        """Helper for test assertions."""
        matches = [
            m for m in self.sent_messages if body is None or m.body == body
        ]
        if len(matches) != count:
            raise AssertionError(
                f"Expected {count} messages via {self.name}, but found {len(matches)}."
            )

    def clear(self) -> None:
        self.sent_messages.clear()
        self._outcomes.clear()
        self.attempts = 0


class ConsoleChannel(IChannel):
    """
    Development channel that logs (and optionally prints) every message.
    """

    def __init__(self, name: str = "console", *, output_to_stdout: bool = True) -> None:
        self.name = name
        self.output_to_stdout = output_to_stdout

    def validate_recipient(self, recipient: Recipient) -> bool:
        return bool(recipient.as_context())

    async def is_available(self) -> bool:
        return True

    async def send(self, params: SendParams) -> SendResult:
        recipient = params.recipient
        target = recipient.email or recipient.phone or recipient.webhook_url or "-"
        output = "\n".join(
            [
                "═" * 50,
                f"NOTIFICATION SENT VIA {self.name.upper()}",
                f"To:      {target}",
                f"Subject: {params.subject or '(No Subject)'}",
                f"Body:    {params.body}",
                "═" * 50,
            ]
        )
        logger.info(output)
        if self.output_to_stdout:
            print(output)
        return SendResult.ok(f"console-{uuid.uuid4().hex[:12]}", provider="console")
