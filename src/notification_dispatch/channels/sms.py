"""Twilio SMS channel (optional)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..domain.values import Recipient
from ..ports.channel import IChannel, SendParams, SendResult
from .validation import is_valid_phone, strip_html

logger = logging.getLogger("notification_dispatch.channels.sms")


class TwilioSmsChannel(IChannel):
    """
    Twilio SMS channel.

    The twilio client is synchronous; calls run in a worker thread so they
    never block the event loop. Requires the twilio library::

        pip install 'notification-dispatch[twilio]'
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        *,
        client: Any = None,
        name: str = "sms",
    ) -> None:
        self.name = name
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            try:
                from twilio.rest import Client as TwilioClient
            except ImportError as e:
                raise ImportError(
                    "twilio is required for TwilioSmsChannel. "
                    "Install with: pip install 'notification-dispatch[twilio]'"
                ) from e
            self._client = TwilioClient(self.account_sid, self.auth_token)
        return self._client

    def validate_recipient(self, recipient: Recipient) -> bool:
        return is_valid_phone(recipient.phone)

    async def send(self, params: SendParams) -> SendResult:
        if not self.validate_recipient(params.recipient):
            return SendResult.failed("Invalid phone recipient", provider="twilio")

        client = self.client
        try:
            message = await asyncio.to_thread(
                client.messages.create,
                to=params.recipient.phone,
                from_=self.from_number,
                body=strip_html(params.body),
            )
        except Exception as e:  # noqa: BLE001
            logger.error("Failed to send SMS via Twilio: %s", e)
            return SendResult.failed(str(e), provider="twilio")

        logger.info("SMS sent via Twilio to %s (SID: %s)", params.recipient.phone, message.sid)
        return SendResult.ok(
            message.sid,
            provider="twilio",
            metadata={"status": getattr(message, "status", None)},
        )

    async def is_available(self) -> bool:
        try:
            account = await asyncio.to_thread(
                self.client.api.v2010.accounts(self.account_sid).fetch
            )
        except Exception as e:  # noqa: BLE001
            logger.warning("Twilio unavailable: %s", e)
            return False
        return getattr(account, "status", "active") == "active"
