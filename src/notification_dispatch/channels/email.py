"""SMTP email channel."""

from __future__ import annotations

import asyncio
import email.message
import email.policy
import email.utils
import logging

import aiosmtplib

from ..domain.values import Recipient
from ..ports.channel import IChannel, SendParams, SendResult
from .validation import is_valid_email, sanitize_html, strip_html

logger = logging.getLogger("notification_dispatch.channels.email")


class SmtpEmailChannel(IChannel):
    """
    Async SMTP email channel using aiosmtplib.

    The connection is opened lazily on first use and reused afterwards.
    One SMTP session cannot interleave commands, so every use of it goes
    through ``self._lock``; a broken session is dropped and reopened on the
    next send.
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        *,
        use_tls: bool = False,
        start_tls: bool | None = None,
        timeout: float = 10.0,
        from_email: str,
        from_name: str | None = "Unified Notifications",
        name: str = "email",
    ) -> None:
        self.name = name
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.start_tls = start_tls
        self.timeout = timeout
        self.from_email = from_email
        self.from_name = from_name
        self._smtp: aiosmtplib.SMTP | None = None
        self._lock = asyncio.Lock()

    def validate_recipient(self, recipient: Recipient) -> bool:
        return is_valid_email(recipient.email)

    async def send(self, params: SendParams) -> SendResult:
        if not self.validate_recipient(params.recipient):
            return SendResult.failed("Invalid email recipient", provider="smtp")

        message = self._build_message(params)
        try:
            async with self._lock:
                smtp = await self._ensure_connected()
                errors, response = await smtp.send_message(message)
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
            logger.error("Email send to %s failed: %s", params.recipient.email, exc)
            await self._discard_connection()
            return SendResult.failed(str(exc) or type(exc).__name__, provider="smtp")

        message_id = str(message["Message-ID"])
        logger.info("Email sent to %s (%s)", params.recipient.email, message_id)
        return SendResult.ok(
            message_id,
            provider="smtp",
            metadata={
                "rejected": sorted(errors),
                "response": response,
            },
        )

    async def is_available(self) -> bool:
        try:
            async with self._lock:
                smtp = await self._ensure_connected()
                await smtp.noop()
            return True
        except Exception as exc:  # noqa: BLE001
            logger.warning("Email channel unavailable: %s", exc)
            await self._discard_connection()
            return False

    async def close(self) -> None:
        async with self._lock:
            smtp, self._smtp = self._smtp, None
        if smtp is not None and smtp.is_connected:
            try:
                await smtp.quit()
            except aiosmtplib.SMTPException as exc:
                logger.debug("Ignoring error while closing SMTP session: %s", exc)
        logger.info("Email channel closed")

    async def _ensure_connected(self) -> aiosmtplib.SMTP:
        if self._smtp is not None and self._smtp.is_connected:
            return self._smtp
        smtp = aiosmtplib.SMTP(
            hostname=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            use_tls=self.use_tls,
            start_tls=self.start_tls,
            timeout=self.timeout,
        )
        await smtp.connect()
        self._smtp = smtp
        logger.info("Email channel connected to %s:%d", self.host, self.port)
        return smtp

    async def _discard_connection(self) -> None:
        smtp, self._smtp = self._smtp, None
        if smtp is not None:
            smtp.close()

    def _build_message(self, params: SendParams) -> email.message.EmailMessage:
        message = email.message.EmailMessage(policy=email.policy.default)
        message["To"] = str(params.recipient.email)
        message["From"] = (
            email.utils.formataddr((self.from_name, self.from_email))
            if self.from_name
            else self.from_email
        )
        message["Subject"] = params.subject or ""
        message["Message-ID"] = email.utils.make_msgid()

        # Plain text first, HTML as the preferred alternative
        message.set_content(strip_html(params.body), subtype="plain", charset="utf-8")
        message.add_alternative(sanitize_html(params.body), subtype="html", charset="utf-8")
        return message
