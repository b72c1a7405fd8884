"""Webhook channel with HMAC signature."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging

import httpx

from ..correlation import get_correlation_id
from ..domain.values import Recipient
from ..ports.channel import IChannel, SendParams, SendResult

logger = logging.getLogger("notification_dispatch.channels.webhook")


class WebhookChannel(IChannel):
    """
    HTTP POST channel delivering to ``recipient.webhook_url``.

    Requests carry the current correlation ID and, when a secret is set, an
    ``X-Webhook-Signature`` header (``sha256=<hex>``) computed over the
    canonical JSON body. One ``httpx.AsyncClient`` is shared by all sends.
    """

    def __init__(
        self,
        *,
        secret: str | None = None,
        timeout: float = 10.0,
        user_agent: str = "notification-dispatch/0.1.0",
        client: httpx.AsyncClient | None = None,
        name: str = "webhook",
    ) -> None:
        self.name = name
        self.secret = secret
        self.timeout = timeout
        self.user_agent = user_agent
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def validate_recipient(self, recipient: Recipient) -> bool:
        url = recipient.webhook_url or ""
        return url.startswith(("http://", "https://"))

    async def send(self, params: SendParams) -> SendResult:
        if not self.validate_recipient(params.recipient):
            return SendResult.failed("Invalid webhook recipient", provider="webhook")

        url = str(params.recipient.webhook_url)
        payload = {
            "subject": params.subject or "",
            "body": params.body,
            "recipient": params.recipient.as_context(),
            "metadata": params.metadata,
        }
        body = json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str)
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
            "X-Correlation-ID": get_correlation_id() or "",
        }
        if self.secret:
            headers["X-Webhook-Signature"] = self.sign(body, self.secret)

        try:
            response = await self._get_client().post(url, content=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Webhook HTTP error: %s - %s", e.response.status_code, e.response.text
            )
            return SendResult.failed(
                f"HTTP {e.response.status_code}",
                provider="webhook",
                metadata={"status_code": e.response.status_code},
            )
        except httpx.HTTPError as e:
            logger.error("Failed to send webhook to %s: %s", url, e)
            return SendResult.failed(str(e) or type(e).__name__, provider="webhook")

        request_id = response.headers.get("X-Request-ID") or hashlib.sha256(
            body.encode("utf-8")
        ).hexdigest()[:16]
        logger.info("Webhook sent to %s (%s)", url, response.status_code)
        return SendResult.ok(
            request_id,
            provider="webhook",
            metadata={"status_code": response.status_code},
        )

    async def is_available(self) -> bool:
        return not self._get_client().is_closed

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def sign(payload: str, secret: str) -> str:
        digest = hmac.new(
            key=secret.encode("utf-8"),
            msg=payload.encode("utf-8"),
            digestmod=hashlib.sha256,
        ).hexdigest()
        return f"sha256={digest}"

    @staticmethod
    def verify_signature(payload: str, signature: str, secret: str) -> bool:
        """
        Verify a webhook signature using constant-time comparison.

        Use this in webhook receivers to authenticate incoming deliveries.
        """
        return hmac.compare_digest(WebhookChannel.sign(payload, secret), signature)

