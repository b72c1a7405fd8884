"""Channel implementations and the channel registry."""

from __future__ import annotations

from .email import SmtpEmailChannel
from .memory import ConsoleChannel, InMemoryChannel
from .registry import ChannelRegistry
from .sms import TwilioSmsChannel
from .validation import (
    RECIPIENT_REQUIREMENTS,
    is_valid_email,
    is_valid_phone,
    sanitize_html,
    strip_html,
)
from .webhook import WebhookChannel

__all__ = [
    "RECIPIENT_REQUIREMENTS",
    "ChannelRegistry",
    "ConsoleChannel",
    "InMemoryChannel",
    "SmtpEmailChannel",
    "TwilioSmsChannel",
    "WebhookChannel",
    "is_valid_email",
    "is_valid_phone",
    "sanitize_html",
    "strip_html",
]
