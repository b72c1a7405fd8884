"""Shared helpers for channel implementations."""

from __future__ import annotations

import html
import re

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NON_DIGIT_RE = re.compile(r"\D")
_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")

# Recipient field each built-in channel name addresses, with the message
# reported when it is missing.
RECIPIENT_REQUIREMENTS: dict[str, tuple[str, str]] = {
    "email": ("email", "Email channel requires recipient.email"),
    "sms": ("phone", "SMS channel requires recipient.phone"),
    "push": ("push_token", "Push channel requires recipient.push_token"),
    "webhook": ("webhook_url", "Webhook channel requires recipient.webhook_url"),
}


def is_valid_email(email: str | None) -> bool:
    return bool(email) and _EMAIL_RE.match(email or "") is not None


def is_valid_phone(phone: str | None) -> bool:
    """Accept any formatting as long as the number carries 10 to 15 digits."""
    if not phone:
        return False
    digits = _NON_DIGIT_RE.sub("", phone)
    return 10 <= len(digits) <= 15


def sanitize_html(body: str) -> str:
    """Drop ``<script>`` blocks from HTML content."""
    return _SCRIPT_RE.sub("", body)


def strip_html(body: str) -> str:
    """Plain-text rendition of HTML content."""
    return html.unescape(_TAG_RE.sub("", body).replace("&nbsp;", " ")).strip()
