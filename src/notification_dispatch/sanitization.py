"""Provider response redaction for delivery logs."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .ports.channel import SendResult

REDACTED = "***"

# Keys providers are known to echo back (Twilio, SMTP relays, webhook
# receivers). Matched case-insensitively with "-" treated as "_".
_CREDENTIAL_KEYS = frozenset(
    {
        "password",
        "passphrase",
        "secret",
        "token",
        "authorization",
        "proxy_authorization",
        "cookie",
        "set_cookie",
        "signature",
        "x_webhook_signature",
    }
)
_CREDENTIAL_SUFFIXES = ("_token", "_secret", "_password", "_key")
_AUTH_SCHEMES = ("bearer ", "basic ")


def is_credential_key(key: str) -> bool:
    name = key.strip().lower().replace("-", "_")
    return name in _CREDENTIAL_KEYS or name.endswith(_CREDENTIAL_SUFFIXES)


class MetadataSanitizer:
    """
    Builds the ``response`` stored on a ``DeliveryLog`` from a ``SendResult``.

    ``message_id`` and ``provider`` come from the result itself and cannot be
    shadowed by provider metadata. Inside the metadata, values under
    credential-like keys and strings carrying an HTTP auth scheme are
    replaced by ``REDACTED`` at any depth. Recipient addresses are kept so
    that an attempt can be audited.
    """

    def response_of(self, result: SendResult) -> dict[str, Any]:
        response = self.sanitize(result.metadata)
        response["message_id"] = result.message_id
        response["provider"] = result.provider
        return response

    def sanitize(self, metadata: dict[str, Any]) -> dict[str, Any]:
        """Return a redacted copy; ``metadata`` is left untouched."""
        return {
            str(key): REDACTED if is_credential_key(str(key)) else self._redact(value)
            for key, value in metadata.items()
        }

    def _redact(self, value: Any) -> Any:
        if isinstance(value, dict):
            return self.sanitize(value)
        if isinstance(value, (list, tuple)):
            return [self._redact(item) for item in value]
        if isinstance(value, str) and value.lower().startswith(_AUTH_SCHEMES):
            return REDACTED
        return value
