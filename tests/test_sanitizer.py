"""Tests for MetadataSanitizer."""

import pytest

from notification_dispatch.ports.channel import SendResult
from notification_dispatch.sanitization import REDACTED, MetadataSanitizer, is_credential_key


@pytest.mark.parametrize(
    "key",
    ["auth_token", "Authorization", "X-Webhook-Signature", "api_key", "smtp_password", "Set-Cookie"],
)
def test_credential_keys(key):
    assert is_credential_key(key)


@pytest.mark.parametrize("key", ["message_id", "email", "phone", "status", "keyword", "tokens_used"])
def test_non_credential_keys(key):
    assert not is_credential_key(key)


def test_response_of_redacts_nested_metadata():
    """Test credentials echoed by providers are redacted at any depth."""
    metadata = {
        "status": "queued",
        "auth_token": "abc",
        "request": {
            "headers": {"Authorization": "Bearer x", "Accept": "application/json"},
            "attempts": [{"api_key": "k-1", "code": 202}],
        },
    }
    result = SendResult.ok("m-1", provider="twilio", metadata=metadata)

    response = MetadataSanitizer().response_of(result)

    assert response == {
        "message_id": "m-1",
        "provider": "twilio",
        "status": "queued",
        "auth_token": REDACTED,
        "request": {
            "headers": {"Authorization": REDACTED, "Accept": "application/json"},
            "attempts": [{"api_key": REDACTED, "code": 202}],
        },
    }
    assert metadata["auth_token"] == "abc"


def test_auth_scheme_values_are_redacted_under_any_key():
    sanitized = MetadataSanitizer().sanitize({"echo": "Basic dXNlcjpwdw==", "note": "basically fine"})

    assert sanitized == {"echo": REDACTED, "note": "basically fine"}


def test_metadata_cannot_shadow_result_identity():
    result = SendResult.ok("m-1", provider="smtp", metadata={"message_id": "spoofed", "provider": "x"})

    response = MetadataSanitizer().response_of(result)

    assert response["message_id"] == "m-1"
    assert response["provider"] == "smtp"


def test_recipient_fields_are_kept():
    sanitized = MetadataSanitizer().sanitize({"email": "a@b.com", "phone": "+15551234567"})

    assert sanitized == {"email": "a@b.com", "phone": "+15551234567"}


def test_failed_result_response():
    result = SendResult.failed("HTTP 500", metadata={"status_code": 500})

    assert MetadataSanitizer().response_of(result) == {
        "message_id": None,
        "provider": None,
        "status_code": 500,
    }
