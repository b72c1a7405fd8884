"""Tests for channel helpers and the in-memory/console channels."""

import pytest

from notification_dispatch.channels import (
    RECIPIENT_REQUIREMENTS,
    ConsoleChannel,
    InMemoryChannel,
    is_valid_email,
    is_valid_phone,
    sanitize_html,
    strip_html,
)
from notification_dispatch.domain import Recipient
from notification_dispatch.ports import IChannel, SendParams, SendResult


@pytest.mark.parametrize(
    ("email", "valid"),
    [
        ("a@b.com", True),
        ("first.last+tag@example.co.uk", True),
        ("no-at-sign.com", False),
        ("a@b", False),
        ("a b@c.com", False),
        ("", False),
        (None, False),
    ],
)
def test_is_valid_email(email, valid):
    assert is_valid_email(email) is valid


@pytest.mark.parametrize(
    ("phone", "valid"),
    [
        ("+1 (555) 123-4567", True),
        ("+306912345678", True),
        ("12345", False),
        ("+1234567890123456", False),
        (None, False),
    ],
)
def test_is_valid_phone(phone, valid):
    assert is_valid_phone(phone) is valid


def test_sanitize_html_drops_scripts():
    body = "<p>Hi</p><script>alert('x')</script><b>there</b>"

    assert sanitize_html(body) == "<p>Hi</p><b>there</b>"


def test_strip_html():
    assert strip_html("<p>Hi&nbsp;<b>Ana</b> &amp; co</p>\n") == "Hi Ana & co"


def test_send_result_factories():
    ok = SendResult.ok("m-1", provider="smtp", metadata={"response": "250"})
    failed = SendResult.failed("SMTP error", provider="smtp")

    assert ok.success and ok.message_id == "m-1" and ok.error is None
    assert not failed.success and failed.error == "SMTP error"
    assert failed.metadata == {}


def test_in_memory_channel_implements_protocol():
    assert isinstance(InMemoryChannel(), IChannel)
    assert isinstance(ConsoleChannel(), IChannel)


@pytest.mark.asyncio
async def test_in_memory_channel_records_messages():
    """Test InMemoryChannel records sent messages."""
    channel = InMemoryChannel("email")
    params = SendParams(recipient=Recipient(email="a@b.com"), body="Hello", subject="Hi")

    result = await channel.send(params)

    assert result.success
    assert result.provider == "memory"
    assert channel.sent_messages == [params]
    channel.assert_sent(1, body="Hello")


@pytest.mark.asyncio
async def test_in_memory_channel_assert_sent_failure():
    """Test assert_sent raises with wrong count."""
    channel = InMemoryChannel("email")
    await channel.send(SendParams(recipient=Recipient(email="a@b.com"), body="Hello"))

    with pytest.raises(AssertionError) as exc_info:
        channel.assert_sent(2)

    assert "Expected 2 messages" in str(exc_info.value)


@pytest.mark.asyncio
async def test_in_memory_channel_scripted_failures():
    channel = InMemoryChannel("email")
    params = SendParams(recipient=Recipient(email="a@b.com"), body="Hello")
    channel.fail_next(1, "SMTP error")
    channel.raise_next(1, "boom")

    failed = await channel.send(params)
    with pytest.raises(ConnectionError):
        await channel.send(params)
    sent = await channel.send(params)

    assert not failed.success
    assert failed.error == "SMTP error"
    assert sent.success
    assert channel.attempts == 3
    assert len(channel.sent_messages) == 1


@pytest.mark.asyncio
async def test_in_memory_channel_availability():
    channel = InMemoryChannel("email")
    assert await channel.is_available()

    channel.available = False
    assert not await channel.is_available()


def test_in_memory_channel_recipient_checks():
    assert InMemoryChannel("email").validate_recipient(Recipient(email="a@b.com"))
    assert not InMemoryChannel("email").validate_recipient(Recipient(email="nope"))
    assert InMemoryChannel("sms").validate_recipient(Recipient(phone="+15551234567"))
    assert not InMemoryChannel("sms").validate_recipient(Recipient(email="a@b.com"))
    assert not InMemoryChannel("push").validate_recipient(Recipient(email="a@b.com"))
    assert InMemoryChannel("slack").validate_recipient(Recipient())

    lenient = InMemoryChannel("email")
    lenient.accept_all_recipients = True
    assert lenient.validate_recipient(Recipient())


def test_in_memory_channel_clear():
    """Test clear resets sent messages and scripted outcomes."""
    channel = InMemoryChannel("email")
    channel.fail_next(3)
    channel.attempts = 3

    channel.clear()

    assert channel.attempts == 0
    assert channel.sent_messages == []


@pytest.mark.asyncio
async def test_console_channel_prints(capsys):
    channel = ConsoleChannel()

    result = await channel.send(
        SendParams(recipient=Recipient(email="a@b.com"), body="Hello", subject="Hi")
    )

    assert result.success
    assert result.provider == "console"
    out = capsys.readouterr().out
    assert "NOTIFICATION SENT VIA CONSOLE" in out
    assert "To:      a@b.com" in out
    assert "Subject: Hi" in out


@pytest.mark.asyncio
async def test_console_channel_silent(capsys):
    channel = ConsoleChannel(output_to_stdout=False)

    await channel.send(SendParams(recipient=Recipient(phone="+15551234567"), body="Hi"))

    assert capsys.readouterr().out == ""


_ADDRESSES = {
    "email": "a@b.com",
    "phone": "+15551234567",
    "push_token": "device-1",
    "webhook_url": "https://hooks.example.com/n",
}


@pytest.mark.parametrize("channel", sorted(RECIPIENT_REQUIREMENTS))
def test_in_memory_channel_requires_the_channel_field(channel):
    field_name, _ = RECIPIENT_REQUIREMENTS[channel]
    fake = InMemoryChannel(channel)

    assert not fake.validate_recipient(Recipient(name="Ana"))
    assert fake.validate_recipient(Recipient(**{field_name: _ADDRESSES[field_name]}))
