"""Tests for NotificationOrchestrator."""

from datetime import datetime, timedelta

import pytest

from notification_dispatch.channels import RECIPIENT_REQUIREMENTS
from notification_dispatch.domain import JobState, NotificationStatus, Priority, Recipient
from notification_dispatch.exceptions import (
    ChannelMismatchError,
    MissingVariablesError,
    NotificationStateError,
    QueueBackendError,
    ScheduleInPastError,
    TemplateNotFoundError,
    ValidationFailedError,
)
from notification_dispatch.orchestrator import NotificationOrchestrator, SendRequest
from notification_dispatch.queue import InMemoryDispatchQueue


def _request(**kwargs):
    fields = {
        "template_name": "welcome",
        "recipient": Recipient(email="a@b.com", name="Ana"),
        "data": {"code": "123"},
    }
    fields.update(kwargs)
    return SendRequest(**fields)


class FlakyQueue(InMemoryDispatchQueue):
    """Queue whose n-th enqueue fails."""

    def __init__(self, fail_on, **kwargs):
        super().__init__(**kwargs)
        self.fail_on = fail_on
        self.calls = 0

    async def enqueue(self, job):
        self.calls += 1
        if self.calls == self.fail_on:
            raise QueueBackendError("Technical failure: connection reset")
        return await super().enqueue(job)


# -- SendRequest ----------------------------------------------------------


def test_send_request_collapses_channels():
    assert _request(channels=["email", "EMAIL", "sms"]).channels == ["email", "sms"]
    assert _request(channels=[]).channels is None


def test_send_request_makes_schedule_aware():
    request = _request(scheduled_for=datetime(2030, 1, 1, 9, 0))

    assert request.scheduled_for.tzinfo is not None


# -- validate -------------------------------------------------------------


@pytest.mark.asyncio
async def test_validate_valid_request(orchestrator):
    outcome = await orchestrator.validate(_request())

    assert outcome.valid
    assert outcome.errors == []
    assert outcome.missing_variables == []


@pytest.mark.asyncio
async def test_validate_unknown_template(orchestrator):
    outcome = await orchestrator.validate(_request(template_name="nope"))

    assert not outcome.valid
    assert not outcome.template_found
    assert outcome.errors == ['Template "nope" not found']


@pytest.mark.asyncio
async def test_validate_accumulates_errors_in_order(orchestrator):
    """Test recipient errors come before missing variables, without short-circuit."""
    outcome = await orchestrator.validate(
        _request(channels=["email", "sms"], data={})
    )

    assert not outcome.valid
    assert outcome.errors == [
        "SMS channel requires recipient.phone",
        "Missing variables: code",
    ]
    assert outcome.missing_variables == ["code"]


@pytest.mark.asyncio
async def test_validate_reports_missing_field_per_channel(orchestrator):
    outcome = await orchestrator.validate(_request(channels=["email", "push", "webhook"]))

    assert outcome.errors == [
        RECIPIENT_REQUIREMENTS["push"][1],
        RECIPIENT_REQUIREMENTS["webhook"][1],
    ]


@pytest.mark.asyncio
async def test_validate_recipient_field_for_default_channel(orchestrator):
    outcome = await orchestrator.validate(
        _request(recipient=Recipient(phone="+15551234567", name="Ana"))
    )

    assert outcome.errors == ["Email channel requires recipient.email"]


@pytest.mark.asyncio
async def test_validate_uses_explicit_variable_list(orchestrator):
    outcome = await orchestrator.validate(_request(template_name="explicit", data={}))

    assert outcome.missing_variables == ["account_id"]


@pytest.mark.asyncio
async def test_validate_recipient_fields_feed_the_context(orchestrator):
    """Test recipient.name satisfies the {{name}} placeholder."""
    outcome = await orchestrator.validate(
        _request(recipient=Recipient(email="a@b.com"), data={"code": "1"})
    )

    assert outcome.missing_variables == ["name"]


@pytest.mark.asyncio
async def test_validate_is_idempotent(orchestrator, queue, notifications):
    request = _request(channels=["email", "sms"], data={})

    first = await orchestrator.validate(request)
    second = await orchestrator.validate(request)

    assert first == second
    assert (await queue.stats()).total == 0
    assert await notifications.list() == []


# -- prepare --------------------------------------------------------------


@pytest.mark.asyncio
async def test_prepare_renders_subject_and_body(orchestrator):
    processed = await orchestrator.prepare(_request(priority=Priority.HIGH))

    assert processed.body == "Hi Ana, code 123"
    assert processed.subject == "Welcome Ana"
    assert processed.channels == ["email"]
    assert processed.priority is Priority.HIGH
    assert processed.template.name == "welcome"


@pytest.mark.asyncio
async def test_prepare_channel_mismatch(orchestrator):
    with pytest.raises(ChannelMismatchError) as exc_info:
        await orchestrator.prepare(
            _request(recipient=Recipient(phone="+15551234567", name="Ana"), channels=["sms"])
        )

    assert exc_info.value.template_channel == "email"
    assert exc_info.value.channels == ["sms"]


@pytest.mark.asyncio
async def test_prepare_missing_variables(orchestrator):
    with pytest.raises(MissingVariablesError) as exc_info:
        await orchestrator.prepare(_request(data={"code": ""}))

    assert exc_info.value.missing == ["code"]


@pytest.mark.asyncio
async def test_prepare_unknown_template(orchestrator):
    with pytest.raises(TemplateNotFoundError):
        await orchestrator.prepare(_request(template_name="nope"))


# -- send -----------------------------------------------------------------


@pytest.mark.asyncio
async def test_send_creates_notification_and_one_job(orchestrator, queue, notifications):
    receipt = await orchestrator.send(_request())

    assert receipt.status is NotificationStatus.QUEUED
    assert len(receipt.job_ids) == 1
    notification = await notifications.find_by_id(receipt.id)
    assert notification.status is NotificationStatus.QUEUED
    assert notification.channels == ["email"]
    assert notification.job_ids == receipt.job_ids
    assert receipt.queued_at == notification.created_at

    job = await orchestrator.get_job(receipt.job_ids[0])
    assert job.state is JobState.WAITING
    assert job.notification_id == receipt.id
    assert job.channel == "email"
    assert job.max_attempts == 3
    assert job.payload.data == {"code": "123"}
    assert job.payload.channels == ["email"]


@pytest.mark.asyncio
async def test_send_fans_out_one_job_per_channel(orchestrator, queue):
    """Test N requested channels become N independent jobs."""
    receipt = await orchestrator.send(
        _request(
            recipient=Recipient(email="a@b.com", phone="+15551234567", name="Ana"),
            channels=["email", "sms", "email"],
            priority=Priority.HIGH,
        )
    )

    assert len(receipt.job_ids) == 2
    jobs = [await queue.get_job(job_id) for job_id in receipt.job_ids]
    assert [job.channel for job in jobs] == ["email", "sms"]
    assert all(job.priority_weight == 1 for job in jobs)
    assert (await orchestrator.get_stats()).waiting == 2


@pytest.mark.asyncio
async def test_send_missing_variables_creates_nothing(orchestrator, queue, notifications):
    """Test a missing variable is rejected synchronously with its exact name."""
    with pytest.raises(MissingVariablesError) as exc_info:
        await orchestrator.send(_request(data={}))

    assert exc_info.value.missing == ["code"]
    assert await notifications.list() == []
    assert (await queue.stats()).total == 0


@pytest.mark.asyncio
async def test_send_aggregates_validation_errors(orchestrator, queue):
    with pytest.raises(ValidationFailedError) as exc_info:
        await orchestrator.send(_request(channels=["email", "sms"], data={}))

    assert not isinstance(exc_info.value, MissingVariablesError)
    assert exc_info.value.errors == [
        "SMS channel requires recipient.phone",
        "Missing variables: code",
    ]
    assert (await queue.stats()).total == 0


@pytest.mark.asyncio
async def test_send_unknown_template(orchestrator):
    with pytest.raises(TemplateNotFoundError) as exc_info:
        await orchestrator.send(_request(template_name="nope"))

    assert exc_info.value.template_name == "nope"


@pytest.mark.asyncio
async def test_send_channel_mismatch_creates_nothing(orchestrator, queue, notifications):
    """Test a template is never fanned out to channels it was not written for."""
    request = _request(
        recipient=Recipient(email="a@b.com", phone="+15551234567", name="Ana"),
        channels=["sms"],
    )
    assert (await orchestrator.validate(request)).valid

    with pytest.raises(ChannelMismatchError) as exc_info:
        await orchestrator.send(request)

    assert exc_info.value.template_channel == "email"
    assert await notifications.list() == []
    assert (await queue.stats()).total == 0


@pytest.mark.asyncio
async def test_send_schedule_in_past_creates_nothing(orchestrator, queue, notifications, clock):
    with pytest.raises(ScheduleInPastError):
        await orchestrator.send(_request(scheduled_for=clock.now - timedelta(minutes=1)))
    with pytest.raises(ScheduleInPastError):
        await orchestrator.send(_request(scheduled_for=clock.now))

    assert await notifications.list() == []
    assert (await queue.stats()).total == 0


@pytest.mark.asyncio
async def test_send_scheduled_notification_is_pending(orchestrator, queue, clock):
    when = clock.now + timedelta(hours=1)

    receipt = await orchestrator.send(_request(scheduled_for=when))

    assert receipt.status is NotificationStatus.PENDING
    job = await queue.get_job(receipt.job_ids[0])
    assert job.state is JobState.SCHEDULED
    assert job.ready_at == when
    assert await queue.lease() is None

    clock.advance(3600)
    assert (await queue.lease()).id == job.id


@pytest.mark.asyncio
async def test_send_partial_fan_out_is_withdrawn(templates, notifications, clock):
    """Test a failing submission removes earlier jobs and cancels the notification."""
    queue = FlakyQueue(fail_on=2, clock=clock)
    orchestrator = NotificationOrchestrator(templates, notifications, queue, clock=clock)

    with pytest.raises(QueueBackendError):
        await orchestrator.send(
            _request(
                recipient=Recipient(email="a@b.com", phone="+15551234567", name="Ana"),
                channels=["email", "sms"],
            )
        )

    assert (await queue.stats()).total == 0
    [notification] = await notifications.list()
    assert notification.status is NotificationStatus.CANCELLED


# -- cancel ---------------------------------------------------------------


@pytest.mark.asyncio
async def test_cancel_withdraws_pending_jobs(orchestrator, queue, notifications):
    receipt = await orchestrator.send(
        _request(
            recipient=Recipient(email="a@b.com", phone="+15551234567", name="Ana"),
            channels=["email", "sms"],
        )
    )
    await queue.lease()

    cancelled = await orchestrator.cancel(receipt.id)

    assert cancelled.status is NotificationStatus.CANCELLED
    stats = await queue.stats()
    assert stats.active == 1
    assert stats.waiting == 0


@pytest.mark.asyncio
async def test_cancel_unknown_notification(orchestrator):
    assert await orchestrator.cancel("missing") is None


@pytest.mark.asyncio
async def test_cancel_settled_notification_fails(orchestrator, notifications):
    receipt = await orchestrator.send(_request())
    await notifications.update_status(receipt.id, NotificationStatus.SENT)

    with pytest.raises(NotificationStateError):
        await orchestrator.cancel(receipt.id)
