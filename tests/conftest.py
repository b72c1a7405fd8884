"""Test configuration for notification-dispatch."""

from datetime import datetime, timedelta, timezone

import pytest

from notification_dispatch.adapters.memory import (
    InMemoryDeliveryLogStore,
    InMemoryNotificationStore,
    InMemoryTemplateStore,
)
from notification_dispatch.channels import ChannelRegistry, InMemoryChannel
from notification_dispatch.domain import Job, JobPayload, Priority, Recipient, Template
from notification_dispatch.orchestrator import NotificationOrchestrator
from notification_dispatch.queue import InMemoryDispatchQueue, RetryPolicy
from notification_dispatch.worker import DispatchWorkerPool

pytest_plugins = ["pytest_asyncio"]


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)
        return self.now


def make_job(channel="email", priority=Priority.NORMAL, notification_id="n-1", **kwargs):
    """Build a job for ``channel`` with a minimal payload."""
    payload = JobPayload(
        template_name="welcome",
        recipient=Recipient(email="a@b.com", name="Ana"),
        data={"code": "123"},
        channels=[channel],
        priority=priority,
    )
    return Job.for_channel(notification_id, channel, payload, **kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(clock):
    return InMemoryDispatchQueue(clock=clock)


@pytest.fixture
def welcome_template():
    """The template used by the end-to-end scenarios."""
    return Template(
        name="welcome",
        channel="email",
        subject="Welcome {{ name }}",
        body="Hi {{name}}, code {{code}}",
    )


@pytest.fixture
def templates(welcome_template):
    return InMemoryTemplateStore(
        [
            welcome_template,
            Template(name="otp", channel="sms", body="Your code is {{ code }}"),
            Template(
                name="explicit",
                channel="email",
                body="Hello",
                variables=["account_id"],
            ),
        ]
    )


@pytest.fixture
def notifications():
    return InMemoryNotificationStore()


@pytest.fixture
def delivery_logs():
    return InMemoryDeliveryLogStore()


@pytest.fixture
def email_channel():
    return InMemoryChannel("email")


@pytest.fixture
def sms_channel():
    return InMemoryChannel("sms")


@pytest.fixture
def registry(email_channel, sms_channel):
    return ChannelRegistry([email_channel, sms_channel])


@pytest.fixture
def retry_policy():
    """Three attempts, no backoff, so retries are leasable right away."""
    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=False)


@pytest.fixture
def orchestrator(templates, notifications, queue, retry_policy, clock):
    return NotificationOrchestrator(
        templates, notifications, queue, retry_policy=retry_policy, clock=clock
    )


@pytest.fixture
def workers(queue, orchestrator, registry, notifications, delivery_logs, retry_policy):
    return DispatchWorkerPool(
        queue,
        orchestrator,
        registry,
        notifications,
        delivery_logs,
        concurrency=2,
        retry_policy=retry_policy,
        poll_interval=0.01,
        stop_timeout=1.0,
    )
