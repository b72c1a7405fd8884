"""Exception hierarchy for the notification dispatch pipeline.

Two families matter to callers:

- ``DispatchValidationError``: raised synchronously by ``send`` and ``prepare``;
  never retried.
- ``DeliveryError``: raised (or recorded) while a worker executes a job;
  caught by the worker, logged as a ``failed`` delivery, and fed to the
  retry policy.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime


class NotificationDispatchError(Exception):
    """Root exception for the whole package."""


# ── Validation class ────────────────────────────────────────────────


class DispatchValidationError(NotificationDispatchError):
    """Base class for errors surfaced synchronously to the caller of ``send``."""


class TemplateNotFoundError(DispatchValidationError):
    """Raised when no template is stored under the requested name."""

    def __init__(self, template_name: str) -> None:
        self.template_name = template_name
        super().__init__(f'Template "{template_name}" not found')


class ChannelMismatchError(DispatchValidationError):
    """Raised when a template's native channel is not among the requested ones."""

    def __init__(self, template_channel: str, channels: Iterable[str]) -> None:
        self.template_channel = template_channel
        self.channels = list(channels)
        super().__init__(
            f'Template channel "{template_channel}" not in requested channels '
            f"({', '.join(self.channels)})"
        )


class ValidationFailedError(DispatchValidationError):
    """Aggregated validation failure carrying every message in order."""

    def __init__(self, errors: Iterable[str]) -> None:
        self.errors = list(errors)
        super().__init__(f"Validation failed: {', '.join(self.errors)}")


class MissingVariablesError(ValidationFailedError):
    """Raised when required template variables are absent from the context."""

    def __init__(self, missing: Iterable[str]) -> None:
        self.missing = list(missing)
        super().__init__([f"Missing variables: {', '.join(self.missing)}"])


class ScheduleInPastError(DispatchValidationError):
    """Raised when a scheduled instant is not strictly in the future."""

    def __init__(self, scheduled_for: datetime, now: datetime) -> None:
        self.scheduled_for = scheduled_for
        self.now = now
        super().__init__(
            f"Scheduled time must be in the future "
            f"(scheduled_for={scheduled_for.isoformat()}, now={now.isoformat()})"
        )


# ── Execution class ─────────────────────────────────────────────────


class DeliveryError(NotificationDispatchError):
    """Base class for errors raised while executing a delivery job."""


class ChannelNotFoundError(DeliveryError):
    """Raised when a channel name is not registered."""

    def __init__(self, channel: str) -> None:
        self.channel = channel
        super().__init__(f'Channel "{channel}" not found')


class InvalidRecipientError(DeliveryError):
    """Raised when a channel refuses the recipient."""

    def __init__(self, channel: str, reason: str | None = None) -> None:
        self.channel = channel
        self.reason = reason
        msg = f"Invalid recipient for channel {channel}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ChannelUnavailableError(DeliveryError):
    """Raised when a channel reports that its transport is unreachable."""

    def __init__(self, channel: str) -> None:
        self.channel = channel
        super().__init__(f"Channel {channel} is currently unavailable")


class DeliveryFailedError(DeliveryError):
    """Raised when a channel reports a structured (non-exceptional) failure."""

    def __init__(self, channel: str, reason: str | None) -> None:
        self.channel = channel
        self.reason = reason or "unknown error"
        super().__init__(f"Failed to deliver via {channel}: {self.reason}")


class RetriesExhaustedError(DeliveryError):
    """Raised by the queue when a failed job has no attempts left."""

    def __init__(self, job_id: str, attempts_made: int, max_attempts: int) -> None:
        self.job_id = job_id
        self.attempts_made = attempts_made
        self.max_attempts = max_attempts
        super().__init__(
            f"Job {job_id} exhausted its retries ({attempts_made}/{max_attempts})"
        )


# ── Support errors ──────────────────────────────────────────────────


class TemplateRenderError(NotificationDispatchError):
    """Raised when a template cannot be rendered (syntax or undefined value)."""


class JobNotFoundError(NotificationDispatchError):
    """Raised when the queue does not know the given job id."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job {job_id!r} not found")


class JobStateError(NotificationDispatchError):
    """Raised when a queue operation does not fit the job's current state."""


class LeaseLostError(JobStateError):
    """Raised on ack/retry by a holder whose lease is no longer current.

    The job was re-admitted after its lease timed out (and possibly leased
    again), or it already finished.
    """

    def __init__(self, job_id: str, lease_id: str | None) -> None:
        self.job_id = job_id
        self.lease_id = lease_id
        super().__init__(f"Job {job_id} is no longer held under lease {lease_id}")


class NotificationStateError(NotificationDispatchError):
    """Raised when a notification status transition is not allowed."""


class ChannelRegistrationError(NotificationDispatchError):
    """Raised on duplicate channel names or writes to a frozen registry."""


class QueueBackendError(NotificationDispatchError):
    """Raised when the queue's storage backend fails technically."""
