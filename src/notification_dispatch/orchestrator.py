"""NotificationOrchestrator — validate, render and fan out send requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, field_validator

from .channels.validation import RECIPIENT_REQUIREMENTS
from .domain.job import Job, JobPayload
from .domain.notification import Notification, NotificationStatus
from .domain.values import (
    ContextData,
    Priority,
    Recipient,
    as_utc,
    merge_context,
    unique_channels,
)
from .exceptions import (
    ChannelMismatchError,
    MissingVariablesError,
    ScheduleInPastError,
    TemplateNotFoundError,
    TemplateRenderError,
    ValidationFailedError,
)
from .queue.retry import RetryPolicy
from .rendering.jinja import JinjaTemplateRenderer

if TYPE_CHECKING:
    from collections.abc import Callable

    from .domain.template import Template
    from .ports.queue import IDispatchQueue, QueueStats
    from .ports.renderer import ITemplateRenderer
    from .ports.stores import INotificationStore, ITemplateStore

logger = logging.getLogger("notification_dispatch.orchestrator")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _authored_channels(request: SendRequest, template: Template) -> list[str]:
    channels = request.resolve_channels(template)
    if template.channel not in channels:
        raise ChannelMismatchError(template.channel, channels)
    return channels


class SendRequest(BaseModel):
    """Inbound request to deliver a template to one recipient.

    ``channels=None`` (or an empty list) means the template's own channel.
    """

    template_name: str
    recipient: Recipient
    data: ContextData = Field(default_factory=dict)
    channels: list[str] | None = None
    priority: Priority = Priority.NORMAL
    scheduled_for: datetime | None = None

    @field_validator("channels")
    @classmethod
    def _collapse_channels(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return unique_channels(value) or None

    @field_validator("scheduled_for")
    @classmethod
    def _aware_schedule(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None

    def resolve_channels(self, template: Template) -> list[str]:
        return self.channels or [template.channel]


@dataclass(frozen=True)
class ValidationOutcome:
    """Verdict of :meth:`NotificationOrchestrator.validate`."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    missing_variables: list[str] = field(default_factory=list)
    template_found: bool = True


@dataclass(frozen=True)
class ProcessedNotification:
    """Rendered content plus the resolved routing of a request."""

    template: Template
    recipient: Recipient
    subject: str | None
    body: str
    channels: list[str]
    priority: Priority
    scheduled_for: datetime | None = None


@dataclass(frozen=True)
class SendReceipt:
    """Acknowledgment returned by :meth:`NotificationOrchestrator.send`."""

    id: str
    job_ids: list[str]
    status: NotificationStatus
    queued_at: datetime


class NotificationOrchestrator:
    """
    Intake side of the pipeline.

    ``send`` validates a request, persists a ``Notification`` and submits
    one ``Job`` per requested channel. ``prepare`` is also used by workers
    to re-render each job from its own payload.

    Example::

        orchestrator = NotificationOrchestrator(templates, notifications, queue)
        receipt = await orchestrator.send(
            SendRequest(
                template_name="welcome",
                recipient=Recipient(email="a@b.com", name="Ana"),
                data={"code": "123"},
            )
        )
    """

    def __init__(
        self,
        templates: ITemplateStore,
        notifications: INotificationStore,
        queue: IDispatchQueue,
        *,
        renderer: ITemplateRenderer | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._templates = templates
        self._notifications = notifications
        self._queue = queue
        self._renderer = renderer or JinjaTemplateRenderer()
        self._retry_policy = retry_policy or RetryPolicy()
        self._clock = clock or _utcnow

    # -- queries ----------------------------------------------------------

    async def validate(self, request: SendRequest) -> ValidationOutcome:
        """Check a request without side effects. Never raises for bad input.

        All problems are collected in order: recipient fields first, then
        missing template variables.
        """
        template = await self._templates.find_by_name(request.template_name)
        if template is None:
            return ValidationOutcome(
                valid=False,
                errors=[str(TemplateNotFoundError(request.template_name))],
                template_found=False,
            )

        errors: list[str] = []
        channels = request.resolve_channels(template)
        for channel in channels:
            requirement = RECIPIENT_REQUIREMENTS.get(channel)
            if requirement is not None and not getattr(request.recipient, requirement[0]):
                errors.append(requirement[1])

        context = merge_context(request.recipient, request.data)
        missing: list[str] = []
        try:
            missing = self._renderer.missing_variables(
                template.subject, template.body, context, template.variables
            )
        except TemplateRenderError as exc:
            errors.append(str(exc))
        if missing:
            errors.append(f"Missing variables: {', '.join(missing)}")

        return ValidationOutcome(
            valid=not errors, errors=errors, missing_variables=missing
        )

    async def prepare(self, request: SendRequest) -> ProcessedNotification:
        """Resolve the template and render subject and body.

        Raises:
            TemplateNotFoundError: if the template does not exist.
            ChannelMismatchError: if the template's channel is not requested.
            MissingVariablesError: if required variables are absent or empty.
            TemplateRenderError: if the template cannot be rendered.
        """
        template = await self._templates.find_by_name(request.template_name)
        if template is None:
            raise TemplateNotFoundError(request.template_name)

        channels = _authored_channels(request, template)

        context = merge_context(request.recipient, request.data)
        missing = self._renderer.missing_variables(
            template.subject, template.body, context, template.variables
        )
        if missing:
            raise MissingVariablesError(missing)

        subject = (
            self._renderer.render(template.subject, context) if template.subject else None
        )
        body = self._renderer.render(template.body, context)
        return ProcessedNotification(
            template=template,
            recipient=request.recipient,
            subject=subject,
            body=body,
            channels=channels,
            priority=request.priority,
            scheduled_for=request.scheduled_for,
        )

    async def get_job(self, job_id: str) -> Job | None:
        return await self._queue.get_job(job_id)

    async def get_stats(self) -> QueueStats:
        return await self._queue.stats()

    # -- commands ---------------------------------------------------------

    async def send(self, request: SendRequest) -> SendReceipt:
        """Accept a request and fan it out into one job per channel.

        Raises:
            TemplateNotFoundError: if the template does not exist.
            MissingVariablesError: if missing variables are the only problem.
            ValidationFailedError: for any other combination of problems.
            ChannelMismatchError: if the template's channel is not requested.
            ScheduleInPastError: if ``scheduled_for`` is not in the future.
        """
        outcome = await self.validate(request)
        if not outcome.valid:
            if not outcome.template_found:
                raise TemplateNotFoundError(request.template_name)
            if outcome.missing_variables and len(outcome.errors) == 1:
                raise MissingVariablesError(outcome.missing_variables)
            raise ValidationFailedError(outcome.errors)

        template = await self._templates.find_by_name(request.template_name)
        if template is None:
            raise TemplateNotFoundError(request.template_name)
        channels = _authored_channels(request, template)

        scheduled_for = request.scheduled_for
        if scheduled_for is not None:
            now = self._clock()
            if scheduled_for <= now:
                raise ScheduleInPastError(scheduled_for, now)

        notification = Notification(
            template_name=template.name,
            template_id=template.id,
            recipient=request.recipient,
            data=request.data,
            channels=channels,
            priority=request.priority,
            status=(
                NotificationStatus.PENDING
                if scheduled_for is not None
                else NotificationStatus.QUEUED
            ),
            scheduled_for=scheduled_for,
            metadata={"template_name": template.name},
        )
        await self._notifications.create(notification)

        job_ids = await self._fan_out(notification)
        await self._notifications.attach_jobs(notification.id, job_ids)

        logger.info(
            "Notification %s accepted: %d job(s) on %s (%s)",
            notification.id,
            len(job_ids),
            ", ".join(notification.channels),
            notification.status.value,
        )
        return SendReceipt(
            id=notification.id,
            job_ids=job_ids,
            status=notification.status,
            queued_at=notification.created_at,
        )

    async def _fan_out(self, notification: Notification) -> list[str]:
        payload = JobPayload(
            template_name=notification.template_name,
            recipient=notification.recipient,
            data=notification.data,
            channels=notification.channels,
            priority=notification.priority,
        )
        job_ids: list[str] = []
        try:
            for channel in notification.channels:
                job = Job.for_channel(
                    notification.id,
                    channel,
                    payload,
                    max_attempts=self._retry_policy.max_attempts,
                )
                if notification.scheduled_for is not None:
                    await self._queue.schedule_at(job, notification.scheduled_for)
                else:
                    await self._queue.enqueue(job)
                job_ids.append(job.id)
        except Exception:
            # Partial fan-out: withdraw what was submitted and close the notification
            logger.exception("Fan-out failed for notification %s", notification.id)
            for job_id in job_ids:
                await self._queue.remove(job_id)
            await self._notifications.update_status(
                notification.id, NotificationStatus.CANCELLED
            )
            raise
        return job_ids

    async def cancel(self, notification_id: str) -> Notification | None:
        """Cancel a notification and drop its jobs that were not leased yet.

        Jobs already leased finish as ``cancelled`` deliveries in the worker.
        Returns ``None`` when the notification does not exist.

        Raises:
            NotificationStateError: if the notification is already sent or failed.
        """
        notification = await self._notifications.update_status(
            notification_id, NotificationStatus.CANCELLED
        )
        if notification is None:
            return None
        removed = 0
        for job_id in notification.job_ids:
            if await self._queue.remove(job_id):
                removed += 1
        logger.info(
            "Notification %s cancelled (%d of %d job(s) withdrawn)",
            notification_id,
            removed,
            len(notification.job_ids),
        )
        return notification
