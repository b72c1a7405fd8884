"""Composition root: build a fully wired dispatcher from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .adapters.memory import (
    InMemoryDeliveryLogStore,
    InMemoryNotificationStore,
    InMemoryTemplateStore,
)
from .channels import (
    ChannelRegistry,
    ConsoleChannel,
    SmtpEmailChannel,
    TwilioSmsChannel,
    WebhookChannel,
)
from .config import DispatchSettings
from .delivery_logs import DeliveryLogService
from .orchestrator import NotificationOrchestrator
from .queue import InMemoryDispatchQueue, RedisDispatchQueue, RetryPolicy
from .worker import DispatchWorkerPool

if TYPE_CHECKING:
    from .ports.channel import IChannel
    from .ports.queue import IDispatchQueue
    from .ports.stores import IDeliveryLogStore, INotificationStore, ITemplateStore

logger = logging.getLogger("notification_dispatch.bootstrap")


@dataclass
class Dispatcher:
    """Every component of one dispatch process, explicitly wired."""

    settings: DispatchSettings
    queue: IDispatchQueue
    registry: ChannelRegistry
    templates: ITemplateStore
    notifications: INotificationStore
    delivery_logs: IDeliveryLogStore
    orchestrator: NotificationOrchestrator
    workers: DispatchWorkerPool
    log_service: DeliveryLogService

    async def close(self) -> None:
        await self.workers.stop()
        for name in self.registry.list():
            close = getattr(self.registry.get(name), "close", None)
            if close is not None:
                await close()
        await self.queue.close()


def build_retry_policy(settings: DispatchSettings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.max_attempts,
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
        jitter=settings.retry_jitter,
        strategy=settings.retry_strategy,
    )


def build_queue(settings: DispatchSettings) -> IDispatchQueue:
    if settings.backend == "redis":
        from redis.asyncio import Redis

        client = Redis.from_url(settings.redis_url)
        return RedisDispatchQueue(
            client,
            prefix=settings.redis_prefix,
            poll_interval=min(settings.poll_interval, 0.5),
            lease_timeout=settings.lease_timeout,
        )
    return InMemoryDispatchQueue(lease_timeout=settings.lease_timeout)


def build_channels(settings: DispatchSettings) -> list[IChannel]:
    """Instantiate each channel whose settings are complete."""
    channels: list[IChannel] = []
    smtp = settings.smtp
    if smtp.enabled:
        channels.append(
            SmtpEmailChannel(
                str(smtp.host),
                smtp.port,
                smtp.username,
                smtp.password.get_secret_value() if smtp.password else None,
                use_tls=smtp.use_tls,
                start_tls=smtp.start_tls,
                timeout=smtp.timeout,
                from_email=smtp.from_email,
                from_name=smtp.from_name,
            )
        )
    twilio = settings.twilio
    if twilio.enabled and twilio.auth_token is not None:
        channels.append(
            TwilioSmsChannel(
                str(twilio.account_sid),
                twilio.auth_token.get_secret_value(),
                str(twilio.from_number),
            )
        )
    webhook = settings.webhook
    if webhook.enabled:
        channels.append(
            WebhookChannel(
                secret=webhook.secret.get_secret_value() if webhook.secret else None,
                timeout=webhook.timeout,
            )
        )
    if settings.console_channel:
        channels.append(ConsoleChannel())
    return channels


def build_dispatcher(
    settings: DispatchSettings | None = None,
    *,
    templates: ITemplateStore | None = None,
    notifications: INotificationStore | None = None,
    delivery_logs: IDeliveryLogStore | None = None,
    channels: list[IChannel] | None = None,
    queue: IDispatchQueue | None = None,
) -> Dispatcher:
    """Wire queue, stores, registry, orchestrator and worker pool.

    Stores default to the in-memory adapters; pass real implementations
    for anything beyond a single process. ``channels`` replaces the
    channels derived from settings.
    """
    settings = settings or DispatchSettings()
    retry_policy = build_retry_policy(settings)
    queue = queue or build_queue(settings)
    templates = templates or InMemoryTemplateStore()
    notifications = notifications or InMemoryNotificationStore()
    delivery_logs = delivery_logs or InMemoryDeliveryLogStore()

    registry = ChannelRegistry(channels if channels is not None else build_channels(settings))
    registry.freeze()
    if not len(registry):
        logger.warning("No channel configured; every job will fail with ChannelNotFound")

    orchestrator = NotificationOrchestrator(
        templates, notifications, queue, retry_policy=retry_policy
    )
    workers = DispatchWorkerPool(
        queue,
        orchestrator,
        registry,
        notifications,
        delivery_logs,
        concurrency=settings.concurrency,
        retry_policy=retry_policy,
        poll_interval=settings.poll_interval,
        stop_timeout=settings.stop_timeout,
    )
    return Dispatcher(
        settings=settings,
        queue=queue,
        registry=registry,
        templates=templates,
        notifications=notifications,
        delivery_logs=delivery_logs,
        orchestrator=orchestrator,
        workers=workers,
        log_service=DeliveryLogService(delivery_logs),
    )
