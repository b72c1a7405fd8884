"""Asynchronous notification dispatch: templates, priority queue, workers, delivery logs."""

from __future__ import annotations

from .bootstrap import Dispatcher, build_dispatcher
from .channels import (
    ChannelRegistry,
    ConsoleChannel,
    InMemoryChannel,
    SmtpEmailChannel,
    TwilioSmsChannel,
    WebhookChannel,
)
from .config import DispatchSettings
from .delivery_logs import ChannelStats, DeliveryLogService, DeliveryStats, TimelineBucket
from .domain import (
    DeliveryLog,
    DeliveryStatus,
    Job,
    JobPayload,
    JobState,
    Notification,
    NotificationStatus,
    Priority,
    Recipient,
    Template,
)
from .exceptions import (
    ChannelMismatchError,
    ChannelNotFoundError,
    ChannelUnavailableError,
    DeliveryError,
    DeliveryFailedError,
    DispatchValidationError,
    InvalidRecipientError,
    LeaseLostError,
    MissingVariablesError,
    NotificationDispatchError,
    RetriesExhaustedError,
    ScheduleInPastError,
    TemplateNotFoundError,
    ValidationFailedError,
)
from .orchestrator import (
    NotificationOrchestrator,
    ProcessedNotification,
    SendReceipt,
    SendRequest,
    ValidationOutcome,
)
from .ports import IChannel, IDispatchQueue, QueueStats, SendParams, SendResult
from .queue import InMemoryDispatchQueue, RedisDispatchQueue, RetryPolicy
from .rendering import JinjaTemplateRenderer
from .sanitization import MetadataSanitizer
from .worker import DispatchWorkerPool, JobOutcome

__all__ = [
    "ChannelMismatchError",
    "ChannelNotFoundError",
    "ChannelRegistry",
    "ChannelStats",
    "ChannelUnavailableError",
    "ConsoleChannel",
    "DeliveryError",
    "DeliveryFailedError",
    "DeliveryLog",
    "DeliveryLogService",
    "DeliveryStats",
    "DeliveryStatus",
    "DispatchSettings",
    "DispatchValidationError",
    "DispatchWorkerPool",
    "Dispatcher",
    "IChannel",
    "IDispatchQueue",
    "InMemoryChannel",
    "InMemoryDispatchQueue",
    "InvalidRecipientError",
    "JinjaTemplateRenderer",
    "Job",
    "JobOutcome",
    "JobPayload",
    "JobState",
    "LeaseLostError",
    "MetadataSanitizer",
    "MissingVariablesError",
    "Notification",
    "NotificationDispatchError",
    "NotificationOrchestrator",
    "NotificationStatus",
    "Priority",
    "ProcessedNotification",
    "QueueStats",
    "Recipient",
    "RedisDispatchQueue",
    "RetriesExhaustedError",
    "RetryPolicy",
    "ScheduleInPastError",
    "SendParams",
    "SendReceipt",
    "SendRequest",
    "SendResult",
    "SmtpEmailChannel",
    "Template",
    "TemplateNotFoundError",
    "TimelineBucket",
    "TwilioSmsChannel",
    "ValidationFailedError",
    "ValidationOutcome",
    "WebhookChannel",
    "build_dispatcher",
]
