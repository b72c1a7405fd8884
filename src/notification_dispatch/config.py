"""Settings for wiring a dispatcher from the environment.

Every component also takes plain constructor arguments; these settings are
only read by :func:`notification_dispatch.bootstrap.build_dispatcher` and
the CLI.

Environment variables use the ``DISPATCH_`` prefix; nested groups use
``__`` (e.g. ``DISPATCH_SMTP__HOST=smtp.example.com``).
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .queue.retry import BackoffStrategy


class SmtpSettings(BaseModel):
    """SMTP transport for the ``email`` channel."""

    host: str | None = None
    port: int = Field(default=587, ge=1, le=65535)
    username: str | None = None
    password: SecretStr | None = None
    use_tls: bool = False
    start_tls: bool | None = None
    timeout: float = Field(default=10.0, gt=0)
    from_email: str = "noreply@example.com"
    from_name: str = "Unified Notifications"

    @property
    def enabled(self) -> bool:
        return bool(self.host)


class TwilioSettings(BaseModel):
    """Twilio credentials for the ``sms`` channel."""

    account_sid: str | None = None
    auth_token: SecretStr | None = None
    from_number: str | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)


class WebhookSettings(BaseModel):
    """Outbound webhook channel."""

    enabled: bool = False
    secret: SecretStr | None = None
    timeout: float = Field(default=10.0, gt=0)


class DispatchSettings(BaseSettings):
    """Configuration for queue, workers, retry policy and channels.

    Attributes:
        concurrency: Number of concurrent worker executors.
        poll_interval: Seconds an idle executor waits on ``lease``.
        lease_timeout: Seconds before an unacknowledged job is re-admitted
            (``None`` disables stalled-job recovery).
        max_attempts: Attempts per job, including the first.
        retry_base_delay: Delay in seconds before the first retry.
        retry_max_delay: Cap on retry delay in seconds.
        retry_jitter: Multiply delays by a random factor in [0.5, 1.5].
        retry_strategy: ``exponential`` or ``fixed`` backoff.
        backend: ``memory`` (single process) or ``redis`` (shared, durable).
        redis_url: Connection URL for the ``redis`` backend.
        redis_prefix: Key prefix for the ``redis`` backend.
        console_channel: Register a console channel (development).
    """

    # ─────────────────────────────────────────────────────
    # Workers
    # ─────────────────────────────────────────────────────
    concurrency: int = Field(default=4, ge=1, le=256)
    poll_interval: float = Field(default=1.0, gt=0)
    lease_timeout: float | None = Field(default=300.0, gt=0)
    stop_timeout: float = Field(default=30.0, gt=0)

    # ─────────────────────────────────────────────────────
    # Retry policy
    # ─────────────────────────────────────────────────────
    max_attempts: int = Field(default=3, ge=1, le=50)
    retry_base_delay: float = Field(default=2.0, ge=0)
    retry_max_delay: float = Field(default=300.0, ge=0)
    retry_jitter: bool = True
    retry_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL

    # ─────────────────────────────────────────────────────
    # Queue backend
    # ─────────────────────────────────────────────────────
    backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    redis_prefix: str = "dispatch"

    # ─────────────────────────────────────────────────────
    # Channels
    # ─────────────────────────────────────────────────────
    smtp: SmtpSettings = Field(default_factory=SmtpSettings)
    twilio: TwilioSettings = Field(default_factory=TwilioSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    console_channel: bool = False

    model_config = SettingsConfigDict(
        env_prefix="DISPATCH_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def _retry_delays_ordered(self) -> DispatchSettings:
        if self.retry_base_delay > self.retry_max_delay:
            raise ValueError("retry_base_delay must be <= retry_max_delay")
        return self
