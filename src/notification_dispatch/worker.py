"""DispatchWorkerPool — concurrent executors that deliver queued jobs."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, Any

from .correlation import correlation_context, get_correlation_id
from .domain.delivery_log import DeliveryLog
from .domain.notification import NotificationStatus
from .exceptions import (
    ChannelUnavailableError,
    DeliveryFailedError,
    InvalidRecipientError,
    LeaseLostError,
    NotificationStateError,
    RetriesExhaustedError,
)
from .orchestrator import SendRequest
from .ports.background_worker import IBackgroundWorker
from .ports.channel import SendParams, SendResult
from .queue.retry import RetryPolicy
from .sanitization import MetadataSanitizer

if TYPE_CHECKING:
    from .channels.registry import ChannelRegistry
    from .domain.job import Job
    from .orchestrator import NotificationOrchestrator
    from .ports.queue import IDispatchQueue
    from .ports.stores import IDeliveryLogStore, INotificationStore

logger = logging.getLogger("notification_dispatch.worker")


class JobOutcome(str, Enum):
    """What happened to a job after one processing pass."""

    SENT = "sent"
    RETRYING = "retrying"
    FAILED = "failed"
    CANCELLED = "cancelled"
    LEASE_LOST = "lease_lost"


class DispatchWorkerPool(IBackgroundWorker):
    """Runs ``concurrency`` executors that lease and deliver jobs.

    Each executor loops: lease a job, process it, ack or retry. The queue's
    lease guarantees that no two executors hold the same job. When a lease
    times out and the job is handed to another executor, the late holder's
    ack or retry is refused and its outcome is discarded (``LEASE_LOST``).

    Per job, in order: append a ``processing`` log, mark the notification
    ``processing``, re-render from the job payload, resolve the channel,
    check the recipient and the channel's availability, send. Success
    appends a ``sent`` log and marks the notification ``sent``; any failure
    (structured or raised) appends a ``failed`` log and retries with the
    policy's backoff, marking the notification ``failed`` once retries are
    exhausted.

    Implements ``IBackgroundWorker`` (``start`` / ``stop``).
    """

    def __init__(
        self,
        queue: IDispatchQueue,
        orchestrator: NotificationOrchestrator,
        registry: ChannelRegistry,
        notifications: INotificationStore,
        delivery_logs: IDeliveryLogStore,
        *,
        concurrency: int = 4,
        retry_policy: RetryPolicy | None = None,
        poll_interval: float = 1.0,
        stop_timeout: float = 30.0,
        sanitizer: MetadataSanitizer | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._queue = queue
        self._orchestrator = orchestrator
        self._registry = registry
        self._notifications = notifications
        self._logs = delivery_logs
        self._concurrency = concurrency
        self._retry_policy = retry_policy or RetryPolicy()
        self._poll_interval = poll_interval
        self._stop_timeout = stop_timeout
        self._sanitizer = sanitizer or MetadataSanitizer()
        self._running = False
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._run_loop(i), name=f"dispatch-worker-{i}")
            for i in range(self._concurrency)
        ]
        logger.info(
            "DispatchWorkerPool started (concurrency=%d, poll_interval=%.1fs)",
            self._concurrency,
            self._poll_interval,
        )

    async def stop(self) -> None:
        """Stop leasing and wait for in-flight jobs up to ``stop_timeout``."""
        if not self._running:
            return
        self._running = False
        tasks, self._tasks = self._tasks, []
        _, pending = await asyncio.wait(tasks, timeout=self._stop_timeout)
        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if pending:
            logger.warning(
                "DispatchWorkerPool stopped with %d executor(s) cancelled mid-job",
                len(pending),
            )
        logger.info("DispatchWorkerPool stopped")

    async def run_once(self) -> JobOutcome | None:
        """Lease and process a single job (useful in tests).

        Returns ``None`` when no job is eligible.
        """
        job = await self._queue.lease()
        if job is None:
            return None
        return await self.process(job)

    async def drain(self, max_jobs: int | None = None) -> int:
        """Process jobs until none is eligible. Returns the number processed."""
        processed = 0
        while max_jobs is None or processed < max_jobs:
            if await self.run_once() is None:
                break
            processed += 1
        return processed

    async def _run_loop(self, index: int) -> None:
        while self._running:
            try:
                job = await self._queue.lease(timeout=self._poll_interval)
                if job is not None:
                    await self.process(job)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Dispatch executor %d error", index)
                await asyncio.sleep(self._poll_interval)

    # -- processing -------------------------------------------------------

    async def process(self, job: Job) -> JobOutcome:
        """Run one delivery attempt for a leased job."""
        with correlation_context(job.notification_id):
            start = time.monotonic()
            outcome = await self._process(job, start)
            self._emit_summary(job, outcome, start)
            return outcome

    async def _process(self, job: Job, start: float) -> JobOutcome:
        attempt = job.next_attempt
        notification = await self._notifications.find_by_id(job.notification_id)
        if notification is not None and notification.is_terminal:
            return await self._drop_cancelled(job, attempt)

        await self._logs.append(
            DeliveryLog.processing(job.notification_id, job.channel, attempt)
        )
        try:
            await self._notifications.update_status(
                job.notification_id, NotificationStatus.PROCESSING
            )
        except NotificationStateError:
            return await self._drop_cancelled(job, attempt)

        try:
            result = await self._deliver(job, attempt)
        except Exception as exc:
            logger.warning(
                "Delivery of job %s via %s raised: %s", job.id, job.channel, exc
            )
            return await self._fail(job, attempt, _elapsed_ms(start), str(exc))

        duration_ms = _elapsed_ms(start)
        response = self._sanitizer.response_of(result)
        if not result.success:
            error = str(DeliveryFailedError(job.channel, result.error))
            return await self._fail(job, attempt, duration_ms, error, response)

        await self._logs.append(
            DeliveryLog.sent(
                job.notification_id, job.channel, attempt, duration_ms, response
            )
        )
        await self._set_status(job, NotificationStatus.SENT)
        try:
            await self._queue.ack(job.id, job.lease_id)
        except LeaseLostError as exc:
            return self._discard(job, exc)
        return JobOutcome.SENT

    async def _deliver(self, job: Job, attempt: int) -> SendResult:
        payload = job.payload
        processed = await self._orchestrator.prepare(
            SendRequest(
                template_name=payload.template_name,
                recipient=payload.recipient,
                data=payload.data,
                channels=payload.channels or [job.channel],
                priority=payload.priority,
            )
        )
        channel = self._registry.get(job.channel)
        if not channel.validate_recipient(processed.recipient):
            raise InvalidRecipientError(job.channel)
        if not await channel.is_available():
            raise ChannelUnavailableError(job.channel)
        return await channel.send(
            SendParams(
                recipient=processed.recipient,
                body=processed.body,
                subject=processed.subject,
                metadata={
                    "notification_id": job.notification_id,
                    "job_id": job.id,
                    "attempt": attempt,
                },
            )
        )

    async def _fail(
        self,
        job: Job,
        attempt: int,
        duration_ms: int,
        error: str,
        response: dict[str, Any] | None = None,
    ) -> JobOutcome:
        await self._logs.append(
            DeliveryLog.failed(
                job.notification_id, job.channel, attempt, duration_ms, error, response
            )
        )
        delay = self._retry_policy.delay_for_attempt(attempt)
        try:
            await self._queue.retry(job.id, delay, job.lease_id)
        except LeaseLostError as exc:
            return self._discard(job, exc)
        except RetriesExhaustedError as exc:
            logger.error("%s; last error: %s", exc, error)
            await self._set_status(job, NotificationStatus.FAILED)
            return JobOutcome.FAILED
        logger.info(
            "Job %s failed attempt %d/%d, retrying in %.2fs",
            job.id,
            attempt,
            job.max_attempts,
            delay,
        )
        return JobOutcome.RETRYING

    async def _drop_cancelled(self, job: Job, attempt: int) -> JobOutcome:
        await self._logs.append(
            DeliveryLog.cancelled(job.notification_id, job.channel, attempt)
        )
        try:
            await self._queue.ack(job.id, job.lease_id)
        except LeaseLostError as exc:
            return self._discard(job, exc)
        logger.info("Job %s dropped: notification %s cancelled", job.id, job.notification_id)
        return JobOutcome.CANCELLED

    @staticmethod
    def _discard(job: Job, exc: LeaseLostError) -> JobOutcome:
        # Another executor holds the job now; its outcome is the one that counts.
        logger.warning("Outcome of job %s discarded: %s", job.id, exc)
        return JobOutcome.LEASE_LOST

    async def _set_status(self, job: Job, status: NotificationStatus) -> None:
        try:
            await self._notifications.update_status(job.notification_id, status)
        except NotificationStateError as exc:
            logger.warning("Status of notification %s not updated: %s", job.notification_id, exc)

    def _emit_summary(self, job: Job, outcome: JobOutcome, start: float) -> None:
        try:
            entry = {
                "job_id": job.id,
                "notification_id": job.notification_id,
                "channel": job.channel,
                "attempt": job.next_attempt,
                "max_attempts": job.max_attempts,
                "outcome": outcome.value,
                "duration_ms": round((time.monotonic() - start) * 1000, 2),
                "correlation_id": get_correlation_id(),
            }
            logger.info(json.dumps(entry))
        except Exception:  # noqa: BLE001
            logger.debug("Failed to emit structured log entry", exc_info=True)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
