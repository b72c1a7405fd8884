"""InMemoryDispatchQueue — asyncio-safe queue for tests and single-process use."""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from ..domain.job import Job, JobState
from ..exceptions import (
    JobNotFoundError,
    JobStateError,
    LeaseLostError,
    QueueBackendError,
    RetriesExhaustedError,
    ScheduleInPastError,
)
from ..ports.queue import IDispatchQueue, QueueStats

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger("notification_dispatch.queue")

_TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryDispatchQueue(IDispatchQueue):
    """
    Heap-backed implementation of :class:`IDispatchQueue`.

    Two heaps hold the pending work:

    - ``_ready``: ``(priority_weight, seq, job_id)`` for eligible jobs;
    - ``_delayed``: ``(ready_at, seq, job_id)`` for scheduled or backed-off
      jobs, promoted into ``_ready`` once due.

    ``_active`` indexes the leased jobs for stalled-lease recovery. Each lease
    stamps a new ``lease_id``; ``ack`` and ``retry`` from a holder whose
    lease was recovered raise ``LeaseLostError``.

    ``seq`` is assigned once at submission and kept across retries, so FIFO
    order within a priority tier reflects the original submission. Heap
    entries for removed jobs are skipped lazily. All state lives behind one
    ``asyncio.Lock``; nothing awaits I/O while holding it.

    Args:
        clock: Returns the current aware UTC time. Injected by tests.
        lease_timeout: Seconds after which an active job that was neither
            acked nor retried is put back as eligible. ``None`` disables
            stalled-job recovery.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] | None = None,
        lease_timeout: float | None = None,
    ) -> None:
        self._clock = clock or _utcnow
        self._lease_timeout = lease_timeout
        self._jobs: dict[str, Job] = {}
        self._seq: dict[str, int] = {}
        self._active: set[str] = set()
        self._ready: list[tuple[int, int, str]] = []
        self._delayed: list[tuple[datetime, int, str]] = []
        self._counter = itertools.count()
        self._lock = asyncio.Lock()
        self._wakeup = asyncio.Event()
        self._paused = False
        self._closed = False

    # ── Submission ───────────────────────────────────────────────────

    async def enqueue(self, job: Job) -> str:
        async with self._lock:
            self._ensure_open()
            now = self._clock()
            stored = self._admit(job, submitted_at=now, ready_at=now)
            heapq.heappush(
                self._ready,
                (stored.priority_weight, self._seq[stored.id], stored.id),
            )
            self._wakeup.set()
        logger.debug(
            "Enqueued job %s (notification=%s channel=%s weight=%d)",
            job.id,
            job.notification_id,
            job.channel,
            job.priority_weight,
        )
        return job.id

    async def schedule_at(self, job: Job, when: datetime) -> str:
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        async with self._lock:
            self._ensure_open()
            now = self._clock()
            if when <= now:
                raise ScheduleInPastError(when, now)
            stored = self._admit(
                job, submitted_at=now, ready_at=when, state=JobState.SCHEDULED
            )
            heapq.heappush(self._delayed, (when, self._seq[stored.id], stored.id))
            self._wakeup.set()
        logger.debug("Scheduled job %s for %s", job.id, when.isoformat())
        return job.id

    def _admit(
        self,
        job: Job,
        *,
        submitted_at: datetime,
        ready_at: datetime,
        state: JobState = JobState.WAITING,
    ) -> Job:
        if job.id in self._jobs:
            raise JobStateError(f"Job {job.id} is already queued")
        stored = job.model_copy(
            update={
                "submitted_at": submitted_at,
                "ready_at": ready_at,
                "state": state,
                "leased_at": None,
                "lease_id": None,
                "finished_at": None,
            }
        )
        self._jobs[stored.id] = stored
        self._seq[stored.id] = next(self._counter)
        return stored

    # ── Leasing ──────────────────────────────────────────────────────

    async def lease(self, timeout: float | None = None) -> Job | None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout else None
        while True:
            async with self._lock:
                job = self._pop_eligible()
                if job is not None:
                    return job
                self._wakeup.clear()
                next_due = self._seconds_until_next_due()
            if deadline is None or self._closed:
                return None
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            wait = remaining if next_due is None else min(next_due, remaining)
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=max(wait, 0.001))
            except asyncio.TimeoutError:
                pass

    def _pop_eligible(self) -> Job | None:
        if self._paused or self._closed:
            return None
        now = self._clock()
        self._recover_stalled(now)
        self._promote_due(now)
        while self._ready:
            _, _, job_id = heapq.heappop(self._ready)
            job = self._jobs.get(job_id)
            if job is None or job.state is not JobState.WAITING:
                continue
            leased = job.model_copy(
                update={
                    "state": JobState.ACTIVE,
                    "leased_at": now,
                    "lease_id": uuid.uuid4().hex,
                }
            )
            self._jobs[job_id] = leased
            self._active.add(job_id)
            return leased.model_copy()
        return None

    def _promote_due(self, now: datetime) -> None:
        while self._delayed and self._delayed[0][0] <= now:
            ready_at, seq, job_id = heapq.heappop(self._delayed)
            job = self._jobs.get(job_id)
            if (
                job is None
                or job.state is not JobState.SCHEDULED
                or job.ready_at != ready_at
            ):
                continue
            self._jobs[job_id] = job.model_copy(update={"state": JobState.WAITING})
            heapq.heappush(self._ready, (job.priority_weight, seq, job_id))

    def _recover_stalled(self, now: datetime) -> None:
        if self._lease_timeout is None or not self._active:
            return
        cutoff = now - timedelta(seconds=self._lease_timeout)
        for job_id in list(self._active):
            job = self._jobs[job_id]
            if job.leased_at is None or job.leased_at > cutoff:
                continue
            logger.warning(
                "Job %s stalled (leased at %s), re-admitting",
                job_id,
                job.leased_at.isoformat(),
            )
            self._active.discard(job_id)
            self._jobs[job_id] = job.model_copy(
                update={"state": JobState.WAITING, "leased_at": None, "lease_id": None}
            )
            heapq.heappush(
                self._ready, (job.priority_weight, self._seq[job_id], job_id)
            )

    def _seconds_until_next_due(self) -> float | None:
        if not self._delayed:
            return None
        return max((self._delayed[0][0] - self._clock()).total_seconds(), 0.0)

    # ── Completion ───────────────────────────────────────────────────

    async def ack(self, job_id: str, lease_id: str | None) -> None:
        async with self._lock:
            job = self._release(job_id, lease_id)
            self._jobs[job_id] = job.model_copy(
                update={
                    "state": JobState.COMPLETED,
                    "attempts_made": job.attempts_made + 1,
                    "finished_at": self._clock(),
                    "lease_id": None,
                }
            )
        logger.debug("Acked job %s", job_id)

    async def retry(self, job_id: str, delay: float, lease_id: str | None) -> Job:
        async with self._lock:
            job = self._release(job_id, lease_id)
            now = self._clock()
            attempts = job.attempts_made + 1
            if attempts >= job.max_attempts:
                self._jobs[job_id] = job.model_copy(
                    update={
                        "state": JobState.FAILED,
                        "attempts_made": attempts,
                        "finished_at": now,
                        "lease_id": None,
                    }
                )
                raise RetriesExhaustedError(job_id, attempts, job.max_attempts)

            ready_at = now + timedelta(seconds=max(delay, 0.0))
            seq = self._seq[job_id]
            if delay > 0:
                state = JobState.SCHEDULED
                heapq.heappush(self._delayed, (ready_at, seq, job_id))
            else:
                state = JobState.WAITING
                heapq.heappush(self._ready, (job.priority_weight, seq, job_id))
            retried = job.model_copy(
                update={
                    "state": state,
                    "attempts_made": attempts,
                    "ready_at": ready_at,
                    "leased_at": None,
                    "lease_id": None,
                }
            )
            self._jobs[job_id] = retried
            self._wakeup.set()
        logger.debug(
            "Job %s re-admitted after %.2fs (attempt %d/%d)",
            job_id,
            delay,
            attempts,
            job.max_attempts,
        )
        return retried.model_copy()

    def _release(self, job_id: str, lease_id: str | None) -> Job:
        """Return the active job held under ``lease_id`` and drop its lease."""
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.state is not JobState.ACTIVE or job.lease_id != lease_id:
            raise LeaseLostError(job_id, lease_id)
        self._active.discard(job_id)
        return job

    # ── Introspection & admin ────────────────────────────────────────

    async def stats(self) -> QueueStats:
        async with self._lock:
            self._promote_due(self._clock())
            counts = dict.fromkeys(JobState, 0)
            for job in self._jobs.values():
                counts[job.state] += 1
            return QueueStats(
                waiting=counts[JobState.WAITING],
                active=counts[JobState.ACTIVE],
                scheduled=counts[JobState.SCHEDULED],
                completed=counts[JobState.COMPLETED],
                failed=counts[JobState.FAILED],
                paused=self._paused,
            )

    async def pause(self) -> None:
        self._paused = True
        logger.info("Dispatch queue paused")

    async def resume(self) -> None:
        async with self._lock:
            self._paused = False
            self._wakeup.set()
        logger.info("Dispatch queue resumed")

    async def is_paused(self) -> bool:
        return self._paused

    async def get_job(self, job_id: str) -> Job | None:
        async with self._lock:
            self._promote_due(self._clock())
            job = self._jobs.get(job_id)
            return job.model_copy() if job is not None else None

    async def remove(self, job_id: str) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.state not in (JobState.WAITING, JobState.SCHEDULED):
                return False
            del self._jobs[job_id]
            del self._seq[job_id]
        logger.debug("Removed job %s", job_id)
        return True

    async def clean(self, grace: float, state: JobState | None = None) -> int:
        if state is not None and state not in _TERMINAL_STATES:
            raise ValueError(f"Only terminal states can be cleaned, got {state.value}")
        states = {state} if state is not None else _TERMINAL_STATES
        async with self._lock:
            cutoff = self._clock() - timedelta(seconds=grace)
            purged = [
                job_id
                for job_id, job in self._jobs.items()
                if job.state in states
                and job.finished_at is not None
                and job.finished_at <= cutoff
            ]
            for job_id in purged:
                del self._jobs[job_id]
                del self._seq[job_id]
        if purged:
            logger.info("Cleaned %d finished jobs", len(purged))
        return len(purged)

    async def close(self) -> None:
        self._closed = True
        self._wakeup.set()

    def _ensure_open(self) -> None:
        if self._closed:
            raise QueueBackendError("Dispatch queue is closed")

    # --- Test helpers ---

    def clear(self) -> None:
        self._jobs.clear()
        self._seq.clear()
        self._active.clear()
        self._ready.clear()
        self._delayed.clear()
