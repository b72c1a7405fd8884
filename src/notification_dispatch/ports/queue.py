"""IDispatchQueue — port for the priority- and delay-aware job queue."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime

    from ..domain.job import Job, JobState


@dataclass(frozen=True)
class QueueStats:
    """Snapshot of job counts per queue state.

    The states are mutually exclusive, so ``total`` is the number of jobs the
    queue currently knows about.
    """

    waiting: int = 0
    active: int = 0
    scheduled: int = 0
    completed: int = 0
    failed: int = 0
    paused: bool = False

    @property
    def total(self) -> int:
        return self.waiting + self.active + self.scheduled + self.completed + self.failed

    def as_dict(self) -> dict[str, int | bool]:
        return {
            "waiting": self.waiting,
            "active": self.active,
            "scheduled": self.scheduled,
            "completed": self.completed,
            "failed": self.failed,
            "total": self.total,
            "paused": self.paused,
        }


@runtime_checkable
class IDispatchQueue(Protocol):
    """Holding area for jobs, decoupling submission from execution.

    Eligible jobs are leased in ascending priority weight, ties broken by
    submission order. A scheduled job is never leased before its
    ``ready_at``. ``lease`` is atomic: two concurrent callers never receive
    the same job.

    ``InMemoryDispatchQueue`` serves tests and single-process deployments;
    ``RedisDispatchQueue`` is shared across processes.
    """

    async def enqueue(self, job: Job) -> str:
        """Admit a job as immediately eligible and return its id."""
        ...

    async def schedule_at(self, job: Job, when: datetime) -> str:
        """Admit a job that becomes eligible at ``when``.

        Raises:
            ScheduleInPastError: if ``when`` is not after the current time.
        """
        ...

    async def lease(self, timeout: float | None = None) -> Job | None:
        """Claim the best eligible job.

        Waits up to ``timeout`` seconds for one to appear (``None`` or ``0``
        returns immediately). Returns ``None`` when nothing is eligible or
        the queue is paused. The returned job carries a fresh ``lease_id``.
        """
        ...

    async def ack(self, job_id: str, lease_id: str | None) -> None:
        """Mark a leased job as completed.

        Raises:
            LeaseLostError: if ``lease_id`` is not the job's current lease.
        """
        ...

    async def retry(self, job_id: str, delay: float, lease_id: str | None) -> Job:
        """Re-admit a leased job after ``delay`` seconds.

        Increments ``attempts_made``. Returns the re-admitted job.

        Raises:
            LeaseLostError: if ``lease_id`` is not the job's current lease.
            RetriesExhaustedError: when the job has used all of its attempts;
                the job is moved to ``failed`` before raising.
        """
        ...

    async def stats(self) -> QueueStats:
        """Return counts per state."""
        ...

    async def pause(self) -> None:
        """Stop ``lease`` from returning work. Existing jobs are kept."""
        ...

    async def resume(self) -> None:
        """Undo ``pause``."""
        ...

    async def is_paused(self) -> bool:
        ...

    async def get_job(self, job_id: str) -> Job | None:
        """Return the job with its current state, or ``None`` if unknown."""
        ...

    async def remove(self, job_id: str) -> bool:
        """Drop a job that has not been leased. Returns ``False`` otherwise."""
        ...

    async def clean(self, grace: float, state: JobState | None = None) -> int:
        """Purge completed/failed jobs finished more than ``grace`` seconds ago.

        ``state`` restricts the purge to one of the two terminal states.
        Returns the number of purged jobs.
        """
        ...

    async def close(self) -> None:
        """Release backend resources."""
        ...
