"""Tests for RedisDispatchQueue (mocked Redis client)."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import FakeClock, make_job
from redis.exceptions import ConnectionError as RedisConnectionError

from notification_dispatch.domain import Job, JobState, Priority
from notification_dispatch.exceptions import (
    JobNotFoundError,
    JobStateError,
    LeaseLostError,
    QueueBackendError,
    RetriesExhaustedError,
    ScheduleInPastError,
)
from notification_dispatch.queue import RedisDispatchQueue


def _job_hash(job: Job, state: str = "active", **fields: str) -> dict[bytes, bytes]:
    raw = {
        b"data": job.model_dump_json().encode(),
        b"state": state.encode(),
        b"attempts_made": b"0",
    }
    raw.update({k.encode(): v.encode() for k, v in fields.items()})
    return raw


@pytest.fixture
def mock_redis() -> MagicMock:
    redis = MagicMock()
    redis.eval = AsyncMock(return_value=1)
    redis.hgetall = AsyncMock(return_value={})
    redis.zcard = AsyncMock(return_value=0)
    redis.exists = AsyncMock(return_value=0)
    redis.set = AsyncMock()
    redis.delete = AsyncMock()
    redis.ping = AsyncMock()
    redis.aclose = AsyncMock()
    return redis


@pytest.fixture
def redis_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def redis_queue(mock_redis: MagicMock, redis_clock: FakeClock) -> RedisDispatchQueue:
    return RedisDispatchQueue(mock_redis, prefix="test", clock=redis_clock)


@pytest.mark.asyncio
class TestRedisDispatchQueue:
    """Test RedisDispatchQueue with mocks."""

    async def test_enqueue_submits_waiting_job(
        self, redis_queue: RedisDispatchQueue, mock_redis: MagicMock
    ) -> None:
        """Should run the enqueue script with the job's weight and ready time."""
        job = make_job(priority=Priority.HIGH)

        job_id = await redis_queue.enqueue(job)

        assert job_id == job.id
        args = mock_redis.eval.call_args[0]
        assert "ZADD" in args[0]
        assert args[1] == 4
        assert args[2:6] == (
            f"test:job:{job.id}",
            "test:waiting",
            "test:scheduled",
            "test:seq",
        )
        assert args[6] == job.id
        assert Job.model_validate_json(args[7]).id == job.id
        assert args[8] == "1"
        # ready_at == now for an immediate job
        assert args[10] == args[11]

    async def test_duplicate_job_is_rejected(
        self, redis_queue: RedisDispatchQueue, mock_redis: MagicMock
    ) -> None:
        mock_redis.eval.return_value = 0

        with pytest.raises(JobStateError):
            await redis_queue.enqueue(make_job())

    async def test_schedule_at_passes_future_ready_time(
        self,
        redis_queue: RedisDispatchQueue,
        mock_redis: MagicMock,
        redis_clock: FakeClock,
    ) -> None:
        when = redis_clock.now + timedelta(seconds=90)

        await redis_queue.schedule_at(make_job(), when)

        args = mock_redis.eval.call_args[0]
        assert int(args[10]) - int(args[11]) == 90_000

    async def test_schedule_in_past_never_reaches_redis(
        self,
        redis_queue: RedisDispatchQueue,
        mock_redis: MagicMock,
        redis_clock: FakeClock,
    ) -> None:
        with pytest.raises(ScheduleInPastError):
            await redis_queue.schedule_at(make_job(), redis_clock.now)

        mock_redis.eval.assert_not_called()

    async def test_lease_returns_job_from_hash(
        self, redis_queue: RedisDispatchQueue, mock_redis: MagicMock
    ) -> None:
        """Should pop via the lease script and rebuild the job from its hash."""
        job = make_job()
        mock_redis.eval.return_value = job.id.encode()
        mock_redis.hgetall.return_value = _job_hash(
            job,
            "active",
            attempts_made="1",
            leased_at="1704110400000",
            lease_id="lease-1",
        )

        leased = await redis_queue.lease()

        assert leased is not None
        assert leased.id == job.id
        assert leased.state is JobState.ACTIVE
        assert leased.attempts_made == 1
        assert leased.leased_at is not None
        assert leased.leased_at.year == 2024
        assert leased.lease_id == "lease-1"
        script, numkeys, *keys = mock_redis.eval.call_args[0][:6]
        assert "ZRANGE" in script
        assert numkeys == 4
        assert keys == ["test:waiting", "test:scheduled", "test:active", "test:paused"]
        # a fresh lease id is stamped by the script
        assert len(mock_redis.eval.call_args[0][10]) == 32
        mock_redis.hgetall.assert_awaited_with(f"test:job:{job.id}")

    async def test_lease_returns_none_when_empty(
        self, redis_queue: RedisDispatchQueue, mock_redis: MagicMock
    ) -> None:
        mock_redis.eval.return_value = None

        assert await redis_queue.lease() is None
        mock_redis.hgetall.assert_not_called()

    async def test_lease_without_timeout_disables_stall_recovery(
        self, redis_queue: RedisDispatchQueue, mock_redis: MagicMock
    ) -> None:
        mock_redis.eval.return_value = None

        await redis_queue.lease()

        assert mock_redis.eval.call_args[0][8] == ""

    async def test_lease_with_lease_timeout_passes_cutoff(
        self, mock_redis: MagicMock, redis_clock: FakeClock
    ) -> None:
        queue = RedisDispatchQueue(mock_redis, "test", lease_timeout=60, clock=redis_clock)
        mock_redis.eval.return_value = None

        await queue.lease()

        args = mock_redis.eval.call_args[0]
        assert int(args[6]) - int(args[8]) == 60_000

    async def test_lease_polls_until_timeout(
        self, mock_redis: MagicMock, redis_clock: FakeClock
    ) -> None:
        queue = RedisDispatchQueue(mock_redis, "test", poll_interval=0.01, clock=redis_clock)
        mock_redis.eval.return_value = None

        assert await queue.lease(timeout=0.05) is None
        assert mock_redis.eval.await_count >= 2

    async def test_ack(
        self, redis_queue: RedisDispatchQueue, mock_redis: MagicMock
    ) -> None:
        mock_redis.eval.return_value = 1

        await redis_queue.ack("job-1", "lease-1")

        args = mock_redis.eval.call_args[0]
        assert "completed" in args[0]
        assert "lease_id" in args[0]
        assert args[2:5] == ("test:job:job-1", "test:active", "test:completed")
        assert args[7] == "lease-1"

    @pytest.mark.parametrize(
        ("code", "error"), [(-1, JobNotFoundError), (0, JobStateError)]
    )
    async def test_ack_errors(
        self,
        redis_queue: RedisDispatchQueue,
        mock_redis: MagicMock,
        code: int,
        error: type[Exception],
    ) -> None:
        mock_redis.eval.return_value = code

        with pytest.raises(error):
            await redis_queue.ack("job-1", "lease-1")

    async def test_retry_readmits_job(
        self, redis_queue: RedisDispatchQueue, mock_redis: MagicMock
    ) -> None:
        job = make_job()
        mock_redis.eval.return_value = [1, 1]
        mock_redis.hgetall.return_value = _job_hash(job, "scheduled", attempts_made="1")

        retried = await redis_queue.retry(job.id, 2.5, "lease-1")

        assert retried.state is JobState.SCHEDULED
        assert retried.attempts_made == 1
        args = mock_redis.eval.call_args[0]
        assert args[1] == 5
        assert args[9] == "2500"
        assert args[11] == "lease-1"

    async def test_retry_exhausted(
        self, redis_queue: RedisDispatchQueue, mock_redis: MagicMock
    ) -> None:
        job = make_job(max_attempts=3)
        mock_redis.eval.return_value = [2, 3]
        mock_redis.hgetall.return_value = _job_hash(job, "failed", attempts_made="3")

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await redis_queue.retry(job.id, 1.0, "lease-1")

        assert exc_info.value.attempts_made == 3
        assert exc_info.value.max_attempts == 3

    async def test_retry_unknown_job(
        self, redis_queue: RedisDispatchQueue, mock_redis: MagicMock
    ) -> None:
        mock_redis.eval.return_value = [-1, 0]

        with pytest.raises(JobNotFoundError):
            await redis_queue.retry("missing", 0, None)

    async def test_retry_with_stale_lease(
        self, redis_queue: RedisDispatchQueue, mock_redis: MagicMock
    ) -> None:
        """Should refuse a retry whose lease id no longer matches the job hash."""
        mock_redis.eval.return_value = [0, 0]

        with pytest.raises(LeaseLostError) as exc_info:
            await redis_queue.retry("job-1", 0, "stale")

        assert exc_info.value.lease_id == "stale"
        assert "lease_id" in mock_redis.eval.call_args[0][0]
        mock_redis.hgetall.assert_not_called()

    async def test_stats(
        self, redis_queue: RedisDispatchQueue, mock_redis: MagicMock
    ) -> None:
        counts = {
            "test:waiting": 3,
            "test:scheduled": 2,
            "test:active": 1,
            "test:completed": 7,
            "test:failed": 1,
        }
        mock_redis.zcard.side_effect = lambda key: counts[key]
        mock_redis.exists.return_value = 1

        stats = await redis_queue.stats()

        assert stats.waiting == 3
        assert stats.scheduled == 2
        assert stats.active == 1
        assert stats.completed == 7
        assert stats.failed == 1
        assert stats.total == 14
        assert stats.paused is True

    async def test_pause_resume(
        self, redis_queue: RedisDispatchQueue, mock_redis: MagicMock
    ) -> None:
        await redis_queue.pause()
        mock_redis.set.assert_awaited_once_with("test:paused", "1")

        await redis_queue.resume()
        mock_redis.delete.assert_awaited_once_with("test:paused")

        mock_redis.exists.return_value = 0
        assert await redis_queue.is_paused() is False

    async def test_get_job_unknown(self, redis_queue: RedisDispatchQueue) -> None:
        assert await redis_queue.get_job("missing") is None

    async def test_remove(
        self, redis_queue: RedisDispatchQueue, mock_redis: MagicMock
    ) -> None:
        mock_redis.eval.return_value = 1
        assert await redis_queue.remove("job-1")

        mock_redis.eval.return_value = 0
        assert not await redis_queue.remove("job-1")

    async def test_clean_both_terminal_states(
        self, redis_queue: RedisDispatchQueue, mock_redis: MagicMock
    ) -> None:
        mock_redis.eval.side_effect = [2, 3]

        assert await redis_queue.clean(grace=60) == 5
        keys = [call[0][2] for call in mock_redis.eval.call_args_list]
        assert keys == ["test:completed", "test:failed"]

    async def test_clean_rejects_non_terminal_state(
        self, redis_queue: RedisDispatchQueue
    ) -> None:
        with pytest.raises(ValueError):
            await redis_queue.clean(grace=0, state=JobState.ACTIVE)

    async def test_redis_errors_become_backend_errors(
        self, redis_queue: RedisDispatchQueue, mock_redis: MagicMock
    ) -> None:
        mock_redis.eval.side_effect = RedisConnectionError("down")

        with pytest.raises(QueueBackendError):
            await redis_queue.enqueue(make_job())

    async def test_close_and_health_check(
        self, redis_queue: RedisDispatchQueue, mock_redis: MagicMock
    ) -> None:
        assert await redis_queue.health_check() is True

        mock_redis.ping.side_effect = RedisConnectionError("down")
        assert await redis_queue.health_check() is False

        await redis_queue.close()
        mock_redis.aclose.assert_awaited_once()
