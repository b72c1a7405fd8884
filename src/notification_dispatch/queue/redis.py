"""RedisDispatchQueue — durable dispatch queue shared across processes."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from redis.exceptions import RedisError

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

    from redis.asyncio import Redis

logger = logging.getLogger("notification_dispatch.queue.redis")

# Score of a waiting job: weight * _TIER + seq. Keeps priority ascending and
# FIFO inside a tier while staying an exact integer in a Lua double.
_TIER = 1_000_000_000_000

_ENQUEUE_SCRIPT = """
local job_key = KEYS[1]
local waiting_key = KEYS[2]
local scheduled_key = KEYS[3]
local seq_key = KEYS[4]
local job_id = ARGV[1]
local weight = tonumber(ARGV[3])
local ready_at = tonumber(ARGV[5])
local now = tonumber(ARGV[6])

if redis.call('EXISTS', job_key) == 1 then
    return 0
end

local seq = redis.call('INCR', seq_key)
local state = 'waiting'
if ready_at > now then
    state = 'scheduled'
    redis.call('ZADD', scheduled_key, ready_at, job_id)
else
    redis.call('ZADD', waiting_key, weight * tonumber(ARGV[7]) + seq, job_id)
end
redis.call('HSET', job_key,
    'data', ARGV[2], 'state', state, 'weight', weight, 'seq', seq,
    'attempts_made', 0, 'max_attempts', ARGV[4],
    'submitted_at', now, 'ready_at', ready_at)
return seq
"""

_LEASE_SCRIPT = """
local waiting_key = KEYS[1]
local scheduled_key = KEYS[2]
local active_key = KEYS[3]
local paused_key = KEYS[4]
local now = tonumber(ARGV[1])
local prefix = ARGV[2]
local tier = tonumber(ARGV[4])

if redis.call('EXISTS', paused_key) == 1 then
    return false
end

local function readmit(job_id)
    local job_key = prefix .. ':job:' .. job_id
    local fields = redis.call('HMGET', job_key, 'weight', 'seq')
    redis.call('ZADD', waiting_key, tonumber(fields[1]) * tier + tonumber(fields[2]), job_id)
    redis.call('HSET', job_key, 'state', 'waiting')
    redis.call('HDEL', job_key, 'leased_at', 'lease_id')
end

if ARGV[3] ~= '' then
    local stalled = redis.call('ZRANGEBYSCORE', active_key, '-inf', tonumber(ARGV[3]))
    for _, job_id in ipairs(stalled) do
        redis.call('ZREM', active_key, job_id)
        readmit(job_id)
    end
end

local due = redis.call('ZRANGEBYSCORE', scheduled_key, '-inf', now)
for _, job_id in ipairs(due) do
    redis.call('ZREM', scheduled_key, job_id)
    readmit(job_id)
end

local head = redis.call('ZRANGE', waiting_key, 0, 0)
if #head == 0 then
    return false
end
local job_id = head[1]
redis.call('ZREM', waiting_key, job_id)
redis.call('ZADD', active_key, now, job_id)
redis.call('HSET', prefix .. ':job:' .. job_id,
    'state', 'active', 'leased_at', now, 'lease_id', ARGV[5])
return job_id
"""

_ACK_SCRIPT = """
local job_key = KEYS[1]
local state = redis.call('HGET', job_key, 'state')
if not state then
    return -1
end
if state ~= 'active' or redis.call('HGET', job_key, 'lease_id') ~= ARGV[3] then
    return 0
end
redis.call('ZREM', KEYS[2], ARGV[1])
redis.call('ZADD', KEYS[3], tonumber(ARGV[2]), ARGV[1])
redis.call('HINCRBY', job_key, 'attempts_made', 1)
redis.call('HSET', job_key, 'state', 'completed', 'finished_at', ARGV[2])
redis.call('HDEL', job_key, 'leased_at', 'lease_id')
return 1
"""

_RETRY_SCRIPT = """
local job_key = KEYS[1]
local job_id = ARGV[1]
local now = tonumber(ARGV[2])
local delay = tonumber(ARGV[3])
local state = redis.call('HGET', job_key, 'state')
if not state then
    return {-1, 0}
end
if state ~= 'active' or redis.call('HGET', job_key, 'lease_id') ~= ARGV[5] then
    return {0, 0}
end

redis.call('ZREM', KEYS[2], job_id)
redis.call('HDEL', job_key, 'leased_at', 'lease_id')
local attempts = redis.call('HINCRBY', job_key, 'attempts_made', 1)
local max_attempts = tonumber(redis.call('HGET', job_key, 'max_attempts'))

if attempts >= max_attempts then
    redis.call('ZADD', KEYS[5], now, job_id)
    redis.call('HSET', job_key, 'state', 'failed', 'finished_at', now)
    return {2, attempts}
end

if delay > 0 then
    redis.call('ZADD', KEYS[4], now + delay, job_id)
    redis.call('HSET', job_key, 'state', 'scheduled', 'ready_at', now + delay)
else
    local fields = redis.call('HMGET', job_key, 'weight', 'seq')
    redis.call('ZADD', KEYS[3], tonumber(fields[1]) * tonumber(ARGV[4]) + tonumber(fields[2]), job_id)
    redis.call('HSET', job_key, 'state', 'waiting', 'ready_at', now)
end
return {1, attempts}
"""

_REMOVE_SCRIPT = """
local state = redis.call('HGET', KEYS[1], 'state')
if state ~= 'waiting' and state ~= 'scheduled' then
    return 0
end
redis.call('ZREM', KEYS[2], ARGV[1])
redis.call('ZREM', KEYS[3], ARGV[1])
redis.call('DEL', KEYS[1])
return 1
"""

_CLEAN_SCRIPT = """
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', tonumber(ARGV[1]))
for _, job_id in ipairs(ids) do
    redis.call('DEL', ARGV[2] .. ':job:' .. job_id)
end
redis.call('ZREMRANGEBYSCORE', KEYS[1], '-inf', tonumber(ARGV[1]))
return #ids
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_ms(value: Any) -> datetime | None:
    if value is None or value == b"" or value == "":
        return None
    return datetime.fromtimestamp(int(float(_text(value))) / 1000, tz=timezone.utc)


def _text(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


class RedisDispatchQueue(IDispatchQueue):
    """
    Redis-backed :class:`IDispatchQueue`.

    Layout (all keys under ``prefix``):

    - ``{prefix}:job:{id}``: hash with the serialized job and its mutable
      fields (state, attempts, current lease id, timestamps in epoch
      milliseconds);
    - ``{prefix}:waiting``: ZSET scored by ``weight * 10^12 + seq``;
    - ``{prefix}:scheduled``: ZSET scored by ready time;
    - ``{prefix}:active`` / ``completed`` / ``failed``: ZSETs scored by the
      time the job entered the state;
    - ``{prefix}:seq``: submission counter; ``{prefix}:paused``: flag.

    Every state change is a single Lua script, so a job is in exactly one
    ZSET and concurrent ``lease`` calls from any number of processes never
    return the same job. ``ack`` and ``retry`` only apply under the lease id
    stamped by the most recent ``lease``. Designed for single-instance Redis
    setups.
    """

    def __init__(
        self,
        redis: Redis,  # type: ignore[type-arg]
        prefix: str = "dispatch",
        *,
        poll_interval: float = 0.2,
        lease_timeout: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize RedisDispatchQueue.

        Args:
            redis: An initialized redis.asyncio.Redis client.
            prefix: Key prefix for Redis keys.
            poll_interval: Delay between polling attempts while ``lease``
                waits for work.
            lease_timeout: Seconds after which an unacknowledged active job
                is re-admitted. ``None`` disables stalled-job recovery.
            clock: Returns the current aware UTC time. Injected by tests.
        """
        self._redis = redis
        self._prefix = prefix
        self._poll_interval = poll_interval
        self._lease_timeout = lease_timeout
        self._clock = clock or _utcnow

    def _key(self, name: str) -> str:
        return f"{self._prefix}:{name}"

    def _job_key(self, job_id: str) -> str:
        return f"{self._prefix}:job:{job_id}"

    async def _eval(self, script: str, keys: list[str], *args: Any) -> Any:
        try:
            return await self._redis.eval(  # type: ignore[no-untyped-call]
                script, len(keys), *keys, *(str(a) for a in args)
            )
        except RedisError as exc:
            logger.error("Dispatch queue script failed: %s", exc)
            raise QueueBackendError(f"Technical failure: {exc}") from exc

    # ── Submission ───────────────────────────────────────────────────

    async def enqueue(self, job: Job) -> str:
        now = self._clock()
        return await self._submit(job, now, now)

    async def schedule_at(self, job: Job, when: datetime) -> str:
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        now = self._clock()
        if when <= now:
            raise ScheduleInPastError(when, now)
        return await self._submit(job, now, when)

    async def _submit(self, job: Job, now: datetime, ready_at: datetime) -> str:
        data = job.model_copy(
            update={"submitted_at": now, "ready_at": ready_at}
        ).model_dump_json()
        seq = await self._eval(
            _ENQUEUE_SCRIPT,
            [
                self._job_key(job.id),
                self._key("waiting"),
                self._key("scheduled"),
                self._key("seq"),
            ],
            job.id,
            data,
            job.priority_weight,
            job.max_attempts,
            _to_ms(ready_at),
            _to_ms(now),
            _TIER,
        )
        if int(seq) == 0:
            raise JobStateError(f"Job {job.id} is already queued")
        logger.debug(
            "Submitted job %s (notification=%s channel=%s ready_at=%s)",
            job.id,
            job.notification_id,
            job.channel,
            ready_at.isoformat(),
        )
        return job.id

    # ── Leasing ──────────────────────────────────────────────────────

    async def lease(self, timeout: float | None = None) -> Job | None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout else None
        while True:
            job = await self._try_lease()
            if job is not None:
                return job
            if deadline is None or loop.time() >= deadline:
                return None
            await asyncio.sleep(min(self._poll_interval, deadline - loop.time()))

    async def _try_lease(self) -> Job | None:
        now = self._clock()
        stall_cutoff = (
            _to_ms(now - timedelta(seconds=self._lease_timeout))
            if self._lease_timeout is not None
            else ""
        )
        job_id = await self._eval(
            _LEASE_SCRIPT,
            [
                self._key("waiting"),
                self._key("scheduled"),
                self._key("active"),
                self._key("paused"),
            ],
            _to_ms(now),
            self._prefix,
            stall_cutoff,
            _TIER,
            uuid.uuid4().hex,
        )
        if not job_id:
            return None
        job = await self.get_job(_text(job_id))
        if job is None:
            raise QueueBackendError(f"Leased job {_text(job_id)} has no data")
        return job

    # ── Completion ───────────────────────────────────────────────────

    async def ack(self, job_id: str, lease_id: str | None) -> None:
        result = await self._eval(
            _ACK_SCRIPT,
            [self._job_key(job_id), self._key("active"), self._key("completed")],
            job_id,
            _to_ms(self._clock()),
            lease_id or "",
        )
        self._check_transition(job_id, int(result), lease_id)
        logger.debug("Acked job %s", job_id)

    async def retry(self, job_id: str, delay: float, lease_id: str | None) -> Job:
        result = await self._eval(
            _RETRY_SCRIPT,
            [
                self._job_key(job_id),
                self._key("active"),
                self._key("waiting"),
                self._key("scheduled"),
                self._key("failed"),
            ],
            job_id,
            _to_ms(self._clock()),
            int(max(delay, 0.0) * 1000),
            _TIER,
            lease_id or "",
        )
        outcome, attempts = int(result[0]), int(result[1])
        self._check_transition(job_id, outcome, lease_id)
        job = await self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if outcome == 2:
            raise RetriesExhaustedError(job_id, attempts, job.max_attempts)
        logger.debug(
            "Job %s re-admitted after %.2fs (attempt %d/%d)",
            job_id,
            delay,
            attempts,
            job.max_attempts,
        )
        return job

    @staticmethod
    def _check_transition(job_id: str, outcome: int, lease_id: str | None) -> None:
        if outcome == -1:
            raise JobNotFoundError(job_id)
        if outcome == 0:
            raise LeaseLostError(job_id, lease_id)

    # ── Introspection & admin ────────────────────────────────────────

    async def stats(self) -> QueueStats:
        try:
            counts = {
                state: await self._redis.zcard(self._key(state.value))
                for state in JobState
            }
            paused = await self._redis.exists(self._key("paused"))
        except RedisError as exc:
            raise QueueBackendError(f"Technical failure: {exc}") from exc
        return QueueStats(
            waiting=int(counts[JobState.WAITING]),
            active=int(counts[JobState.ACTIVE]),
            scheduled=int(counts[JobState.SCHEDULED]),
            completed=int(counts[JobState.COMPLETED]),
            failed=int(counts[JobState.FAILED]),
            paused=bool(paused),
        )

    async def pause(self) -> None:
        await self._redis.set(self._key("paused"), "1")
        logger.info("Dispatch queue %s paused", self._prefix)

    async def resume(self) -> None:
        await self._redis.delete(self._key("paused"))
        logger.info("Dispatch queue %s resumed", self._prefix)

    async def is_paused(self) -> bool:
        return bool(await self._redis.exists(self._key("paused")))

    async def get_job(self, job_id: str) -> Job | None:
        try:
            raw = await self._redis.hgetall(self._job_key(job_id))
        except RedisError as exc:
            raise QueueBackendError(f"Technical failure: {exc}") from exc
        if not raw:
            return None
        fields = {_text(k): v for k, v in raw.items()}
        job = Job.model_validate_json(_text(fields["data"]))
        update: dict[str, Any] = {
            "state": JobState(_text(fields["state"])),
            "attempts_made": int(_text(fields.get("attempts_made", 0))),
            "leased_at": _from_ms(fields.get("leased_at")),
            "lease_id": _text(fields["lease_id"]) if fields.get("lease_id") else None,
            "finished_at": _from_ms(fields.get("finished_at")),
        }
        ready_at = _from_ms(fields.get("ready_at"))
        if ready_at is not None:
            update["ready_at"] = ready_at
        return job.model_copy(update=update)

    async def remove(self, job_id: str) -> bool:
        result = await self._eval(
            _REMOVE_SCRIPT,
            [self._job_key(job_id), self._key("waiting"), self._key("scheduled")],
            job_id,
        )
        return int(result) == 1

    async def clean(self, grace: float, state: JobState | None = None) -> int:
        if state is not None and state not in (JobState.COMPLETED, JobState.FAILED):
            raise ValueError(f"Only terminal states can be cleaned, got {state.value}")
        states = [state] if state is not None else [JobState.COMPLETED, JobState.FAILED]
        cutoff = _to_ms(self._clock() - timedelta(seconds=grace))
        purged = 0
        for target in states:
            purged += int(
                await self._eval(
                    _CLEAN_SCRIPT, [self._key(target.value)], cutoff, self._prefix
                )
            )
        if purged:
            logger.info("Cleaned %d finished jobs from %s", purged, self._prefix)
        return purged

    async def close(self) -> None:
        await self._redis.aclose()

    async def health_check(self) -> bool:
        """Verify Redis health."""
        try:
            await self._redis.ping()
            return True
        except RedisError:
            return False
