"""DeliveryLogService — read-side projections over the delivery log."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from .domain.delivery_log import DeliveryLog, DeliveryStatus
from .ports.stores import DeliveryLogQuery

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .ports.stores import IDeliveryLogStore

_NAMED_INTERVALS = {
    "minute": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class DeliveryStats:
    """Aggregate counts over a set of delivery logs.

    Attributes:
        success_rate: Percentage of ``sent`` logs among all logs, rounded
            to two decimals.
        avg_duration_ms: Mean duration over logs that carry one, or ``None``.
    """

    total: int = 0
    sent: int = 0
    failed: int = 0
    processing: int = 0
    cancelled: int = 0
    pending: int = 0
    success_rate: float = 0.0
    avg_duration_ms: int | None = None


@dataclass(frozen=True)
class ChannelStats:
    channel: str
    total: int = 0
    sent: int = 0
    failed: int = 0
    processing: int = 0
    cancelled: int = 0
    avg_duration_ms: int | None = None


@dataclass(frozen=True)
class TimelineBucket:
    """Sent/failed counts for one interval starting at ``time``."""

    time: datetime
    sent: int = 0
    failed: int = 0
    total: int = 0


def _average(durations: list[int]) -> int | None:
    return round(sum(durations) / len(durations)) if durations else None


def _resolve_interval(interval: timedelta | str) -> timedelta:
    if isinstance(interval, timedelta):
        step = interval
    else:
        try:
            step = _NAMED_INTERVALS[interval.strip().lower()]
        except KeyError:
            raise ValueError(
                f"Unknown interval {interval!r}; use one of {sorted(_NAMED_INTERVALS)}"
            ) from None
    if step <= timedelta(0):
        raise ValueError("interval must be positive")
    return step


class DeliveryLogService:
    """Derived, read-only views over the append-only delivery log.

    Every projection accepts an optional ``from_date``/``to_date`` range.
    Nothing here writes to the store.
    """

    def __init__(self, store: IDeliveryLogStore) -> None:
        self._store = store

    async def by_notification(self, notification_id: str) -> list[DeliveryLog]:
        """All attempts of a notification, oldest first."""
        return await self._store.find(
            DeliveryLogQuery(
                notification_id=notification_id, limit=None, newest_first=False
            )
        )

    async def get(self, log_id: str) -> DeliveryLog | None:
        return await self._store.get(log_id)

    async def search(self, query: DeliveryLogQuery) -> list[DeliveryLog]:
        """Filtered, paginated search, newest first by default."""
        return await self._store.find(query)

    async def failed_logs(self, limit: int = 50) -> list[DeliveryLog]:
        """Most recent failed attempts."""
        return await self._store.find(
            DeliveryLogQuery(status=DeliveryStatus.FAILED, limit=limit)
        )

    async def stats(
        self, from_date: datetime | None = None, to_date: datetime | None = None
    ) -> DeliveryStats:
        logs = await self._all(from_date, to_date)
        counts = self._count(logs)
        total = len(logs)
        sent = counts[DeliveryStatus.SENT]
        failed = counts[DeliveryStatus.FAILED]
        processing = counts[DeliveryStatus.PROCESSING]
        cancelled = counts[DeliveryStatus.CANCELLED]
        return DeliveryStats(
            total=total,
            sent=sent,
            failed=failed,
            processing=processing,
            cancelled=cancelled,
            pending=total - sent - failed - processing - cancelled,
            success_rate=round(sent / total * 100, 2) if total else 0.0,
            avg_duration_ms=_average(
                [log.duration_ms for log in logs if log.duration_ms is not None]
            ),
        )

    async def stats_by_channel(
        self, from_date: datetime | None = None, to_date: datetime | None = None
    ) -> list[ChannelStats]:
        grouped: dict[str, list[DeliveryLog]] = defaultdict(list)
        for log in await self._all(from_date, to_date):
            grouped[log.channel].append(log)

        result = []
        for channel in sorted(grouped):
            logs = grouped[channel]
            counts = self._count(logs)
            result.append(
                ChannelStats(
                    channel=channel,
                    total=len(logs),
                    sent=counts[DeliveryStatus.SENT],
                    failed=counts[DeliveryStatus.FAILED],
                    processing=counts[DeliveryStatus.PROCESSING],
                    cancelled=counts[DeliveryStatus.CANCELLED],
                    avg_duration_ms=_average(
                        [log.duration_ms for log in logs if log.duration_ms is not None]
                    ),
                )
            )
        return result

    async def timeline(
        self,
        interval: timedelta | str = "hour",
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> list[TimelineBucket]:
        """Sent/failed counts per interval, oldest bucket first.

        Buckets are aligned to the Unix epoch in UTC, so ``"day"`` buckets
        start at midnight UTC. Empty buckets are omitted.
        """
        step = _resolve_interval(interval)
        buckets: dict[datetime, dict[DeliveryStatus, int]] = defaultdict(
            lambda: defaultdict(int)
        )
        for log in await self._all(from_date, to_date):
            start = _EPOCH + ((log.created_at - _EPOCH) // step) * step
            buckets[start][log.status] += 1

        return [
            TimelineBucket(
                time=start,
                sent=counts[DeliveryStatus.SENT],
                failed=counts[DeliveryStatus.FAILED],
                total=sum(counts.values()),
            )
            for start, counts in sorted(buckets.items())
        ]

    async def _all(
        self, from_date: datetime | None, to_date: datetime | None
    ) -> list[DeliveryLog]:
        return await self._store.find(
            DeliveryLogQuery(
                from_date=from_date, to_date=to_date, limit=None, newest_first=False
            )
        )

    @staticmethod
    def _count(logs: Iterable[DeliveryLog]) -> dict[DeliveryStatus, int]:
        counts = dict.fromkeys(DeliveryStatus, 0)
        for log in logs:
            counts[log.status] += 1
        return counts
