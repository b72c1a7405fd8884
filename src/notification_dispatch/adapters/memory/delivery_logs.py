"""InMemoryDeliveryLogStore — append-only log store for testing."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ...ports.stores import DeliveryLogQuery, IDeliveryLogStore

if TYPE_CHECKING:
    import builtins

    from ...domain.delivery_log import DeliveryLog


class InMemoryDeliveryLogStore(IDeliveryLogStore):
    """
    List-backed :class:`IDeliveryLogStore`.

    Logs are frozen models and the store never replaces an entry, so the
    audit trail is append-only.
    """

    def __init__(self) -> None:
        self._logs: builtins.list[DeliveryLog] = []
        self._by_id: dict[str, DeliveryLog] = {}

    async def append(self, log: DeliveryLog) -> DeliveryLog:
        if log.id in self._by_id:
            raise ValueError(f"Delivery log {log.id} already exists")
        self._logs.append(log)
        self._by_id[log.id] = log
        return log

    async def get(self, log_id: str) -> DeliveryLog | None:
        return self._by_id.get(log_id)

    async def find(self, query: DeliveryLogQuery) -> builtins.list[DeliveryLog]:
        matches = [
            log
            for log in self._logs
            if (query.notification_id is None or log.notification_id == query.notification_id)
            and (query.channel is None or log.channel == query.channel)
            and (query.status is None or log.status == query.status)
            and (query.from_date is None or log.created_at >= query.from_date)
            and (query.to_date is None or log.created_at <= query.to_date)
        ]
        if query.newest_first:
            matches.reverse()
        end = None if query.limit is None else query.offset + query.limit
        return matches[query.offset : end]

    # --- Test helpers ---

    @property
    def logs(self) -> builtins.list[DeliveryLog]:
        return list(self._logs)

    def clear(self) -> None:
        self._logs.clear()
        self._by_id.clear()
