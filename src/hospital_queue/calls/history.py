"""
First-call history: a bounded, time-indexed cache of when each ticket was last
first-called.
"""

from collections import OrderedDict
from datetime import datetime, timedelta


class FirstCallHistory:
    """Expiring map ``ticket_id -> first-call timestamp``.

    Entries older than ``retention`` are invisible to lookups and removed by
    ``evict_expired``. The map never holds more than ``max_entries``; the
    oldest entry is dropped to make room.
    """

    def __init__(self, retention: timedelta, max_entries: int = 1000) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._retention = retention
        self._max_entries = max_entries
        self._entries: OrderedDict[str, datetime] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, ticket_id: object) -> bool:
        return ticket_id in self._entries

    def record(self, ticket_id: str, at: datetime) -> None:
        self._entries.pop(ticket_id, None)
        while len(self._entries) >= self._max_entries:
            self._entries.popitem(last=False)
        self._entries[ticket_id] = at

    def last_called(self, ticket_id: str, now: datetime) -> datetime | None:
        at = self._entries.get(ticket_id)
        if at is None or now - at > self._retention:
            return None
        return at

    def called_within(self, ticket_id: str, window: timedelta, now: datetime) -> bool:
        at = self.last_called(ticket_id, now)
        return at is not None and now - at < window

    def evict_expired(self, now: datetime) -> int:
        # Insertion order equals call order, so expired entries sit at the front.
        evicted = 0
        while self._entries:
            ticket_id, at = next(iter(self._entries.items()))
            if now - at <= self._retention:
                break
            del self._entries[ticket_id]
            evicted += 1
        return evicted

    def clear(self) -> int:
        size = len(self._entries)
        self._entries.clear()
        return size
