"""
Call request store interface and an in-memory implementation.

The store is the single source of truth for what still needs announcing; the
sequencer never caches its ordering.
"""

from datetime import datetime
from typing import Protocol

from hospital_queue.calls.models import (
    ACTIVE_STATUSES,
    CallKind,
    CallRequest,
    CallRequestStatus,
)


class CallRequestStore(Protocol):
    """Persistence operations the sequencer needs."""

    async def insert(self, request: CallRequest) -> CallRequest:
        """Persist a new request."""
        ...

    async def find_next_pending(self) -> CallRequest | None:
        """Highest priority pending request, earliest ``requested_at`` first."""
        ...

    async def find_active(self, ticket_id: str, kind: CallKind) -> CallRequest | None:
        """A pending or processing request for this ticket and kind, if any."""
        ...

    async def mark_processing(self, request_id: str, at: datetime) -> None:
        ...

    async def mark_failed(self, request_id: str, error: str) -> None:
        ...

    async def requeue_processing(self) -> int:
        """Return every processing request to pending; return how many."""
        ...

    async def delete(self, request_id: str) -> None:
        ...

    async def count_by_status(self, status: CallRequestStatus) -> int:
        ...

    async def purge_expired(self, older_than: datetime) -> int:
        """Delete requests created before ``older_than``; return how many."""
        ...


def dispatch_key(request: CallRequest) -> tuple[int, datetime]:
    """Sort key: priority rank descending, then FIFO."""
    return (-request.priority.rank, request.requested_at)


class InMemoryCallRequestStore:
    """Dict-backed store for local runs and tests.

    Returned requests are copies so callers cannot mutate stored state
    behind the store's back, matching the behaviour of a real database.
    """

    def __init__(self) -> None:
        self._requests: dict[str, CallRequest] = {}
        self._created: dict[str, datetime] = {}

    def __len__(self) -> int:
        return len(self._requests)

    def all(self) -> list[CallRequest]:
        return [r.copy() for r in self._requests.values()]

    async def insert(self, request: CallRequest) -> CallRequest:
        self._requests[request.id] = request.copy()
        self._created[request.id] = request.requested_at
        return request.copy()

    async def find_next_pending(self) -> CallRequest | None:
        pending = [
            r for r in self._requests.values() if r.status == CallRequestStatus.PENDING
        ]
        if not pending:
            return None
        return min(pending, key=dispatch_key).copy()

    async def find_active(self, ticket_id: str, kind: CallKind) -> CallRequest | None:
        for request in self._requests.values():
            if (
                request.ticket_id == ticket_id
                and request.kind == kind
                and request.status in ACTIVE_STATUSES
            ):
                return request.copy()
        return None

    async def mark_processing(self, request_id: str, at: datetime) -> None:
        request = self._requests.get(request_id)
        if request is not None:
            request.status = CallRequestStatus.PROCESSING
            request.processing_started_at = at

    async def mark_failed(self, request_id: str, error: str) -> None:
        request = self._requests.get(request_id)
        if request is not None:
            request.status = CallRequestStatus.FAILED
            request.error = error

    async def requeue_processing(self) -> int:
        requeued = 0
        for request in self._requests.values():
            if request.status == CallRequestStatus.PROCESSING:
                request.status = CallRequestStatus.PENDING
                request.processing_started_at = None
                requeued += 1
        return requeued

    async def delete(self, request_id: str) -> None:
        self._requests.pop(request_id, None)
        self._created.pop(request_id, None)

    async def count_by_status(self, status: CallRequestStatus) -> int:
        return sum(1 for r in self._requests.values() if r.status == status)

    async def purge_expired(self, older_than: datetime) -> int:
        expired = [rid for rid, created in self._created.items() if created < older_than]
        for rid in expired:
            await self.delete(rid)
        return len(expired)
