"""
Tests for the SQL call request repository.
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest

from hospital_queue.calls.models import CallKind, CallRequest, CallRequestStatus
from hospital_queue.calls.repository import CallRequestRepository
from hospital_queue.shared.database import DatabaseManager
from hospital_queue.shared.exceptions import StoreError
from hospital_queue.tickets.interface import CounterRef, TicketPriority, TicketRef

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
COUNTER = CounterRef(id="counter-1", counter_number=1)


def make_request(
    ticket_id: str,
    priority: TicketPriority = TicketPriority.NORMAL,
    requested_at: datetime = T0,
    is_recall: bool = False,
) -> CallRequest:
    return CallRequest.new(
        ticket=TicketRef(id=ticket_id, ticket_number=ticket_id.upper(), priority=priority),
        counter=COUNTER,
        kind=CallKind.RECALL if is_recall else CallKind.CALL,
        is_recall=is_recall,
        source_label="1",
        requested_at=requested_at,
    )


class TestCallRequestRepository:
    """Tests for CallRequestRepository."""

    @pytest.fixture
    def repository(self, db_manager: DatabaseManager) -> CallRequestRepository:
        return CallRequestRepository(db_manager.session, timeout_seconds=5)

    @pytest.mark.asyncio
    async def test_insert_round_trips_fields(self, repository: CallRequestRepository) -> None:
        request = make_request("t1", TicketPriority.CHILD)

        stored = await repository.insert(request)

        assert stored.id == request.id
        assert stored.ticket_number == "T1"
        assert stored.counter_number == 1
        assert stored.priority == TicketPriority.CHILD
        assert stored.status == CallRequestStatus.PENDING
        assert stored.kind == CallKind.CALL

    @pytest.mark.asyncio
    async def test_next_pending_orders_by_rank_then_time(
        self,
        repository: CallRequestRepository,
    ) -> None:
        await repository.insert(make_request("normal", TicketPriority.NORMAL, T0))
        await repository.insert(make_request("senior", TicketPriority.SENIOR, T0 + timedelta(seconds=1)))
        await repository.insert(
            make_request("emergency", TicketPriority.EMERGENCY, T0 + timedelta(seconds=2))
        )
        await repository.insert(make_request("senior-late", TicketPriority.SENIOR, T0 + timedelta(seconds=3)))

        order = []
        while (nxt := await repository.find_next_pending()) is not None:
            order.append(nxt.ticket_id)
            await repository.delete(nxt.id)

        assert order == ["emergency", "senior", "senior-late", "normal"]

    @pytest.mark.asyncio
    async def test_next_pending_skips_processing_and_failed(
        self,
        repository: CallRequestRepository,
    ) -> None:
        processing = await repository.insert(make_request("a", TicketPriority.EMERGENCY))
        failed = await repository.insert(make_request("b", TicketPriority.PRIORITY))
        waiting = await repository.insert(make_request("c"))

        await repository.mark_processing(processing.id, T0)
        await repository.mark_failed(failed.id, "printer on fire")

        nxt = await repository.find_next_pending()
        assert nxt is not None
        assert nxt.id == waiting.id

    @pytest.mark.asyncio
    async def test_find_active_matches_ticket_and_kind(
        self,
        repository: CallRequestRepository,
    ) -> None:
        call = await repository.insert(make_request("t1"))

        assert (await repository.find_active("t1", CallKind.CALL)).id == call.id
        assert await repository.find_active("t1", CallKind.RECALL) is None
        assert await repository.find_active("t2", CallKind.CALL) is None

        await repository.mark_failed(call.id, "boom")
        assert await repository.find_active("t1", CallKind.CALL) is None

    @pytest.mark.asyncio
    async def test_status_counts(self, repository: CallRequestRepository) -> None:
        first = await repository.insert(make_request("t1"))
        await repository.insert(make_request("t2"))
        await repository.mark_processing(first.id, T0)

        assert await repository.count_by_status(CallRequestStatus.PENDING) == 1
        assert await repository.count_by_status(CallRequestStatus.PROCESSING) == 1
        assert await repository.count_by_status(CallRequestStatus.FAILED) == 0

    @pytest.mark.asyncio
    async def test_mark_failed_records_error(self, repository: CallRequestRepository) -> None:
        request = await repository.insert(make_request("t1"))

        await repository.mark_failed(request.id, "Counter not found: counter-9")

        assert await repository.count_by_status(CallRequestStatus.FAILED) == 1

    @pytest.mark.asyncio
    async def test_requeue_processing_returns_rows_to_pending(
        self,
        repository: CallRequestRepository,
    ) -> None:
        interrupted = await repository.insert(make_request("t1"))
        failed = await repository.insert(make_request("t2"))
        await repository.mark_processing(interrupted.id, T0)
        await repository.mark_failed(failed.id, "boom")

        assert await repository.requeue_processing() == 1

        nxt = await repository.find_next_pending()
        assert nxt is not None
        assert nxt.id == interrupted.id
        assert nxt.processing_started_at is None
        assert await repository.count_by_status(CallRequestStatus.FAILED) == 1

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, repository: CallRequestRepository) -> None:
        request = await repository.insert(make_request("t1"))

        await repository.delete(request.id)
        await repository.delete(request.id)

        assert await repository.find_next_pending() is None

    @pytest.mark.asyncio
    async def test_purge_expired(self, repository: CallRequestRepository) -> None:
        await repository.insert(make_request("old", requested_at=T0))
        await repository.insert(make_request("new", requested_at=T0 + timedelta(hours=23)))

        purged = await repository.purge_expired(T0 + timedelta(hours=1))

        assert purged == 1
        remaining = await repository.find_next_pending()
        assert remaining is not None
        assert remaining.ticket_id == "new"


class TestStoreTimeout:
    @pytest.mark.asyncio
    async def test_hung_session_raises_store_error(self) -> None:
        @asynccontextmanager
        async def hanging_scope() -> AsyncGenerator[None, None]:
            await asyncio.sleep(10)
            yield None

        repository = CallRequestRepository(hanging_scope, timeout_seconds=0.05)  # type: ignore[arg-type]

        with pytest.raises(StoreError) as exc_info:
            await repository.find_next_pending()

        assert exc_info.value.code == "STORE_ERROR"
        assert exc_info.value.details == {"timeout_seconds": 0.05}
