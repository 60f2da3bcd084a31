"""
Tests for the SQL ticket/counter gateway.
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import pytest
import pytest_asyncio

from hospital_queue.shared.database import DatabaseManager
from hospital_queue.shared.exceptions import NotFoundError, StoreError
from hospital_queue.tickets.interface import TicketPriority
from hospital_queue.tickets.models import Counter, Ticket
from hospital_queue.tickets.repository import SqlTicketCounterGateway

AT = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)


class TestSqlTicketCounterGateway:
    """Tests for SqlTicketCounterGateway."""

    @pytest_asyncio.fixture
    async def gateway(self, db_manager: DatabaseManager) -> SqlTicketCounterGateway:
        async with db_manager.session() as session:
            session.add(Counter(id="counter-1", counter_number=4, department_id="dept-1"))
            session.add(
                Ticket(
                    id="ticket-1",
                    ticket_number="S007",
                    department_id="dept-1",
                    priority=TicketPriority.SENIOR.value,
                )
            )
        return SqlTicketCounterGateway(db_manager.session)

    @pytest.mark.asyncio
    async def test_get_ticket(self, gateway: SqlTicketCounterGateway) -> None:
        ref = await gateway.get_ticket("ticket-1")

        assert ref.ticket_number == "S007"
        assert ref.priority == TicketPriority.SENIOR
        assert ref.department_id == "dept-1"

    @pytest.mark.asyncio
    async def test_get_counter(self, gateway: SqlTicketCounterGateway) -> None:
        ref = await gateway.get_counter("counter-1")

        assert ref.counter_number == 4

    @pytest.mark.asyncio
    async def test_unknown_ids_raise_not_found(self, gateway: SqlTicketCounterGateway) -> None:
        with pytest.raises(NotFoundError):
            await gateway.get_ticket("nope")
        with pytest.raises(NotFoundError):
            await gateway.get_counter("nope")

    @pytest.mark.asyncio
    async def test_mark_called_updates_both_sides(
        self,
        gateway: SqlTicketCounterGateway,
        db_manager: DatabaseManager,
    ) -> None:
        ticket, counter = await gateway.mark_called("ticket-1", "counter-1", AT)

        assert ticket["status"] == "called"
        assert ticket["assignedCounter"] == "counter-1"
        assert ticket["calledAt"] is not None
        assert counter["status"] == "busy"
        assert counter["currentTicket"] == "ticket-1"

        async with db_manager.session() as session:
            stored = await session.get(Counter, "counter-1")
            assert stored is not None
            assert stored.current_ticket_id == "ticket-1"

    @pytest.mark.asyncio
    async def test_mark_called_unknown_counter_leaves_ticket_waiting(
        self,
        gateway: SqlTicketCounterGateway,
        db_manager: DatabaseManager,
    ) -> None:
        with pytest.raises(NotFoundError):
            await gateway.mark_called("ticket-1", "missing", AT)

        async with db_manager.session() as session:
            ticket = await session.get(Ticket, "ticket-1")
            assert ticket is not None
            assert ticket.status == "waiting"

    @pytest.mark.asyncio
    async def test_touch_counter_only_updates_activity(
        self,
        gateway: SqlTicketCounterGateway,
    ) -> None:
        counter = await gateway.touch_counter("counter-1", AT)

        assert counter["status"] == "active"
        assert counter["currentTicket"] is None
        assert counter["lastActivity"] is not None


class TestGatewayTimeout:
    @pytest.mark.asyncio
    async def test_hung_session_raises_store_error(self) -> None:
        @asynccontextmanager
        async def hanging_scope() -> AsyncGenerator[None, None]:
            await asyncio.sleep(10)
            yield None

        gateway = SqlTicketCounterGateway(hanging_scope, timeout_seconds=0.05)  # type: ignore[arg-type]

        with pytest.raises(StoreError) as exc_info:
            await gateway.mark_called("ticket-1", "counter-1", AT)
        assert exc_info.value.details == {"timeout_seconds": 0.05}

        with pytest.raises(StoreError):
            await gateway.touch_counter("counter-1", AT)
