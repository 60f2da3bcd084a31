"""
SQLAlchemy-backed ticket/counter gateway.
"""

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from hospital_queue.shared.exceptions import NotFoundError, StoreError
from hospital_queue.shared.logging import get_logger
from hospital_queue.tickets.interface import CounterRef, CounterStatus, TicketRef, TicketStatus
from hospital_queue.tickets.models import Counter, Ticket

logger = get_logger(__name__)

T = TypeVar("T")

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class SqlTicketCounterGateway:
    """Applies call/recall state transitions in one transaction each.

    Args:
        session_scope: Factory returning a transactional session context,
            typically ``DatabaseManager.session``.
        timeout_seconds: Upper bound for each operation.
    """

    def __init__(self, session_scope: SessionScope, timeout_seconds: float = 5.0) -> None:
        self._session_scope = session_scope
        self._timeout = timeout_seconds

    async def _run(self, op: str, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async def _in_session() -> T:
            async with self._session_scope() as session:
                return await fn(session)

        try:
            return await asyncio.wait_for(_in_session(), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise StoreError(
                f"Ticket store timed out during {op}",
                details={"timeout_seconds": self._timeout},
            ) from exc

    @staticmethod
    async def _ticket(session: AsyncSession, ticket_id: str) -> Ticket:
        ticket = await session.get(Ticket, ticket_id)
        if ticket is None:
            raise NotFoundError(f"Ticket not found: {ticket_id}")
        return ticket

    @staticmethod
    async def _counter(session: AsyncSession, counter_id: str) -> Counter:
        counter = await session.get(Counter, counter_id)
        if counter is None:
            raise NotFoundError(f"Counter not found: {counter_id}")
        return counter

    async def get_ticket(self, ticket_id: str) -> TicketRef:
        async def _get(session: AsyncSession) -> TicketRef:
            return (await self._ticket(session, ticket_id)).to_ref()

        return await self._run("get_ticket", _get)

    async def get_counter(self, counter_id: str) -> CounterRef:
        async def _get(session: AsyncSession) -> CounterRef:
            return (await self._counter(session, counter_id)).to_ref()

        return await self._run("get_counter", _get)

    async def mark_called(
        self,
        ticket_id: str,
        counter_id: str,
        at: datetime,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        async def _mark(session: AsyncSession) -> tuple[dict[str, Any], dict[str, Any]]:
            ticket = await self._ticket(session, ticket_id)
            counter = await self._counter(session, counter_id)

            ticket.status = TicketStatus.CALLED.value
            ticket.assigned_counter_id = counter.id
            ticket.called_at = at

            counter.status = CounterStatus.BUSY.value
            counter.current_ticket_id = ticket.id
            counter.last_activity = at

            await session.flush()
            return ticket.to_payload(), counter.to_payload()

        payloads = await self._run("mark_called", _mark)
        logger.debug(
            "Ticket marked called",
            extra={"ticket_id": ticket_id, "counter_id": counter_id},
        )
        return payloads

    async def touch_counter(self, counter_id: str, at: datetime) -> dict[str, Any]:
        async def _touch(session: AsyncSession) -> dict[str, Any]:
            counter = await self._counter(session, counter_id)
            counter.last_activity = at
            await session.flush()
            return counter.to_payload()

        return await self._run("touch_counter", _touch)
