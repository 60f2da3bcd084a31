"""
In-memory ticket/counter gateway for local runs and tests.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from hospital_queue.shared.exceptions import NotFoundError
from hospital_queue.tickets.interface import (
    CounterRef,
    CounterStatus,
    TicketPriority,
    TicketRef,
    TicketStatus,
)


@dataclass
class TicketState:
    ref: TicketRef
    status: TicketStatus = TicketStatus.WAITING
    assigned_counter_id: str | None = None
    called_at: datetime | None = None


@dataclass
class CounterState:
    ref: CounterRef
    status: CounterStatus = CounterStatus.ACTIVE
    current_ticket_id: str | None = None
    last_activity: datetime | None = None


@dataclass
class InMemoryTicketCounterGateway:
    """Keeps tickets and counters in dicts and records every transition."""

    tickets: dict[str, TicketState] = field(default_factory=dict)
    counters: dict[str, CounterState] = field(default_factory=dict)
    transitions: list[tuple[str, str]] = field(default_factory=list)

    def add_ticket(
        self,
        ticket_id: str,
        ticket_number: str,
        priority: TicketPriority = TicketPriority.NORMAL,
    ) -> TicketRef:
        ref = TicketRef(id=ticket_id, ticket_number=ticket_number, priority=priority)
        self.tickets[ticket_id] = TicketState(ref=ref)
        return ref

    def add_counter(self, counter_id: str, counter_number: int) -> CounterRef:
        ref = CounterRef(id=counter_id, counter_number=counter_number)
        self.counters[counter_id] = CounterState(ref=ref)
        return ref

    async def get_ticket(self, ticket_id: str) -> TicketRef:
        ticket = self.tickets.get(ticket_id)
        if ticket is None:
            raise NotFoundError(f"Ticket not found: {ticket_id}")
        return ticket.ref

    async def get_counter(self, counter_id: str) -> CounterRef:
        counter = self.counters.get(counter_id)
        if counter is None:
            raise NotFoundError(f"Counter not found: {counter_id}")
        return counter.ref

    async def mark_called(
        self,
        ticket_id: str,
        counter_id: str,
        at: datetime,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        ticket = self.tickets.get(ticket_id)
        if ticket is None:
            raise NotFoundError(f"Ticket not found: {ticket_id}")
        counter = self.counters.get(counter_id)
        if counter is None:
            raise NotFoundError(f"Counter not found: {counter_id}")

        ticket.status = TicketStatus.CALLED
        ticket.assigned_counter_id = counter_id
        ticket.called_at = at
        counter.status = CounterStatus.BUSY
        counter.current_ticket_id = ticket_id
        counter.last_activity = at

        self.transitions.append(("called", ticket_id))
        return self._ticket_payload(ticket), self._counter_payload(counter)

    async def touch_counter(self, counter_id: str, at: datetime) -> dict[str, Any]:
        counter = self.counters.get(counter_id)
        if counter is None:
            raise NotFoundError(f"Counter not found: {counter_id}")
        counter.last_activity = at
        self.transitions.append(("touched", counter_id))
        return self._counter_payload(counter)

    @staticmethod
    def _ticket_payload(ticket: TicketState) -> dict[str, Any]:
        return {
            "id": ticket.ref.id,
            "ticketNumber": ticket.ref.ticket_number,
            "priority": ticket.ref.priority.value,
            "status": ticket.status.value,
            "assignedCounter": ticket.assigned_counter_id,
            "calledAt": ticket.called_at.isoformat() if ticket.called_at else None,
        }

    @staticmethod
    def _counter_payload(counter: CounterState) -> dict[str, Any]:
        return {
            "id": counter.ref.id,
            "counterNumber": counter.ref.counter_number,
            "status": counter.status.value,
            "currentTicket": counter.current_ticket_id,
            "lastActivity": counter.last_activity.isoformat() if counter.last_activity else None,
        }
