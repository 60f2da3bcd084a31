"""
SQLAlchemy models for tickets and counters.

Only the columns the call core reads or writes are mapped here; the rest of the
ticket/counter schema belongs to the CRUD side of the system.
"""

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from hospital_queue.shared.database import Base
from hospital_queue.tickets.interface import (
    CounterRef,
    CounterStatus,
    TicketPriority,
    TicketRef,
    TicketStatus,
)


def _new_id() -> str:
    return str(uuid4())


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class Counter(Base):
    __tablename__ = "counters"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    counter_number: Mapped[int] = mapped_column(Integer, nullable=False)
    department_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CounterStatus.ACTIVE.value,
    )
    current_ticket_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    last_activity: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_ref(self) -> CounterRef:
        return CounterRef(
            id=self.id,
            counter_number=self.counter_number,
            department_id=self.department_id,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "counterNumber": self.counter_number,
            "departmentId": self.department_id,
            "status": self.status,
            "currentTicket": self.current_ticket_id,
            "lastActivity": _iso(self.last_activity),
        }


class Ticket(Base):
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    ticket_number: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    department_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    priority: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=TicketPriority.NORMAL.value,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=TicketStatus.WAITING.value,
    )
    assigned_counter_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("counters.id", ondelete="SET NULL"),
        nullable=True,
    )
    called_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_ref(self) -> TicketRef:
        return TicketRef(
            id=self.id,
            ticket_number=self.ticket_number,
            priority=TicketPriority.coerce(self.priority),
            department_id=self.department_id,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ticketNumber": self.ticket_number,
            "departmentId": self.department_id,
            "priority": self.priority,
            "status": self.status,
            "assignedCounter": self.assigned_counter_id,
            "calledAt": _iso(self.called_at),
        }
