"""
Call request models.

``CallRequest`` is the value the sequencer works with; ``CallRequestRecord`` is
its SQLAlchemy row in the ``call_requests`` table.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from hospital_queue.shared.database import Base
from hospital_queue.tickets.interface import CounterRef, TicketPriority, TicketRef


class CallKind(str, Enum):
    CALL = "call"
    RECALL = "recall"


class CallRequestStatus(str, Enum):
    """Call request lifecycle.

    Success removes the row, so ``COMPLETED`` is never written by the
    sequencer; it is kept for rows created by older tooling.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES = (CallRequestStatus.PENDING, CallRequestStatus.PROCESSING)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CallRequest:
    """A pending or in-flight request to announce a ticket at a counter."""

    ticket_id: str
    ticket_number: str
    counter_id: str
    counter_number: int
    kind: CallKind = CallKind.CALL
    is_recall: bool = False
    priority: TicketPriority = TicketPriority.NORMAL
    status: CallRequestStatus = CallRequestStatus.PENDING
    source_label: str = ""
    source_system: str = "counter_interface"
    requested_at: datetime = field(default_factory=_utcnow)
    processing_started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    id: str = field(default_factory=lambda: str(uuid4()))

    @classmethod
    def new(
        cls,
        ticket: TicketRef,
        counter: CounterRef,
        kind: CallKind,
        is_recall: bool,
        source_label: str,
        requested_at: datetime,
        source_system: str = "counter_interface",
    ) -> "CallRequest":
        return cls(
            ticket_id=ticket.id,
            ticket_number=ticket.ticket_number,
            counter_id=counter.id,
            counter_number=counter.counter_number,
            kind=kind,
            is_recall=is_recall,
            priority=TicketPriority.coerce(ticket.priority),
            source_label=source_label,
            source_system=source_system,
            requested_at=requested_at,
        )

    def copy(self) -> "CallRequest":
        return replace(self)

    def summary(self) -> dict[str, Any]:
        return {
            "requestId": self.id,
            "ticketNumber": self.ticket_number,
            "counterNumber": self.counter_number,
            "type": self.kind.value,
            "isRecall": self.is_recall,
        }


class CallRequestRecord(Base):
    """Row in ``call_requests``."""

    __tablename__ = "call_requests"
    __table_args__ = (
        Index("ix_call_requests_dispatch_order", "status", "priority_rank", "requested_at"),
        Index("ix_call_requests_ticket_kind", "ticket_id", "kind"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    ticket_id: Mapped[str] = mapped_column(String(36), nullable=False)
    ticket_number: Mapped[str] = mapped_column(String(32), nullable=False)
    counter_id: Mapped[str] = mapped_column(String(36), nullable=False)
    counter_number: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(10), nullable=False, default=CallKind.CALL.value)
    is_recall: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=TicketPriority.NORMAL.value,
    )
    # Derived from ``priority``; sorting on the enum string would put
    # "senior" ahead of "emergency".
    priority_rank: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CallRequestStatus.PENDING.value,
    )
    source_label: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    source_system: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="counter_interface",
    )
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    processing_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        index=True,
    )

    @classmethod
    def from_domain(cls, request: CallRequest) -> "CallRequestRecord":
        return cls(
            id=request.id,
            ticket_id=request.ticket_id,
            ticket_number=request.ticket_number,
            counter_id=request.counter_id,
            counter_number=request.counter_number,
            kind=request.kind.value,
            is_recall=request.is_recall,
            priority=request.priority.value,
            priority_rank=request.priority.rank,
            status=request.status.value,
            source_label=request.source_label,
            source_system=request.source_system,
            requested_at=request.requested_at,
            processing_started_at=request.processing_started_at,
            completed_at=request.completed_at,
            error=request.error,
            created_at=request.requested_at,
        )

    def to_domain(self) -> CallRequest:
        return CallRequest(
            id=self.id,
            ticket_id=self.ticket_id,
            ticket_number=self.ticket_number,
            counter_id=self.counter_id,
            counter_number=self.counter_number,
            kind=CallKind(self.kind),
            is_recall=self.is_recall,
            priority=TicketPriority.coerce(self.priority),
            status=CallRequestStatus(self.status),
            source_label=self.source_label,
            source_system=self.source_system,
            requested_at=self.requested_at,
            processing_started_at=self.processing_started_at,
            completed_at=self.completed_at,
            error=self.error,
        )
