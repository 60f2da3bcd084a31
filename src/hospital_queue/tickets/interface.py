"""
Ticket and counter handles plus the gateway the sequencer uses to apply state
transitions.

Tickets and counters are owned by the wider queue system; this core only reads
the fields it needs and asks the gateway to move them between states.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Protocol


class TicketPriority(str, Enum):
    """Ticket priority, highest first."""

    EMERGENCY = "emergency"
    PRIORITY = "priority"
    SENIOR = "senior"
    CHILD = "child"
    NORMAL = "normal"

    @property
    def rank(self) -> int:
        """Scheduling rank; a larger rank is dispatched first."""
        return _PRIORITY_RANK[self]

    @classmethod
    def coerce(cls, value: "TicketPriority | str | None") -> "TicketPriority":
        if value is None:
            return cls.NORMAL
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.NORMAL


_PRIORITY_RANK: dict[TicketPriority, int] = {
    TicketPriority.EMERGENCY: 4,
    TicketPriority.PRIORITY: 3,
    TicketPriority.SENIOR: 2,
    TicketPriority.CHILD: 1,
    TicketPriority.NORMAL: 0,
}


class TicketStatus(str, Enum):
    WAITING = "waiting"
    CALLED = "called"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CounterStatus(str, Enum):
    ACTIVE = "active"
    BUSY = "busy"
    INACTIVE = "inactive"


@dataclass(frozen=True)
class TicketRef:
    """Opaque handle to a ticket."""

    id: str
    ticket_number: str
    priority: TicketPriority = TicketPriority.NORMAL
    department_id: str | None = None


@dataclass(frozen=True)
class CounterRef:
    """Opaque handle to a service counter."""

    id: str
    counter_number: int
    department_id: str | None = None


class TicketCounterGateway(Protocol):
    """Ticket/counter persistence consumed by the sequencer.

    The transition methods return JSON-serializable snapshots that are
    forwarded as broadcast payloads.
    """

    async def get_ticket(self, ticket_id: str) -> TicketRef:
        """Raises ``NotFoundError`` for an unknown id."""
        ...

    async def get_counter(self, counter_id: str) -> CounterRef:
        """Raises ``NotFoundError`` for an unknown id."""
        ...

    async def mark_called(
        self,
        ticket_id: str,
        counter_id: str,
        at: datetime,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Ticket -> called at counter; counter -> busy with this ticket."""
        ...

    async def touch_counter(self, counter_id: str, at: datetime) -> dict[str, Any]:
        """Refresh the counter's last activity (recall path)."""
        ...
