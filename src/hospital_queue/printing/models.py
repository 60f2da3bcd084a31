"""
Print job models and ticket rendering.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

TICKET_SEPARATOR = "=" * 27


class PrintJobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    FAILED = "failed"


@dataclass(frozen=True)
class TicketPrintPayload:
    """What goes on a printed ticket."""

    ticket_number: str
    department_name: str = ""
    department_code: str = ""
    date: str = ""
    time: str = ""
    hospital_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticketNumber": self.ticket_number,
            "departmentName": self.department_name,
            "departmentCode": self.department_code,
            "date": self.date,
            "time": self.time,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(eq=False)
class PrintJob:
    payload: TicketPrintPayload
    status: PrintJobStatus = PrintJobStatus.PENDING
    retries: int = 0
    added_at: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=lambda: uuid4().hex)

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ticketNumber": self.payload.ticket_number,
            "status": self.status.value,
            "retries": self.retries,
            "addedAt": self.added_at.isoformat(),
        }


def render_ticket(payload: TicketPrintPayload, hospital_name: str) -> str:
    """Plain-text ticket for narrow receipt printers."""
    lines = [
        payload.hospital_name or hospital_name,
        TICKET_SEPARATOR,
        f"TICKET: {payload.ticket_number}",
        f"DEPT: {payload.department_code or payload.department_name}",
        f"DATE: {payload.date}",
        f"TIME: {payload.time}",
        TICKET_SEPARATOR,
        "Please wait for your number",
        "to be called. Thank you.",
        TICKET_SEPARATOR,
    ]
    return "\n".join(lines)
