"""
API router for ticket printing.
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, ConfigDict, Field

from hospital_queue.printing.dispatcher import PrintDispatcher
from hospital_queue.printing.models import TicketPrintPayload

router = APIRouter(prefix="/api/print", tags=["printing"])


class PrintTicketRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ticket_number: str = Field(..., min_length=1, max_length=32, alias="ticketNumber")
    department_name: str = Field(default="", alias="departmentName")
    department_code: str = Field(default="", alias="departmentCode")
    hospital_name: str | None = Field(default=None, alias="hospitalName")
    date: str = ""
    time: str = ""

    def to_payload(self) -> TicketPrintPayload:
        return TicketPrintPayload(
            ticket_number=self.ticket_number,
            department_name=self.department_name,
            department_code=self.department_code,
            date=self.date,
            time=self.time,
            hospital_name=self.hospital_name,
        )


def get_print_dispatcher(request: Request) -> PrintDispatcher:
    return request.app.state.print_dispatcher


@router.post("/ticket", status_code=status.HTTP_202_ACCEPTED)
async def print_ticket(
    body: PrintTicketRequest,
    dispatcher: Annotated[PrintDispatcher, Depends(get_print_dispatcher)],
) -> dict[str, Any]:
    """Queue a ticket for printing and return immediately."""
    job_id = dispatcher.enqueue_print_job(body.to_payload())
    return {
        "success": True,
        "jobId": job_id,
        "message": f"Ticket {body.ticket_number} printing started",
        "queuePosition": len(dispatcher.jobs),
    }


@router.get("/status")
async def print_status(
    dispatcher: Annotated[PrintDispatcher, Depends(get_print_dispatcher)],
) -> dict[str, Any]:
    return {"success": True, **dispatcher.get_status()}


@router.post("/clear")
async def clear_print_queue(
    dispatcher: Annotated[PrintDispatcher, Depends(get_print_dispatcher)],
) -> dict[str, Any]:
    cleared = dispatcher.clear_queue()
    return {
        "success": True,
        "message": f"Cleared {cleared} items from print queue",
        "cleared": cleared,
    }
