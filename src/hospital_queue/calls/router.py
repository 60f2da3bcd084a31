"""
API router for the call queue.

Counter consoles call and recall tickets here; operators use the remaining
endpoints to inspect and restart the sequencer.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from hospital_queue.calls.schemas import (
    CallRequestAccepted,
    CallRequestCreate,
    ClearHistoryResponse,
    QueueStatusResponse,
)
from hospital_queue.calls.sequencer import CallSequencer, DuplicateFirstCall
from hospital_queue.shared.logging import get_logger
from hospital_queue.tickets.interface import TicketCounterGateway

logger = get_logger(__name__)

router = APIRouter(prefix="/api/smart-call", tags=["smart-call"])


def get_sequencer(request: Request) -> CallSequencer:
    """Dependency for the application's call sequencer."""
    return request.app.state.sequencer


def get_ticket_gateway(request: Request) -> TicketCounterGateway:
    return request.app.state.ticket_gateway


async def _enqueue(
    body: CallRequestCreate,
    is_recall: bool,
    sequencer: CallSequencer,
    gateway: TicketCounterGateway,
) -> CallRequestAccepted:
    ticket = await gateway.get_ticket(body.ticket_id)
    counter = await gateway.get_counter(body.counter_id)

    result = await sequencer.enqueue(
        ticket,
        counter,
        is_recall=is_recall,
        source_label=body.source_label,
        source_system=body.source_system,
    )
    if isinstance(result, DuplicateFirstCall):
        return CallRequestAccepted(
            request_id="duplicate",
            ticket_number=result.ticket_number,
            counter_number=counter.counter_number,
            status="duplicate_skipped",
            message="First call was already made recently",
        )

    return CallRequestAccepted(
        request_id=result.id,
        ticket_number=result.ticket_number,
        counter_number=result.counter_number,
        status="queued",
        message="Recall request accepted" if is_recall else "Call request accepted",
    )


@router.post(
    "/call",
    response_model=CallRequestAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue a first call",
)
async def call_ticket(
    body: CallRequestCreate,
    sequencer: Annotated[CallSequencer, Depends(get_sequencer)],
    gateway: Annotated[TicketCounterGateway, Depends(get_ticket_gateway)],
) -> CallRequestAccepted:
    """Queue a first call; repeats inside the dedup window are skipped."""
    return await _enqueue(body, False, sequencer, gateway)


@router.post(
    "/recall",
    response_model=CallRequestAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue a recall",
)
async def recall_ticket(
    body: CallRequestCreate,
    sequencer: Annotated[CallSequencer, Depends(get_sequencer)],
    gateway: Annotated[TicketCounterGateway, Depends(get_ticket_gateway)],
) -> CallRequestAccepted:
    return await _enqueue(body, True, sequencer, gateway)


@router.get("/queue-status", response_model=QueueStatusResponse)
async def queue_status(
    sequencer: Annotated[CallSequencer, Depends(get_sequencer)],
) -> QueueStatusResponse:
    return QueueStatusResponse(
        queue_status=await sequencer.get_queue_status(),
        system_status=sequencer.get_system_status(),
    )


@router.post("/start", response_model=QueueStatusResponse)
async def start_sequencer(
    sequencer: Annotated[CallSequencer, Depends(get_sequencer)],
) -> QueueStatusResponse:
    await sequencer.start()
    return QueueStatusResponse(
        queue_status=await sequencer.get_queue_status(),
        system_status=sequencer.get_system_status(),
        message="Call sequencer started",
    )


@router.post("/stop", response_model=QueueStatusResponse)
async def stop_sequencer(
    sequencer: Annotated[CallSequencer, Depends(get_sequencer)],
) -> QueueStatusResponse:
    await sequencer.stop()
    return QueueStatusResponse(
        queue_status=await sequencer.get_queue_status(),
        system_status=sequencer.get_system_status(),
        message="Call sequencer stopped",
    )


@router.delete("/clear-history", response_model=ClearHistoryResponse)
async def clear_history(
    sequencer: Annotated[CallSequencer, Depends(get_sequencer)],
) -> ClearHistoryResponse:
    cleared = sequencer.clear_call_history()
    logger.info("First call history cleared via API", extra={"cleared": cleared})
    return ClearHistoryResponse(
        message=f"Cleared {cleared} entries from first call history",
        cleared_count=cleared,
    )
