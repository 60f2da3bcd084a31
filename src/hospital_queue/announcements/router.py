"""
API router for announcement audio.
"""

from typing import Annotated, Any

import anyio
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from hospital_queue.announcements.resolver import AnnouncementResolver

router = APIRouter(prefix="/api/audio", tags=["audio"])

# Ticket numbers become clip file names.
TICKET_NUMBER_PATTERN = r"^[A-Za-z0-9-]+$"


class AnnouncementRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ticket: str = Field(
        ...,
        min_length=1,
        max_length=32,
        pattern=TICKET_NUMBER_PATTERN,
        alias="ticketNumber",
    )
    counter: int = Field(..., ge=0, alias="counterNumber")
    is_recall: bool = Field(default=False, alias="isRecall")


class SampleAnnouncementRequest(AnnouncementRequest):
    ticket: str = Field(
        default="A001",
        min_length=1,
        max_length=32,
        pattern=TICKET_NUMBER_PATTERN,
        alias="ticketNumber",
    )
    counter: int = Field(default=1, ge=0, alias="counterNumber")


def get_resolver(request: Request) -> AnnouncementResolver:
    return request.app.state.resolver


@router.get("/status/{ticket}/{counter}")
async def audio_status(
    ticket: str,
    counter: int,
    resolver: Annotated[AnnouncementResolver, Depends(get_resolver)],
) -> dict[str, Any]:
    status = await anyio.to_thread.run_sync(resolver.audio_status, ticket, counter)
    return {"success": True, **status}


@router.post("/generate")
async def generate_audio(
    body: AnnouncementRequest,
    resolver: Annotated[AnnouncementResolver, Depends(get_resolver)],
) -> dict[str, Any]:
    """Resolve the clip and broadcast it, as the sequencer would."""
    generated = await resolver.resolve_and_broadcast(body.ticket, body.counter, body.is_recall)
    return {
        "success": True,
        "generated": generated,
        "ticket": body.ticket,
        "counter": body.counter,
        "isRecall": body.is_recall,
    }


@router.get("/files")
async def audio_files(
    resolver: Annotated[AnnouncementResolver, Depends(get_resolver)],
) -> dict[str, Any]:
    # Directory scans can be slow on network shares; keep them off the event loop.
    files = await anyio.to_thread.run_sync(resolver.list_audio_files)
    return {"success": True, "files": files}


@router.post("/test")
async def send_test_announcement(
    resolver: Annotated[AnnouncementResolver, Depends(get_resolver)],
    body: SampleAnnouncementRequest | None = None,
) -> dict[str, Any]:
    body = body or SampleAnnouncementRequest()
    result = await resolver.resolve_and_broadcast(body.ticket, body.counter, body.is_recall)
    return {
        "success": result,
        "ticketNumber": body.ticket,
        "counterNumber": body.counter,
        "isRecall": body.is_recall,
        "message": "Announcement sent successfully" if result else "Fell back to live speech",
    }
