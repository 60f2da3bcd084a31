"""
Pydantic schemas for the call queue API.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class CallRequestCreate(BaseModel):
    """Body of ``POST /call`` and ``POST /recall``."""

    model_config = ConfigDict(populate_by_name=True)

    ticket_id: str = Field(..., min_length=1, alias="ticketId", description="Ticket to announce")
    counter_id: str = Field(..., min_length=1, alias="counterId", description="Counter to send it to")
    source_label: str = Field(
        default="",
        max_length=100,
        alias="sourceLabel",
        description="Diagnostic origin tag; defaults to the counter number",
    )
    source_system: str = Field(default="counter_interface", max_length=50, alias="source")


class CallRequestAccepted(BaseModel):
    success: bool = True
    request_id: str = Field(..., serialization_alias="requestId")
    ticket_number: str = Field(..., serialization_alias="ticketNumber")
    counter_number: int | None = Field(default=None, serialization_alias="counterNumber")
    status: Literal["queued", "duplicate_skipped"]
    message: str


class QueueStatusResponse(BaseModel):
    success: bool = True
    queue_status: dict[str, Any] = Field(..., serialization_alias="queueStatus")
    system_status: dict[str, Any] = Field(..., serialization_alias="systemStatus")
    message: str | None = None


class ClearHistoryResponse(BaseModel):
    success: bool = True
    message: str
    cleared_count: int = Field(..., serialization_alias="clearedCount")
