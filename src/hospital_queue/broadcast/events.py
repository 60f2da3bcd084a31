"""
Broadcast event names.

Display screens, dispensers and counter consoles subscribe to these names, so
the string values are a wire contract and must not change.
"""

from enum import Enum


class BroadcastEvent(str, Enum):
    """Named events published by the call core."""

    VOICE_ANNOUNCEMENT = "urdu-voice-announcement"
    TICKET_STATUS_UPDATED = "ticket-status-updated"
    TICKET_RECALLED = "ticket-recalled"
    CALL_REQUEST_ADDED = "call-request-added"
    CALL_REQUEST_COMPLETED = "call-request-completed"
    RELOAD_ALL_COUNTERS = "reload-all-counters"
    PRINT_QUEUE_CLEAR = "print-queue-clear"
    COUNTER_STATUS_UPDATED = "counter-status-updated"
    SYSTEM_AUTO_RECOVERED = "system-auto-recovered"


class AnnouncementType(str, Enum):
    """`type` field of a voice announcement payload."""

    MP3 = "mp3_announcement"
    TTS = "tts_announcement"


def counter_room(counter_id: str) -> str:
    return f"counter-{counter_id}"
