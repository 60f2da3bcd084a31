"""
Broadcast channel interface.

Publish-only from the core's point of view: components emit named events with
JSON-serializable payloads, optionally scoped to a room.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from hospital_queue.broadcast.events import BroadcastEvent


class Broadcaster(ABC):
    """Abstract broadcast channel."""

    @abstractmethod
    async def emit(
        self,
        event: BroadcastEvent | str,
        payload: dict[str, Any] | None = None,
        room: str | None = None,
    ) -> None:
        """Deliver an event to every listener, or only to listeners of ``room``."""
        ...


@dataclass(frozen=True)
class EmittedEvent:
    name: str
    payload: dict[str, Any]
    room: str | None = None


@dataclass
class RecordingBroadcaster(Broadcaster):
    """Broadcaster that keeps every emitted event in memory.

    Used by tests and by the CLI, where nobody is listening.
    """

    events: list[EmittedEvent] = field(default_factory=list)

    async def emit(
        self,
        event: BroadcastEvent | str,
        payload: dict[str, Any] | None = None,
        room: str | None = None,
    ) -> None:
        name = event.value if isinstance(event, BroadcastEvent) else str(event)
        self.events.append(EmittedEvent(name=name, payload=dict(payload or {}), room=room))

    def named(self, event: BroadcastEvent | str) -> list[EmittedEvent]:
        name = event.value if isinstance(event, BroadcastEvent) else str(event)
        return [e for e in self.events if e.name == name]
