"""
WebSocket broadcast hub.

Every connected display/counter/dispenser socket receives global events;
room-scoped events only reach sockets that joined the room.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Protocol

from hospital_queue.broadcast.events import BroadcastEvent
from hospital_queue.broadcast.interface import Broadcaster
from hospital_queue.shared.logging import get_logger

logger = get_logger(__name__)


class JsonSocket(Protocol):
    """The part of ``fastapi.WebSocket`` the hub relies on."""

    async def send_json(self, data: Any, mode: str = "text") -> None: ...


@dataclass
class _Connection:
    socket: JsonSocket
    rooms: set[str] = field(default_factory=set)


class WebSocketHub(Broadcaster):
    """Fan-out of broadcast events to connected WebSocket clients.

    Connections are keyed by ``id()``: starlette sockets are mappings and
    therefore unhashable.
    """

    def __init__(self, send_timeout_seconds: float = 2.0) -> None:
        self._send_timeout = send_timeout_seconds
        self._connections: dict[int, _Connection] = {}

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def register(self, socket: JsonSocket) -> None:
        self._connections.setdefault(id(socket), _Connection(socket=socket))

    def unregister(self, socket: JsonSocket) -> None:
        self._connections.pop(id(socket), None)

    def join(self, socket: JsonSocket, room: str) -> None:
        self._connections.setdefault(id(socket), _Connection(socket=socket)).rooms.add(room)

    def leave(self, socket: JsonSocket, room: str) -> None:
        connection = self._connections.get(id(socket))
        if connection is not None:
            connection.rooms.discard(room)

    async def emit(
        self,
        event: BroadcastEvent | str,
        payload: dict[str, Any] | None = None,
        room: str | None = None,
    ) -> None:
        name = event.value if isinstance(event, BroadcastEvent) else str(event)
        message = {"event": name, "data": payload or {}}

        targets = [
            connection.socket
            for connection in list(self._connections.values())
            if room is None or room in connection.rooms
        ]
        if not targets:
            return

        results = await asyncio.gather(
            *(self._send(socket, message) for socket in targets),
            return_exceptions=True,
        )
        for socket, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Dropping unreachable broadcast client",
                    extra={"event": name, "error": repr(result)},
                )
                self.unregister(socket)

    async def _send(self, socket: JsonSocket, message: dict[str, Any]) -> None:
        await asyncio.wait_for(socket.send_json(message), timeout=self._send_timeout)
