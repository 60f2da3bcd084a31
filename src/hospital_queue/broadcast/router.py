"""
WebSocket endpoint for display screens, counter consoles and dispensers.

Clients receive ``{"event": ..., "data": ...}`` messages and subscribe to rooms
by sending ``{"action": "join", "room": "counter-<id>"}``.
"""

import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from hospital_queue.broadcast.hub import WebSocketHub
from hospital_queue.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["broadcast"])


@router.websocket("/ws")
async def broadcast_socket(websocket: WebSocket) -> None:
    hub: WebSocketHub = websocket.app.state.hub
    await websocket.accept()
    hub.register(websocket)
    logger.info("Broadcast client connected", extra={"clients": hub.connection_count})

    try:
        while True:
            try:
                message = json.loads(await websocket.receive_text())
            except ValueError:
                continue
            if not isinstance(message, dict):
                continue
            action = message.get("action")
            room = message.get("room")
            if not isinstance(room, str) or not room:
                continue
            if action == "join":
                hub.join(websocket, room)
                await websocket.send_json({"event": "joined", "data": {"room": room}})
            elif action == "leave":
                hub.leave(websocket, room)
    except WebSocketDisconnect:
        pass
    finally:
        hub.unregister(websocket)
        logger.info("Broadcast client disconnected", extra={"clients": hub.connection_count})
