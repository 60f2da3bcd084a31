"""
Tests for the WebSocket broadcast hub.
"""

import asyncio
from typing import Any

import pytest

from hospital_queue.broadcast.events import BroadcastEvent, counter_room
from hospital_queue.broadcast.hub import WebSocketHub


class FakeSocket:
    def __init__(self, fail: bool = False, delay: float = 0.0) -> None:
        self.fail = fail
        self.delay = delay
        self.received: list[dict[str, Any]] = []

    async def send_json(self, data: Any, mode: str = "text") -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionResetError("socket closed")
        self.received.append(data)


class TestWebSocketHub:
    @pytest.mark.asyncio
    async def test_global_event_reaches_everyone(self) -> None:
        hub = WebSocketHub()
        screen, console = FakeSocket(), FakeSocket()
        hub.register(screen)
        hub.register(console)

        await hub.emit(BroadcastEvent.RELOAD_ALL_COUNTERS)

        assert screen.received == [{"event": "reload-all-counters", "data": {}}]
        assert console.received == screen.received

    @pytest.mark.asyncio
    async def test_room_event_reaches_members_only(self) -> None:
        hub = WebSocketHub()
        member, outsider = FakeSocket(), FakeSocket()
        hub.register(member)
        hub.register(outsider)
        hub.join(member, counter_room("c1"))

        await hub.emit(BroadcastEvent.COUNTER_STATUS_UPDATED, {"counter": {"id": "c1"}}, room="counter-c1")

        assert member.received == [
            {"event": "counter-status-updated", "data": {"counter": {"id": "c1"}}}
        ]
        assert outsider.received == []

    @pytest.mark.asyncio
    async def test_leave_room(self) -> None:
        hub = WebSocketHub()
        socket = FakeSocket()
        hub.join(socket, "dispenser-room")
        hub.leave(socket, "dispenser-room")

        await hub.emit("print-queue-clear", {"recoveredJobs": 1}, room="dispenser-room")

        assert socket.received == []
        assert hub.connection_count == 1

    @pytest.mark.asyncio
    async def test_failing_client_is_dropped(self) -> None:
        hub = WebSocketHub()
        healthy, broken = FakeSocket(), FakeSocket(fail=True)
        hub.register(healthy)
        hub.register(broken)

        await hub.emit(BroadcastEvent.TICKET_RECALLED, {"ticket": {"ticketNumber": "A001"}})

        assert len(healthy.received) == 1
        assert hub.connection_count == 1

    @pytest.mark.asyncio
    async def test_slow_client_does_not_block_others(self) -> None:
        hub = WebSocketHub(send_timeout_seconds=0.05)
        fast, slow = FakeSocket(), FakeSocket(delay=5)
        hub.register(fast)
        hub.register(slow)

        await asyncio.wait_for(hub.emit(BroadcastEvent.RELOAD_ALL_COUNTERS), timeout=2)

        assert len(fast.received) == 1
        assert hub.connection_count == 1

    @pytest.mark.asyncio
    async def test_unregister_is_idempotent(self) -> None:
        hub = WebSocketHub()
        socket = FakeSocket()
        hub.register(socket)

        hub.unregister(socket)
        hub.unregister(socket)

        await hub.emit(BroadcastEvent.RELOAD_ALL_COUNTERS)
        assert socket.received == []
