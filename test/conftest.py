"""
Shared fixtures for the call core tests.
"""

import asyncio
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

from hospital_queue.broadcast.interface import RecordingBroadcaster
from hospital_queue.calls.sequencer import CallSequencer
from hospital_queue.calls.store import InMemoryCallRequestStore
from hospital_queue.config import SequencerSettings
from hospital_queue.shared.database import DatabaseManager
from hospital_queue.tickets.memory import InMemoryTicketCounterGateway

import hospital_queue.calls.models  # noqa: F401
import hospital_queue.tickets.models  # noqa: F401


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


async def instant_sleep(_: float) -> None:
    # Still yields so other tasks can interleave.
    await asyncio.sleep(0)


class FakeAnnouncer:
    """Records announcements instead of resolving audio."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, int | str, bool]] = []
        self.raise_error: Exception | None = None
        self.on_call = None

    async def resolve_and_broadcast(
        self,
        ticket_number: str,
        counter_number: int | str,
        is_recall: bool = False,
    ) -> bool:
        self.calls.append((ticket_number, counter_number, is_recall))
        if self.on_call is not None:
            await self.on_call()
        if self.raise_error is not None:
            raise self.raise_error
        return True


async def drain(sequencer: CallSequencer) -> None:
    """Finish scheduled cycles, then process whatever is still pending."""
    await sequencer.wait_for_idle()
    while await sequencer.process_next() is not None:
        pass


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def call_store() -> InMemoryCallRequestStore:
    return InMemoryCallRequestStore()


@pytest.fixture
def gateway() -> InMemoryTicketCounterGateway:
    gw = InMemoryTicketCounterGateway()
    gw.add_counter("counter-1", 1)
    gw.add_counter("counter-2", 2)
    return gw


@pytest.fixture
def announcer() -> FakeAnnouncer:
    return FakeAnnouncer()


@pytest.fixture
def sequencer_settings() -> SequencerSettings:
    return SequencerSettings(
        poll_interval_seconds=60,
        settle_delay_seconds=3,
        housekeeping_interval_seconds=3600,
    )


@pytest_asyncio.fixture
async def sequencer(
    call_store: InMemoryCallRequestStore,
    gateway: InMemoryTicketCounterGateway,
    announcer: FakeAnnouncer,
    broadcaster: RecordingBroadcaster,
    sequencer_settings: SequencerSettings,
    clock: FakeClock,
) -> AsyncGenerator[CallSequencer, None]:
    seq = CallSequencer(
        store=call_store,
        gateway=gateway,
        announcer=announcer,
        broadcaster=broadcaster,
        settings=sequencer_settings,
        clock=clock,
        sleep=instant_sleep,
    )
    yield seq
    await seq.stop()
    await seq.wait_for_idle()


@pytest_asyncio.fixture
async def db_manager(tmp_path: Path) -> AsyncGenerator[DatabaseManager, None]:
    """File-backed SQLite database with the service tables created."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}")
    await manager.create_all()
    yield manager
    await manager.close()
