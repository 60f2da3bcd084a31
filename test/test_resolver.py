"""
Tests for the announcement resolver.
"""

import os
import time
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from hospital_queue.announcements.phrase import build_announcement
from hospital_queue.announcements.resolver import AnnouncementResolver, build_resolver
from hospital_queue.announcements.synthesis import SpeechStrategy
from hospital_queue.broadcast.events import BroadcastEvent
from hospital_queue.broadcast.interface import Broadcaster, RecordingBroadcaster
from hospital_queue.config import AudioSettings
from hospital_queue.shared.exceptions import ValidationError

from conftest import FakeClock


class WritingStrategy(SpeechStrategy):
    """Writes a fixed number of bytes to the destination."""

    def __init__(self, name: str = "writer", size: int = 500) -> None:
        self.name = name
        self.size = size
        self.calls: list[tuple[str, Path]] = []

    async def attempt(self, text: str, destination: Path) -> Path | None:
        self.calls.append((text, destination))
        destination.write_bytes(b"\xff" * self.size)
        return destination


class NoClipStrategy(SpeechStrategy):
    name = "no_clip"

    def __init__(self) -> None:
        self.calls = 0

    async def attempt(self, text: str, destination: Path) -> Path | None:
        self.calls += 1
        return None


class ExplodingStrategy(SpeechStrategy):
    name = "exploding"

    async def attempt(self, text: str, destination: Path) -> Path | None:
        raise RuntimeError("sound card missing")


def make_resolver(
    tmp_path: Path,
    broadcaster: RecordingBroadcaster,
    strategies: list[SpeechStrategy],
    clock: FakeClock | None = None,
    sleeps: list[float] | None = None,
) -> AnnouncementResolver:
    async def record_sleep(seconds: float) -> None:
        if sleeps is not None:
            sleeps.append(seconds)

    kwargs = {"clock": clock} if clock is not None else {}
    return AnnouncementResolver(
        audio_dir=tmp_path / "audio",
        broadcaster=broadcaster,
        strategies=strategies,
        base_url="/audio/ur/",
        min_valid_bytes=100,
        sleep=record_sleep,
        **kwargs,
    )


class TestResolveAndBroadcast:
    @pytest.mark.asyncio
    async def test_existing_clip_is_reused(
        self,
        tmp_path: Path,
        broadcaster: RecordingBroadcaster,
        clock: FakeClock,
    ) -> None:
        writer = WritingStrategy()
        resolver = make_resolver(tmp_path, broadcaster, [writer], clock)
        resolver.audio_dir.mkdir(parents=True)
        resolver.path_for("A001", 1).write_bytes(b"\x00" * 2048)

        assert await resolver.resolve_and_broadcast("A001", 1) is True

        assert writer.calls == []
        [event] = broadcaster.named(BroadcastEvent.VOICE_ANNOUNCEMENT)
        assert event.payload == {
            "type": "mp3_announcement",
            "audioUrl": "/audio/ur/A001-counter1.mp3",
            "ticketNumber": "A001",
            "counterNumber": 1,
            "isRecall": False,
            "timestamp": clock.now.isoformat(),
        }

    @pytest.mark.asyncio
    async def test_missing_clip_is_generated(
        self,
        tmp_path: Path,
        broadcaster: RecordingBroadcaster,
    ) -> None:
        writer = WritingStrategy()
        resolver = make_resolver(tmp_path, broadcaster, [writer])

        assert await resolver.resolve_and_broadcast("B002", 3, is_recall=True) is True

        [(text, destination)] = writer.calls
        assert text == build_announcement("B002", 3, is_recall=True)
        assert destination.name == "B002-counter3.mp3"
        [event] = broadcaster.events
        assert event.payload["type"] == "mp3_announcement"
        assert event.payload["isRecall"] is True

    @pytest.mark.asyncio
    async def test_truncated_clip_is_regenerated(
        self,
        tmp_path: Path,
        broadcaster: RecordingBroadcaster,
    ) -> None:
        writer = WritingStrategy()
        resolver = make_resolver(tmp_path, broadcaster, [writer])
        resolver.audio_dir.mkdir(parents=True)
        resolver.path_for("A001", 1).write_bytes(b"\x00" * 100)

        assert await resolver.resolve_and_broadcast("A001", 1) is True
        assert len(writer.calls) == 1
        assert resolver.path_for("A001", 1).stat().st_size == 500

    @pytest.mark.asyncio
    async def test_strategies_tried_in_order(
        self,
        tmp_path: Path,
        broadcaster: RecordingBroadcaster,
    ) -> None:
        tiny = WritingStrategy("tiny", size=10)
        none = NoClipStrategy()
        good = WritingStrategy("good", size=400)
        resolver = make_resolver(tmp_path, broadcaster, [ExplodingStrategy(), tiny, none, good])

        assert await resolver.resolve_and_broadcast("C001", 4) is True

        assert len(tiny.calls) == 1
        assert none.calls == 1
        assert len(good.calls) == 1
        assert resolver.path_for("C001", 4).stat().st_size == 400

    @pytest.mark.asyncio
    async def test_live_speech_fallback_when_all_strategies_fail(
        self,
        tmp_path: Path,
        broadcaster: RecordingBroadcaster,
        clock: FakeClock,
    ) -> None:
        tiny = WritingStrategy("tiny", size=10)
        resolver = make_resolver(tmp_path, broadcaster, [NoClipStrategy(), tiny], clock)

        assert await resolver.resolve_and_broadcast("E001", 2) is False

        [event] = broadcaster.named(BroadcastEvent.VOICE_ANNOUNCEMENT)
        assert event.payload == {
            "type": "tts_announcement",
            "message": build_announcement("E001", 2),
            "ticketNumber": "E001",
            "counterNumber": 2,
            "isRecall": False,
            "timestamp": clock.now.isoformat(),
        }
        assert not resolver.path_for("E001", 2).exists()

    @pytest.mark.asyncio
    async def test_clip_broadcast_error_falls_back_to_live_speech(self, tmp_path: Path) -> None:
        broadcaster = AsyncMock(spec=Broadcaster)
        broadcaster.emit.side_effect = [RuntimeError("socket gone"), None]
        resolver = AnnouncementResolver(
            audio_dir=tmp_path,
            broadcaster=broadcaster,
            strategies=[],
        )
        resolver.path_for("A001", 1).write_bytes(b"\x00" * 500)

        assert await resolver.resolve_and_broadcast("A001", 1) is False

        assert broadcaster.emit.await_count == 2
        event, payload = broadcaster.emit.await_args.args
        assert event == BroadcastEvent.VOICE_ANNOUNCEMENT
        assert payload["type"] == "tts_announcement"

    @pytest.mark.asyncio
    async def test_aclose_closes_strategies(self, tmp_path: Path, broadcaster: RecordingBroadcaster) -> None:
        strategy = MagicMock(spec=SpeechStrategy)
        strategy.aclose = AsyncMock()
        resolver = make_resolver(tmp_path, broadcaster, [strategy])

        await resolver.aclose()

        strategy.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_strategies_falls_back(
        self,
        tmp_path: Path,
        broadcaster: RecordingBroadcaster,
    ) -> None:
        resolver = make_resolver(tmp_path, broadcaster, [])

        assert await resolver.resolve_and_broadcast("A001", 1) is False
        assert broadcaster.events[0].payload["type"] == "tts_announcement"

    @pytest.mark.asyncio
    async def test_ticket_number_cannot_escape_audio_dir(
        self,
        tmp_path: Path,
        broadcaster: RecordingBroadcaster,
    ) -> None:
        writer = WritingStrategy()
        resolver = make_resolver(tmp_path, broadcaster, [writer])

        assert await resolver.resolve_and_broadcast("../../pwned", 1) is False

        assert writer.calls == []
        assert not (tmp_path / "pwned-counter1.mp3").exists()
        assert not (tmp_path.parent / "pwned-counter1.mp3").exists()
        [event] = broadcaster.events
        assert event.payload["type"] == "tts_announcement"

        with pytest.raises(ValidationError):
            await resolver.generate("../escape", 1)
        with pytest.raises(ValidationError):
            resolver.audio_status("../escape", 1)
        assert writer.calls == []


class TestClipHousekeeping:
    def test_audio_status(self, tmp_path: Path, broadcaster: RecordingBroadcaster) -> None:
        resolver = make_resolver(tmp_path, broadcaster, [])
        resolver.audio_dir.mkdir(parents=True)

        missing = resolver.audio_status("A001", 1)
        assert missing["exists"] is False
        assert missing["size"] == 0
        assert missing["isValid"] is False

        resolver.path_for("A001", 1).write_bytes(b"\x00" * 50)
        small = resolver.audio_status("A001", 1)
        assert small["exists"] is True
        assert small["isValid"] is False
        assert small["url"] == "/audio/ur/A001-counter1.mp3"

    def test_list_and_stats(self, tmp_path: Path, broadcaster: RecordingBroadcaster) -> None:
        resolver = make_resolver(tmp_path, broadcaster, [])
        resolver.audio_dir.mkdir(parents=True)
        resolver.path_for("A001", 1).write_bytes(b"\x00" * 1024)
        resolver.path_for("B001", 3).write_bytes(b"\x00" * 2048)
        (resolver.audio_dir / "notes.txt").write_text("ignored")

        files = resolver.list_audio_files()
        stats = resolver.audio_stats()

        assert [f["filename"] for f in files] == ["A001-counter1.mp3", "B001-counter3.mp3"]
        assert stats["totalFiles"] == 2
        assert stats["totalSize"] == 3072
        assert stats["totalSizeMB"] == 0.0

    def test_listing_missing_directory(self, tmp_path: Path, broadcaster: RecordingBroadcaster) -> None:
        resolver = make_resolver(tmp_path, broadcaster, [])

        assert resolver.list_audio_files() == []
        assert resolver.cleanup_old_files() == 0

    def test_cleanup_old_files(self, tmp_path: Path, broadcaster: RecordingBroadcaster) -> None:
        resolver = make_resolver(tmp_path, broadcaster, [])
        resolver.audio_dir.mkdir(parents=True)
        old = resolver.path_for("A001", 1)
        fresh = resolver.path_for("A002", 1)
        old.write_bytes(b"\x00" * 200)
        fresh.write_bytes(b"\x00" * 200)
        forty_days_ago = time.time() - 40 * 86400
        os.utime(old, (forty_days_ago, forty_days_ago))

        assert resolver.cleanup_old_files(days=30) == 1
        assert not old.exists()
        assert fresh.exists()


class TestGenerateCommon:
    @pytest.mark.asyncio
    async def test_skips_existing_and_counts(
        self,
        tmp_path: Path,
        broadcaster: RecordingBroadcaster,
    ) -> None:
        writer = WritingStrategy()
        sleeps: list[float] = []
        resolver = make_resolver(tmp_path, broadcaster, [writer], sleeps=sleeps)
        resolver.audio_dir.mkdir(parents=True)
        resolver.path_for("A001", 1).write_bytes(b"\x00" * 500)

        result = await resolver.generate_common([("A001", 1), ("A002", 1), ("A003", 2)], pause_seconds=1.0)

        assert result == {"success": 3, "failed": 0, "total": 3}
        assert [d.name for _, d in writer.calls] == ["A002-counter1.mp3", "A003-counter2.mp3"]
        assert sleeps == [1.0]
        assert broadcaster.events == []

    @pytest.mark.asyncio
    async def test_counts_failures(self, tmp_path: Path, broadcaster: RecordingBroadcaster) -> None:
        resolver = make_resolver(tmp_path, broadcaster, [NoClipStrategy()])

        result = await resolver.generate_common([("A001", 1), ("A002", 1)], pause_seconds=0)

        assert result == {"success": 0, "failed": 2, "total": 2}


class TestBuildResolver:
    def test_respects_disabled_strategies(self, tmp_path: Path, broadcaster: RecordingBroadcaster) -> None:
        settings = AudioSettings(directory=tmp_path, google_tts_enabled=False)

        resolver = build_resolver(settings, broadcaster)

        assert [s.name for s in resolver.strategies] == ["powershell_system_speech", "sapi_vbscript"]
        assert resolver.audio_dir == tmp_path
