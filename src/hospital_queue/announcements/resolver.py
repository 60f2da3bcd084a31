"""
Audio announcement resolver.

Turns (ticket number, counter number) into a playable announcement: reuse a
valid clip from disk, otherwise synthesize one, otherwise tell the display
screens to speak the phrase themselves. Also carries the clip housekeeping
used by the audio API and CLI.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from hospital_queue.announcements.phrase import build_announcement, filename_for
from hospital_queue.announcements.synthesis import SpeechStrategy, default_speech_strategies
from hospital_queue.broadcast.events import AnnouncementType, BroadcastEvent
from hospital_queue.broadcast.interface import Broadcaster
from hospital_queue.config import AudioSettings
from hospital_queue.shared.exceptions import ValidationError
from hospital_queue.shared.logging import get_logger

logger = get_logger(__name__)

# Ticket/counter pairs pre-generated by ``generate_common``.
COMMON_PATTERNS: tuple[tuple[str, int], ...] = (
    # Emergency
    ("E001", 1), ("E002", 1), ("E003", 1),
    # General OPD
    ("A001", 1), ("A002", 1), ("A003", 1), ("A004", 2),
    ("A005", 2), ("A006", 2), ("A007", 3), ("A008", 3),
    # Cardiology
    ("B001", 3), ("B002", 3), ("B003", 3), ("B004", 4), ("B005", 4),
    # Orthopedics
    ("C001", 4), ("C002", 4), ("C003", 5), ("C004", 5),
    # Pediatrics
    ("D001", 5), ("D002", 5), ("D003", 6), ("D004", 6),
    # Dental
    ("F001", 6), ("F002", 6), ("F003", 7), ("F004", 7),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnnouncementResolver:
    """Resolve announcement clips and broadcast them to display screens."""

    def __init__(
        self,
        audio_dir: Path,
        broadcaster: Broadcaster,
        strategies: Sequence[SpeechStrategy],
        base_url: str = "/audio/ur",
        min_valid_bytes: int = 100,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize resolver.

        Args:
            audio_dir: Directory holding generated clips.
            broadcaster: Channel used for ``urdu-voice-announcement``.
            strategies: Synthesis strategies, tried in order.
            base_url: Public URL prefix under which ``audio_dir`` is served.
            min_valid_bytes: Files at or below this size count as broken.
            clock: Source of the payload timestamp.
            sleep: Awaitable used for the pause in batch generation.
        """
        self._audio_dir = Path(audio_dir)
        self._broadcaster = broadcaster
        self._strategies = list(strategies)
        self._base_url = base_url.rstrip("/")
        self._min_valid_bytes = min_valid_bytes
        self._clock = clock
        self._sleep = sleep

    @property
    def audio_dir(self) -> Path:
        return self._audio_dir

    @property
    def strategies(self) -> list[SpeechStrategy]:
        return list(self._strategies)

    def path_for(self, ticket_number: str, counter_number: int | str) -> Path:
        """Clip path for the pair.

        Raises:
            ValidationError: If the name would land outside ``audio_dir``.
        """
        path = self._audio_dir / filename_for(ticket_number, counter_number)
        if path.resolve().parent != self._audio_dir.resolve():
            raise ValidationError(
                f"Ticket number cannot name an audio clip: {ticket_number!r}",
                details={"ticket_number": ticket_number},
            )
        return path

    def url_for(self, filename: str) -> str:
        return f"{self._base_url}/{filename}"

    def is_valid_clip(self, path: Path) -> bool:
        try:
            return path.is_file() and path.stat().st_size > self._min_valid_bytes
        except OSError:
            return False

    async def generate(
        self,
        ticket_number: str,
        counter_number: int | str,
        is_recall: bool = False,
    ) -> Path | None:
        """Synthesize the clip without broadcasting it.

        Returns:
            Path of a valid clip, or None if every strategy failed.
        """
        self._audio_dir.mkdir(parents=True, exist_ok=True)
        destination = self.path_for(ticket_number, counter_number)
        text = build_announcement(ticket_number, counter_number, is_recall)

        for strategy in self._strategies:
            try:
                result = await strategy.attempt(text, destination)
            except Exception as exc:
                logger.warning(
                    "Speech strategy raised",
                    extra={"strategy": strategy.name, "file": destination.name, "error": repr(exc)},
                )
                continue

            if result is not None and self.is_valid_clip(result):
                logger.info(
                    "Announcement clip generated",
                    extra={"strategy": strategy.name, "file": result.name},
                )
                return result

            # A strategy may leave a truncated file behind; never let it pass as valid later.
            if result is not None:
                result.unlink(missing_ok=True)
            logger.info(
                "Speech strategy produced no usable clip",
                extra={"strategy": strategy.name, "file": destination.name},
            )

        logger.error(
            "All speech strategies failed",
            extra={"ticket_number": ticket_number, "counter_number": str(counter_number)},
        )
        return None

    def _payload(
        self,
        kind: AnnouncementType,
        ticket_number: str,
        counter_number: int | str,
        is_recall: bool,
        **fields: Any,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": kind.value}
        payload.update(fields)
        payload.update(
            {
                "ticketNumber": ticket_number,
                "counterNumber": counter_number,
                "isRecall": is_recall,
                "timestamp": self._clock().isoformat(),
            }
        )
        return payload

    async def _broadcast_clip(
        self,
        path: Path,
        ticket_number: str,
        counter_number: int | str,
        is_recall: bool,
    ) -> None:
        await self._broadcaster.emit(
            BroadcastEvent.VOICE_ANNOUNCEMENT,
            self._payload(
                AnnouncementType.MP3,
                ticket_number,
                counter_number,
                is_recall,
                audioUrl=self.url_for(path.name),
            ),
        )

    async def resolve_and_broadcast(
        self,
        ticket_number: str,
        counter_number: int | str,
        is_recall: bool = False,
    ) -> bool:
        """Broadcast an announcement for the ticket.

        Returns:
            True if a clip was broadcast, False if screens were asked to use
            live speech instead.
        """
        try:
            path = self.path_for(ticket_number, counter_number)
            if self.is_valid_clip(path):
                await self._broadcast_clip(path, ticket_number, counter_number, is_recall)
                logger.info(
                    "Announcement served from existing clip",
                    extra={"file": path.name, "is_recall": is_recall},
                )
                return True

            generated = await self.generate(ticket_number, counter_number, is_recall)
            if generated is not None:
                await self._broadcast_clip(generated, ticket_number, counter_number, is_recall)
                return True
        except Exception as exc:
            logger.error(
                "Clip resolution failed, falling back to live speech",
                extra={"ticket_number": ticket_number, "error": repr(exc)},
            )

        await self._broadcaster.emit(
            BroadcastEvent.VOICE_ANNOUNCEMENT,
            self._payload(
                AnnouncementType.TTS,
                ticket_number,
                counter_number,
                is_recall,
                message=build_announcement(ticket_number, counter_number, is_recall),
            ),
        )
        logger.warning(
            "Live speech fallback broadcast",
            extra={"ticket_number": ticket_number, "counter_number": str(counter_number)},
        )
        return False

    def audio_status(self, ticket_number: str, counter_number: int | str) -> dict[str, Any]:
        path = self.path_for(ticket_number, counter_number)
        exists = path.is_file()
        return {
            "exists": exists,
            "filename": path.name,
            "path": str(path),
            "url": self.url_for(path.name),
            "size": path.stat().st_size if exists else 0,
            "isValid": self.is_valid_clip(path),
        }

    def list_audio_files(self) -> list[dict[str, Any]]:
        if not self._audio_dir.is_dir():
            return []
        files = []
        for path in sorted(self._audio_dir.glob("*.mp3")):
            stat = path.stat()
            files.append(
                {
                    "filename": path.name,
                    "path": str(path),
                    "url": self.url_for(path.name),
                    "size": stat.st_size,
                    "modified": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
                }
            )
        return files

    def audio_stats(self) -> dict[str, Any]:
        files = self.list_audio_files()
        total_size = sum(f["size"] for f in files)
        return {
            "totalFiles": len(files),
            "totalSize": total_size,
            "totalSizeMB": round(total_size / (1024 * 1024), 2),
            "files": files,
        }

    def cleanup_old_files(self, days: int = 30) -> int:
        """Delete clips not modified in the last ``days`` days."""
        if not self._audio_dir.is_dir():
            return 0
        cutoff = (self._clock() - timedelta(days=days)).timestamp()
        deleted = 0
        for path in self._audio_dir.glob("*.mp3"):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    deleted += 1
            except OSError as exc:
                logger.warning("Failed to delete clip", extra={"file": path.name, "error": repr(exc)})
        logger.info("Audio cleanup completed", extra={"deleted": deleted, "days": days})
        return deleted

    async def generate_common(
        self,
        patterns: Sequence[tuple[str, int]] = COMMON_PATTERNS,
        pause_seconds: float = 1.0,
    ) -> dict[str, int]:
        """Pre-generate clips for the usual ticket/counter pairs.

        Existing valid clips are kept. The pause between requests keeps the
        translate endpoint from rate limiting us.
        """
        success = 0
        failed = 0
        for index, (ticket_number, counter_number) in enumerate(patterns):
            if self.is_valid_clip(self.path_for(ticket_number, counter_number)):
                success += 1
                continue
            if await self.generate(ticket_number, counter_number) is not None:
                success += 1
            else:
                failed += 1
            if pause_seconds and index < len(patterns) - 1:
                await self._sleep(pause_seconds)

        logger.info(
            "Batch audio generation finished",
            extra={"success": success, "failed": failed, "total": len(patterns)},
        )
        return {"success": success, "failed": failed, "total": len(patterns)}

    async def aclose(self) -> None:
        for strategy in self._strategies:
            close = getattr(strategy, "aclose", None)
            if close is not None:
                await close()


def build_speech_strategies(settings: AudioSettings) -> list[SpeechStrategy]:
    return default_speech_strategies(
        language=settings.language,
        tts_timeout_seconds=settings.tts_timeout_seconds,
        process_timeout_seconds=settings.process_timeout_seconds,
        google_enabled=settings.google_tts_enabled,
        system_enabled=settings.system_tts_enabled,
    )


def build_resolver(settings: AudioSettings, broadcaster: Broadcaster) -> AnnouncementResolver:
    """Resolver wired from ``AUDIO_`` settings."""
    return AnnouncementResolver(
        audio_dir=settings.directory,
        broadcaster=broadcaster,
        strategies=build_speech_strategies(settings),
        base_url=settings.base_url,
        min_valid_bytes=settings.min_valid_bytes,
    )
