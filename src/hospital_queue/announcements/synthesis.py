"""
Speech synthesis strategies.

Each strategy turns a phrase into an audio file at a given path, or reports
failure by returning ``None``. Strategies never raise for expected failures
(network errors, missing programs, timeouts); the resolver tries them in order.
"""

import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

import httpx

from hospital_queue.shared.logging import get_logger
from hospital_queue.shared.process import run_process

logger = get_logger(__name__)

GOOGLE_TTS_URL = "https://translate.google.com/translate_tts"
BROWSER_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

# Keep word characters, whitespace and the Arabic block used by Urdu.
_UNSAFE_TTS_CHARS = re.compile(r"[^\w\s؀-ۿ]")


class SpeechStrategy(ABC):
    """A way of producing an announcement clip."""

    name: str = "speech"

    @abstractmethod
    async def attempt(self, text: str, destination: Path) -> Path | None:
        """Write ``text`` as speech to ``destination``; ``None`` on failure."""
        ...


class GoogleTranslateSpeech(SpeechStrategy):
    """Free translate-service TTS streamed over HTTPS."""

    name = "google_translate_tts"

    def __init__(
        self,
        language: str = "ur",
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
        endpoint: str = GOOGLE_TTS_URL,
    ) -> None:
        self._language = language
        self._timeout = timeout_seconds
        self._http_client = http_client
        self._owns_client = http_client is None
        self._endpoint = endpoint

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                headers={"User-Agent": BROWSER_USER_AGENT},
                follow_redirects=True,
            )
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def attempt(self, text: str, destination: Path) -> Path | None:
        params = {
            "ie": "UTF-8",
            "q": _UNSAFE_TTS_CHARS.sub(" ", text),
            "tl": self._language,
            "client": "tw-ob",
        }
        partial = destination.with_name(destination.name + ".part")
        client = self._get_client()

        try:
            async with client.stream("GET", self._endpoint, params=params) as response:
                if response.status_code != 200:
                    logger.warning(
                        "Translate TTS rejected request",
                        extra={"status_code": response.status_code, "file": destination.name},
                    )
                    return None
                with partial.open("wb") as fh:
                    async for chunk in response.aiter_bytes():
                        fh.write(chunk)
            os.replace(partial, destination)
        except (httpx.HTTPError, OSError) as exc:
            logger.warning(
                "Translate TTS failed",
                extra={"file": destination.name, "error": repr(exc)},
            )
            partial.unlink(missing_ok=True)
            return None

        logger.info("Translate TTS generated clip", extra={"file": destination.name})
        return destination


class PowerShellSpeech(SpeechStrategy):
    """Windows ``System.Speech`` synthesizer through PowerShell."""

    name = "powershell_system_speech"

    def __init__(self, timeout_seconds: float = 30.0) -> None:
        self._timeout = timeout_seconds

    @staticmethod
    def _quote(value: str) -> str:
        # PowerShell single-quoted string: only ' needs escaping (doubled).
        return "'" + value.replace("'", "''") + "'"

    def build_command(self, text: str, destination: Path) -> list[str]:
        script = (
            "Add-Type -AssemblyName System.Speech; "
            "$speak = New-Object System.Speech.Synthesis.SpeechSynthesizer; "
            f"$speak.SetOutputToWaveFile({self._quote(str(destination))}); "
            f"$speak.Speak({self._quote(text)}); "
            "$speak.Dispose()"
        )
        return ["powershell", "-NoProfile", "-NonInteractive", "-Command", script]

    async def attempt(self, text: str, destination: Path) -> Path | None:
        ok = await run_process(self.build_command(text, destination), self._timeout)
        return destination if ok else None


class SapiScriptSpeech(SpeechStrategy):
    """SAPI voice driven by a generated VBScript under ``cscript``."""

    name = "sapi_vbscript"

    def __init__(self, timeout_seconds: float = 30.0) -> None:
        self._timeout = timeout_seconds

    @staticmethod
    def build_script(text: str, destination: Path) -> str:
        vb_text = text.replace('"', '""')
        vb_path = str(destination).replace('"', '""')
        return (
            'Set speech = CreateObject("SAPI.SpVoice")\n'
            'Set stream = CreateObject("SAPI.SpFileStream")\n'
            f'stream.Open "{vb_path}", 3, True\n'
            "Set speech.AudioOutputStream = stream\n"
            f'speech.Speak "{vb_text}"\n'
            "stream.Close\n"
        )

    async def attempt(self, text: str, destination: Path) -> Path | None:
        fd, script_path = tempfile.mkstemp(suffix=".vbs", prefix="announce_")
        try:
            with os.fdopen(fd, "w", encoding="utf-16") as fh:
                fh.write(self.build_script(text, destination))
            ok = await run_process(["cscript", "//Nologo", script_path], self._timeout)
        finally:
            Path(script_path).unlink(missing_ok=True)
        return destination if ok else None


def default_speech_strategies(
    language: str = "ur",
    tts_timeout_seconds: float = 10.0,
    process_timeout_seconds: float = 30.0,
    google_enabled: bool = True,
    system_enabled: bool = True,
) -> list[SpeechStrategy]:
    """Network synthesis first, then the local OS voices."""
    strategies: list[SpeechStrategy] = []
    if google_enabled:
        strategies.append(GoogleTranslateSpeech(language=language, timeout_seconds=tts_timeout_seconds))
    if system_enabled:
        strategies.append(PowerShellSpeech(timeout_seconds=process_timeout_seconds))
        strategies.append(SapiScriptSpeech(timeout_seconds=process_timeout_seconds))
    return strategies
