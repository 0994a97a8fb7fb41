import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any

from dialog_stt.domain.audio import SAMPLE_RATE, encode_wav
from dialog_stt.domain.timers import TimerHandle, TimerScheduler

logger = logging.getLogger(__name__)

AUDIO_SEND_INTERVAL_SECONDS = 5.0

_BRACKET_ANNOTATION = re.compile(r"\[[^\]]*\]")
_PAREN_ANNOTATION = re.compile(r"\([^)]*\)")


def sanitize_transcript(text: str) -> str:
    cleaned = _BRACKET_ANNOTATION.sub("", text)
    cleaned = _PAREN_ANNOTATION.sub("", cleaned)
    return cleaned.strip()


def _result_text(result: Any) -> str:
    if result is None:
        return ""
    if isinstance(result, dict):
        text = result.get("text")
    else:
        text = getattr(result, "text", None)
    return text if isinstance(text, str) else ""


class AudioBatcher:
    def __init__(
        self,
        transcribe: Callable[[bytes], Awaitable[Any]],
        scheduler: TimerScheduler,
        on_final: Callable[[str], None],
        window_seconds: float = AUDIO_SEND_INTERVAL_SECONDS,
        sample_rate: int = SAMPLE_RATE,
    ) -> None:
        self._transcribe = transcribe
        self._scheduler = scheduler
        self._on_final = on_final
        self._window_seconds = window_seconds
        self._sample_rate = sample_rate
        self._pending: list[bytes] = []
        self._timer: TimerHandle | None = None

    @property
    def pending_bytes(self) -> int:
        return sum(len(frame) for frame in self._pending)

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def on_audio(self, data: bytes) -> None:
        self._pending.append(data)
        if self._timer is None:
            self._timer = self._scheduler.call_later(self._window_seconds, self._on_window_elapsed)

    async def flush(self) -> str | None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        return await self._submit_pending()

    def discard(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending = []

    async def _on_window_elapsed(self) -> None:
        self._timer = None
        await self._submit_pending()

    async def _submit_pending(self) -> str | None:
        audio = b"".join(self._pending)
        self._pending = []
        if not audio:
            return None

        wav_data = encode_wav(audio, channels=1, sample_rate=self._sample_rate, bit_depth=16)
        try:
            result = await self._transcribe(wav_data)
        except Exception:
            logger.exception("Batch transcription failed, dropping %d bytes", len(audio))
            return None

        text = sanitize_transcript(_result_text(result))
        if not text:
            logger.debug("Batch transcription returned no speech")
            return None

        self._on_final(text)
        return text
