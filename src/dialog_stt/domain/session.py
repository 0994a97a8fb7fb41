import asyncio
import base64
import binascii
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from dialog_stt.domain.audio import SAMPLE_RATE
from dialog_stt.domain.batcher import AUDIO_SEND_INTERVAL_SECONDS, AudioBatcher
from dialog_stt.domain.debouncer import COMPLETION_DEBOUNCE_SECONDS, TurnDebouncer
from dialog_stt.domain.errors import SessionNotActiveError
from dialog_stt.domain.events import (
    ChannelIdentity,
    ProviderErrorEvent,
    SessionEvent,
    StatusUpdate,
    TranscriptEvent,
)
from dialog_stt.domain.protocol import (
    FinalFragment,
    PartialFragment,
    ProtocolFamily,
    ProviderDescriptor,
    ProviderError,
    TurnComplete,
    build_realtime_payload,
    classify_message,
)
from dialog_stt.domain.timers import TimerCallback

logger = logging.getLogger(__name__)

LISTENING_STATUS = "Listening..."


class _MailboxTimer:
    def __init__(self, callback: TimerCallback) -> None:
        self.callback = callback
        self.loop_handle: asyncio.TimerHandle | None = None
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True
        if self.loop_handle is not None:
            self.loop_handle.cancel()

    def cancelled(self) -> bool:
        return self._cancelled


@dataclass(frozen=True)
class _AudioInput:
    data: bytes | str
    mime_type: str | None


@dataclass(frozen=True)
class _ProviderMessage:
    message: Any


@dataclass(frozen=True)
class _TimerFired:
    timer: _MailboxTimer


@dataclass(frozen=True)
class _FlushRequest:
    done: asyncio.Future


@dataclass(frozen=True)
class _CloseRequest:
    flush_pending: bool
    done: asyncio.Future


class _MailboxTimerScheduler:
    def __init__(self, mailbox: asyncio.Queue) -> None:
        self._mailbox = mailbox

    def call_later(self, delay_seconds: float, callback: TimerCallback) -> _MailboxTimer:
        timer = _MailboxTimer(callback)
        loop = asyncio.get_running_loop()
        timer.loop_handle = loop.call_later(delay_seconds, self._mailbox.put_nowait, _TimerFired(timer))
        return timer


class ChannelSession:
    def __init__(
        self,
        channel: ChannelIdentity,
        descriptor: ProviderDescriptor,
        publish: Callable[[SessionEvent], None],
        debounce_seconds: float = COMPLETION_DEBOUNCE_SECONDS,
        batch_window_seconds: float = AUDIO_SEND_INTERVAL_SECONDS,
        sample_rate: int = SAMPLE_RATE,
    ) -> None:
        self._channel = channel
        self._descriptor = descriptor
        self._family = descriptor.protocol_family
        self._publish = publish
        self._provider: Any = None
        self._closed = False
        self._worker: asyncio.Task | None = None
        self._mailbox: asyncio.Queue = asyncio.Queue()

        scheduler = _MailboxTimerScheduler(self._mailbox)
        self._debouncer = TurnDebouncer(
            family=self._family,
            scheduler=scheduler,
            on_final=self._publish_final,
            on_partial=self._publish_partial,
            debounce_seconds=debounce_seconds,
        )
        self._batcher: AudioBatcher | None = None
        if self._family is ProtocolFamily.BATCH_ONLY:
            self._batcher = AudioBatcher(
                transcribe=self._transcribe,
                scheduler=scheduler,
                on_final=self._publish_final,
                window_seconds=batch_window_seconds,
                sample_rate=sample_rate,
            )

    @property
    def channel(self) -> ChannelIdentity:
        return self._channel

    @property
    def family(self) -> ProtocolFamily:
        return self._family

    @property
    def provider(self) -> Any:
        return self._provider

    @property
    def debouncer(self) -> TurnDebouncer:
        return self._debouncer

    @property
    def batcher(self) -> AudioBatcher | None:
        return self._batcher

    @property
    def is_active(self) -> bool:
        return not self._closed and self._provider is not None

    def attach(self, provider: Any) -> None:
        if self._closed:
            raise SessionNotActiveError(f"{self._channel.label} STT session already closed")
        self._provider = provider
        if self._worker is None:
            self._worker = asyncio.create_task(self._run())

    async def ingest_audio(self, data: bytes | str, mime_type: str | None = None) -> None:
        if self._closed or self._provider is None:
            raise SessionNotActiveError(f"{self._channel.label} STT session not active")
        self._mailbox.put_nowait(_AudioInput(data=data, mime_type=mime_type))

    def ingest_provider_message(self, message: Any) -> None:
        if self._closed:
            logger.debug("[%s] Ignoring message - session already closed", self._channel.label)
            return
        self._mailbox.put_nowait(_ProviderMessage(message=message))

    async def flush(self) -> None:
        if self._closed or self._worker is None:
            return
        done = asyncio.get_running_loop().create_future()
        self._mailbox.put_nowait(_FlushRequest(done=done))
        await done

    async def join(self) -> None:
        if self._worker is not None and not self._worker.done():
            await self._mailbox.join()

    async def close(self, flush_pending: bool = True) -> None:
        if self._closed:
            return
        self._closed = True

        if self._worker is None or self._worker.done():
            await self._shutdown(flush_pending)
            return

        done = asyncio.get_running_loop().create_future()
        self._mailbox.put_nowait(_CloseRequest(flush_pending=flush_pending, done=done))
        await done

    async def _run(self) -> None:
        while True:
            item = await self._mailbox.get()
            try:
                if isinstance(item, _CloseRequest):
                    await self._handle_close(item)
                    return
                await self._handle(item)
            except Exception:
                logger.exception("[%s] Error handling %s", self._channel.label, type(item).__name__)
            finally:
                self._mailbox.task_done()

    async def _handle(self, item: Any) -> None:
        if isinstance(item, _AudioInput):
            await self._handle_audio(item)
        elif isinstance(item, _ProviderMessage):
            self._handle_provider_message(item.message)
        elif isinstance(item, _TimerFired):
            if item.timer.cancelled():
                return
            result = item.timer.callback()
            if inspect.isawaitable(result):
                await result
        elif isinstance(item, _FlushRequest):
            try:
                await self._flush_pending()
            finally:
                if not item.done.done():
                    item.done.set_result(None)

    async def _handle_close(self, request: _CloseRequest) -> None:
        try:
            await self._shutdown(request.flush_pending)
        finally:
            self._discard_mailbox()
            if not request.done.done():
                request.done.set_result(None)

    async def _handle_audio(self, item: _AudioInput) -> None:
        if self._batcher is not None:
            audio = _decode_audio(item.data)
            if audio:
                self._batcher.on_audio(audio)
            return

        if self._provider is None:
            logger.debug("[%s] Dropping audio - provider session released", self._channel.label)
            return

        payload = build_realtime_payload(self._family, item.data, item.mime_type)
        try:
            await self._provider.send_realtime_input(payload)
        except Exception:
            logger.warning("[%s] Failed to send audio to %s", self._channel.label, self._descriptor.provider_id)

    def _handle_provider_message(self, message: Any) -> None:
        classified = classify_message(self._family, message)

        if isinstance(classified, ProviderError):
            logger.error("[%s] STT session error: %s", self._channel.label, classified.detail)
            self._publish(ProviderErrorEvent(channel=self._channel, detail=classified.detail))
        elif isinstance(classified, TurnComplete):
            self._debouncer.on_turn_complete()
        elif isinstance(classified, PartialFragment):
            self._debouncer.on_fragment(classified.text, emit_partial=not classified.suppressed)
        elif isinstance(classified, FinalFragment):
            self._debouncer.on_explicit_final(classified.text)

    async def _flush_pending(self) -> None:
        self._debouncer.flush()
        if self._batcher is not None:
            await self._batcher.flush()

    async def _shutdown(self, flush_pending: bool) -> None:
        if flush_pending:
            await self._flush_pending()
        self._debouncer.reset()
        if self._batcher is not None:
            self._batcher.discard()

        provider, self._provider = self._provider, None
        if provider is None:
            return
        try:
            await provider.close()
        except Exception:
            logger.exception("[%s] Failed to close %s session", self._channel.label, self._descriptor.provider_id)
        logger.info("[%s] STT session closed", self._channel.label)

    def _discard_mailbox(self) -> None:
        while not self._mailbox.empty():
            self._mailbox.get_nowait()
            self._mailbox.task_done()

    async def _transcribe(self, wav_data: bytes) -> Any:
        if self._provider is None:
            raise SessionNotActiveError(f"{self._channel.label} STT session not active")
        return await self._provider.transcribe_audio(wav_data)

    def _publish_partial(self, text: str) -> None:
        logger.debug("Partial [%s]: %s", self._channel.label, text)
        self._publish(TranscriptEvent(channel=self._channel, text=text, partial=True))

    def _publish_final(self, text: str) -> None:
        logger.info("Final [%s]: %s", self._channel.label, text)
        self._publish(TranscriptEvent(channel=self._channel, text=text, partial=False))
        self._publish(StatusUpdate(text=LISTENING_STATUS))


def _decode_audio(data: bytes | str) -> bytes:
    if isinstance(data, str):
        try:
            return base64.b64decode(data)
        except (binascii.Error, ValueError):
            logger.warning("Dropping audio chunk that is not valid base64")
            return b""
    return bytes(data)
