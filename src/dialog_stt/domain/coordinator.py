import asyncio
import base64
import inspect
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from dialog_stt.domain.audio import DEFAULT_PCM_MIME_TYPE, SAMPLE_RATE
from dialog_stt.domain.batcher import AUDIO_SEND_INTERVAL_SECONDS
from dialog_stt.domain.capture import CAPTURE_CHUNK_SIZE, CaptureSupervisor
from dialog_stt.domain.debouncer import COMPLETION_DEBOUNCE_SECONDS
from dialog_stt.domain.errors import (
    ConfigurationError,
    SessionInitializationError,
    SessionNotActiveError,
)
from dialog_stt.domain.events import (
    CaptureAudioEvent,
    ChannelIdentity,
    SessionEvent,
    StatusUpdate,
)
from dialog_stt.domain.protocol import ProviderDescriptor
from dialog_stt.domain.session import ChannelSession
from dialog_stt.ports.capture import CaptureLauncher
from dialog_stt.ports.provider import ModelResolver, ProviderSessionFactory

logger = logging.getLogger(__name__)

STT_CAPABILITY = "stt"

SessionListener = Callable[[SessionEvent], None]


class SessionCoordinator:
    def __init__(
        self,
        session_factory: ProviderSessionFactory,
        model_resolver: ModelResolver | None = None,
        capture_launcher: CaptureLauncher | None = None,
        debounce_seconds: float = COMPLETION_DEBOUNCE_SECONDS,
        batch_window_seconds: float = AUDIO_SEND_INTERVAL_SECONDS,
        sample_rate: int = SAMPLE_RATE,
        capture_chunk_size: int = CAPTURE_CHUNK_SIZE,
        flush_on_close: bool = True,
        language_override: str = "",
    ) -> None:
        self._session_factory = session_factory
        self._model_resolver = model_resolver
        self._debounce_seconds = debounce_seconds
        self._batch_window_seconds = batch_window_seconds
        self._sample_rate = sample_rate
        self._flush_on_close = flush_on_close
        self._language_override = language_override
        self._descriptor: ProviderDescriptor | None = None
        self._sessions: dict[ChannelIdentity, ChannelSession] = {}
        self._listeners: list[SessionListener] = []
        self._capture: CaptureSupervisor | None = None
        if capture_launcher is not None:
            self._capture = CaptureSupervisor(
                launcher=capture_launcher,
                on_chunk=self._forward_capture_chunk,
                can_start=lambda: self.session(ChannelIdentity.REMOTE) is not None,
                on_status=self._publish_status,
                chunk_size=capture_chunk_size,
            )

    @property
    def descriptor(self) -> ProviderDescriptor | None:
        return self._descriptor

    @property
    def capture(self) -> CaptureSupervisor | None:
        return self._capture

    def session(self, channel: ChannelIdentity) -> ChannelSession | None:
        return self._sessions.get(channel)

    def is_session_active(self) -> bool:
        return len(self._sessions) == len(ChannelIdentity) and all(
            s.is_active for s in self._sessions.values()
        )

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def events(self) -> AsyncIterator[SessionEvent]:
        queue: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self.add_listener(queue.put_nowait)
        try:
            while True:
                yield await queue.get()
        finally:
            self.remove_listener(queue.put_nowait)

    async def initialize_session(self, language: str = "en") -> bool:
        if self._model_resolver is None:
            raise ConfigurationError("No model resolver configured")

        descriptor = self._model_resolver.get_current_model_info(STT_CAPABILITY)
        if inspect.isawaitable(descriptor):
            descriptor = await descriptor
        if descriptor is None or not descriptor.credential_ref:
            raise ConfigurationError("AI model or API key is not configured.")

        effective_language = self._language_override or language or "en"
        await self.initialize(descriptor, effective_language)
        return True

    async def initialize(self, descriptor: ProviderDescriptor, language: str = "en") -> None:
        if self._sessions:
            await self.close_session()

        logger.info(
            "Initializing STT for %s using model %s (%s)",
            descriptor.provider_id,
            descriptor.model_id,
            descriptor.protocol_family.name,
        )
        sessions = {
            channel: ChannelSession(
                channel=channel,
                descriptor=descriptor,
                publish=self._publish,
                debounce_seconds=self._debounce_seconds,
                batch_window_seconds=self._batch_window_seconds,
                sample_rate=self._sample_rate,
            )
            for channel in ChannelIdentity
        }

        results = await asyncio.gather(
            *(
                self._session_factory.create_session(descriptor, language, session.ingest_provider_message)
                for session in sessions.values()
            ),
            return_exceptions=True,
        )
        handles = dict(zip(sessions, results))

        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            await self._abandon(sessions, handles)
            raise SessionInitializationError(
                f"Failed to create {descriptor.provider_id} STT sessions: {failures[0]}"
            ) from failures[0]

        if descriptor.protocol_family.is_streaming and not all(
            callable(getattr(handle, "send_realtime_input", None)) for handle in handles.values()
        ):
            await self._abandon(sessions, handles)
            raise SessionInitializationError(
                f"{descriptor.provider_id} STT session does not implement send_realtime_input"
            )

        for channel, session in sessions.items():
            session.attach(handles[channel])
        self._sessions = sessions
        self._descriptor = descriptor
        logger.info("Both STT sessions initialized")
        self._publish_status("Listening...")

    async def ingest_local_audio(self, data: bytes | str, mime_type: str | None = None) -> None:
        await self._require_session(ChannelIdentity.LOCAL).ingest_audio(data, mime_type)

    async def ingest_remote_audio(self, data: bytes | str, mime_type: str | None = None) -> None:
        await self._require_session(ChannelIdentity.REMOTE).ingest_audio(data, mime_type)

    async def start_capture(self) -> bool:
        if self._capture is None:
            logger.warning("No system audio capture configured")
            return False
        return await self._capture.start()

    async def stop_capture(self) -> None:
        if self._capture is not None:
            await self._capture.stop()

    async def close_session(self) -> None:
        await self.stop_capture()

        sessions, self._sessions = self._sessions, {}
        if sessions:
            await asyncio.gather(
                *(s.close(flush_pending=self._flush_on_close) for s in sessions.values())
            )
            logger.info("All STT sessions closed")
        self._descriptor = None

    def _require_session(self, channel: ChannelIdentity) -> ChannelSession:
        session = self._sessions.get(channel)
        if session is None:
            raise SessionNotActiveError(f"{channel.label} STT session not active")
        return session

    async def _forward_capture_chunk(self, mono_chunk: bytes) -> None:
        self._publish(CaptureAudioEvent(data=base64.b64encode(mono_chunk).decode("ascii")))
        remote = self._sessions.get(ChannelIdentity.REMOTE)
        if remote is None:
            return
        await remote.ingest_audio(mono_chunk, DEFAULT_PCM_MIME_TYPE)

    async def _abandon(
        self, sessions: dict[ChannelIdentity, ChannelSession], handles: dict[ChannelIdentity, Any]
    ) -> None:
        for session in sessions.values():
            await session.close(flush_pending=False)
        for handle in handles.values():
            if isinstance(handle, BaseException):
                continue
            try:
                await handle.close()
            except Exception:
                logger.exception("Failed to close abandoned STT session")

    def _publish_status(self, text: str) -> None:
        self._publish(StatusUpdate(text=text))

    def _publish(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Session listener failed for %s", type(event).__name__)
