import asyncio
import base64
import logging
from typing import Any

from deepgram import AsyncDeepgramClient
from deepgram.extensions.types.sockets.listen_v1_results_event import ListenV1ResultsEvent
from deepgram.listen.v1.socket_client import EventType

from dialog_stt.ports.provider import MessageHandler

logger = logging.getLogger(__name__)

COMPLETED_MESSAGE_TYPE = "deepgram.transcript.completed"


class DeepgramStreamingTranscriber:
    def __init__(
        self,
        api_key: str,
        on_message: MessageHandler,
        model: str = "nova-2",
        language: str = "multi",
        sample_rate: int = 24000,
    ) -> None:
        self._api_key = api_key
        self._emit = on_message
        self._model = model
        self._language = language
        self._sample_rate = sample_rate
        self._socket = None
        self._context_manager = None
        self._session_active = False
        self._listener_task: asyncio.Task | None = None

    async def connect(self) -> None:
        client = AsyncDeepgramClient(api_key=self._api_key)
        self._context_manager = client.listen.v1.connect(
            model=self._model,
            language=self._language,
            encoding="linear16",
            sample_rate=str(self._sample_rate),
            channels="1",
            interim_results="false",
            endpointing="300",
            smart_format="true",
        )
        self._socket = await self._context_manager.__aenter__()
        self._socket.on(EventType.MESSAGE, self._on_message)
        self._socket.on(EventType.ERROR, self._on_error)
        self._listener_task = asyncio.create_task(self._socket.start_listening())
        self._session_active = True
        logger.info("Deepgram session started (model=%s, language=%s)", self._model, self._language)

    async def send_realtime_input(self, payload: Any) -> None:
        if not self._socket or not self._session_active:
            return
        frame = base64.b64decode(payload) if isinstance(payload, str) else payload
        try:
            await self._socket._send(frame)
        except Exception:
            logger.warning("Failed to send audio to Deepgram")

    async def close(self) -> None:
        if self._listener_task and not self._listener_task.done():
            self._listener_task.cancel()
            try:
                await self._listener_task
            except (asyncio.CancelledError, Exception):
                pass
        self._listener_task = None

        if self._context_manager:
            try:
                await self._context_manager.__aexit__(None, None, None)
            except Exception:
                pass
        self._context_manager = None
        self._socket = None
        self._session_active = False
        logger.info("Deepgram session closed")

    async def _on_message(self, message) -> None:
        if not isinstance(message, ListenV1ResultsEvent):
            return
        try:
            transcript = message.channel.alternatives[0].transcript
            if not transcript:
                return
            if message.is_final or message.speech_final:
                self._emit({"type": COMPLETED_MESSAGE_TYPE, "transcript": transcript})
        except (IndexError, AttributeError):
            pass

    async def _on_error(self, error) -> None:
        logger.error("Deepgram error: %s", error)
        self._emit({"error": str(error)})
