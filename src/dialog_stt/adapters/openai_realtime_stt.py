import base64
import json
import logging
from typing import Any

from websockets.asyncio.client import ClientConnection

from dialog_stt.adapters.websocket_session import WebSocketTranscriber
from dialog_stt.ports.provider import MessageHandler

logger = logging.getLogger(__name__)

REALTIME_TRANSCRIPTION_URL = "wss://api.openai.com/v1/realtime?intent=transcription"


def build_transcription_session_update(model: str, language: str) -> dict[str, Any]:
    transcription: dict[str, Any] = {"model": model}
    if language:
        transcription["language"] = language
    return {
        "type": "transcription_session.update",
        "session": {
            "input_audio_format": "pcm16",
            "input_audio_transcription": transcription,
            "turn_detection": {
                "type": "server_vad",
                "threshold": 0.5,
                "prefix_padding_ms": 300,
                "silence_duration_ms": 500,
            },
            "input_audio_noise_reduction": {"type": "near_field"},
        },
    }


class OpenAIRealtimeTranscriber(WebSocketTranscriber):
    """Streams PCM16 to the OpenAI realtime transcription endpoint.

    Server events (``...input_audio_transcription.delta`` / ``.completed``)
    are handed to ``on_message`` unchanged.
    """

    name = "OpenAI realtime"

    def __init__(
        self,
        api_key: str,
        on_message: MessageHandler,
        model: str = "gpt-4o-mini-transcribe",
        language: str = "en",
        url: str = "",
    ) -> None:
        super().__init__(on_message)
        self._api_key = api_key
        self._model = model
        self._language = language
        self._url_override = url

    def _url(self) -> str:
        return self._url_override or REALTIME_TRANSCRIPTION_URL

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "OpenAI-Beta": "realtime=v1",
        }

    async def _on_open(self, websocket: ClientConnection) -> None:
        update = build_transcription_session_update(self._model, self._language)
        await websocket.send(json.dumps(update))
        logger.debug("Transcription session configured (model=%s, language=%s)", self._model, self._language)

    async def send_realtime_input(self, payload: Any) -> None:
        if isinstance(payload, (bytes, bytearray)):
            payload = base64.b64encode(payload).decode("ascii")
        await self.send_json({"type": "input_audio_buffer.append", "audio": payload})
