import asyncio
import json
import logging
from typing import Any

from websockets.asyncio.client import ClientConnection

from dialog_stt.adapters.websocket_session import WebSocketTranscriber, decode_message
from dialog_stt.ports.provider import MessageHandler

logger = logging.getLogger(__name__)

LIVE_API_URL = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
)
SETUP_TIMEOUT_SECONDS = 10.0


def build_setup_message(model: str, language: str) -> dict[str, Any]:
    model_name = model if model.startswith("models/") else f"models/{model}"
    setup: dict[str, Any] = {
        "model": model_name,
        "generationConfig": {"responseModalities": ["TEXT"]},
        "inputAudioTranscription": {},
        "systemInstruction": {"parts": [{"text": "Transcribe the incoming audio. Do not reply."}]},
    }
    if language:
        setup["generationConfig"]["speechConfig"] = {"languageCode": language}
    return {"setup": setup}


class GeminiLiveTranscriber(WebSocketTranscriber):
    """Live API session used only for its input transcription stream."""

    name = "Gemini live"

    def __init__(
        self,
        api_key: str,
        on_message: MessageHandler,
        model: str = "gemini-live-2.5-flash-preview",
        language: str = "en-US",
        url: str = "",
    ) -> None:
        super().__init__(on_message)
        self._api_key = api_key
        self._model = model
        self._language = language
        self._url_override = url

    def _url(self) -> str:
        return f"{self._url_override or LIVE_API_URL}?key={self._api_key}"

    async def _on_open(self, websocket: ClientConnection) -> None:
        await websocket.send(json.dumps(build_setup_message(self._model, self._language)))
        raw = await asyncio.wait_for(websocket.recv(), timeout=SETUP_TIMEOUT_SECONDS)
        reply = decode_message(raw) or {}
        if "setupComplete" not in reply:
            raise RuntimeError(f"Gemini live setup rejected: {reply.get('error') or reply}")
        logger.debug("Gemini live setup complete (model=%s, language=%s)", self._model, self._language)

    async def send_realtime_input(self, payload: Any) -> None:
        await self.send_json({"realtimeInput": payload})
