import asyncio
import json
import logging
from typing import Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from dialog_stt.ports.provider import MessageHandler

logger = logging.getLogger(__name__)


class WebSocketTranscriber:
    name = "websocket"

    def __init__(self, on_message: MessageHandler) -> None:
        self._emit = on_message
        self._websocket: ClientConnection | None = None
        self._listener_task: asyncio.Task | None = None
        self._send_lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._websocket is not None

    def _url(self) -> str:
        raise NotImplementedError

    def _headers(self) -> dict[str, str]:
        return {}

    async def _on_open(self, websocket: ClientConnection) -> None:
        pass

    async def connect(self) -> None:
        websocket = await connect(self._url(), additional_headers=self._headers(), max_size=None)
        try:
            await self._on_open(websocket)
        except Exception:
            await websocket.close()
            raise
        self._websocket = websocket
        self._listener_task = asyncio.create_task(self._listen(websocket))
        logger.info("%s session started", self.name)

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self._websocket is None:
            return
        async with self._send_lock:
            await self._websocket.send(json.dumps(payload))

    async def close(self) -> None:
        websocket, self._websocket = self._websocket, None
        if self._listener_task and not self._listener_task.done():
            self._listener_task.cancel()
            try:
                await self._listener_task
            except (asyncio.CancelledError, Exception):
                pass
        self._listener_task = None

        if websocket is not None:
            try:
                await websocket.close()
            except Exception:
                pass
        logger.info("%s session closed", self.name)

    async def _listen(self, websocket: ClientConnection) -> None:
        reason = ""
        try:
            async for raw in websocket:
                message = decode_message(raw)
                if message is None:
                    logger.debug("%s sent a non-JSON frame", self.name)
                    continue
                self._emit(message)
        except ConnectionClosed as exc:
            reason = str(exc)

        # A clean close ends the iteration without raising.
        if self._websocket is not websocket:
            return
        self._websocket = None
        if not reason and websocket.close_code is not None:
            reason = f"code {websocket.close_code}"
        detail = f"{self.name} connection closed: {reason}" if reason else f"{self.name} connection closed"
        logger.warning("%s", detail)
        self._emit({"error": detail})


def decode_message(raw: str | bytes) -> dict[str, Any] | None:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return message if isinstance(message, dict) else None
