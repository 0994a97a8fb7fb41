import asyncio
import logging
import os
from collections.abc import AsyncIterator

import janus
import numpy as np
import sounddevice as sd

from dialog_stt.domain.audio import SAMPLE_RATE

logger = logging.getLogger(__name__)


class MicrophoneCapture:
    """Captures the local speaker as 16-bit mono PCM frames."""

    def __init__(
        self,
        device: str | int | None = None,
        sample_rate: int = SAMPLE_RATE,
        frame_duration_ms: int = 100,
    ) -> None:
        self._device = device or None
        self._sample_rate = sample_rate
        self._frame_duration_ms = frame_duration_ms
        self._frame_size = int(sample_rate * frame_duration_ms / 1000)
        self._stream: sd.InputStream | None = None
        self._queue: janus.Queue[bytes] | None = None
        self._dropped_frames = 0

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def frame_size(self) -> int:
        return self._frame_size

    @property
    def dropped_frames(self) -> int:
        return self._dropped_frames

    async def start(self) -> None:
        self._queue = janus.Queue(maxsize=50)
        self._dropped_frames = 0

        def on_block(indata: np.ndarray, frames: int, time_info, status) -> None:
            if status:
                logger.warning("Microphone status: %s", status)
            pcm = np.clip(indata[:, 0], -1.0, 1.0)
            try:
                self._queue.sync_q.put_nowait((pcm * 32767).astype("<i2").tobytes())
            except janus.SyncQueueFull:
                self._dropped_frames += 1

        device = self._resolve_device()
        self._stream = sd.InputStream(
            device=device,
            samplerate=self._sample_rate,
            channels=1,
            dtype="float32",
            blocksize=self._frame_size,
            callback=on_block,
        )
        self._stream.start()
        logger.info(
            "Microphone capture started (device=%s, rate=%d, frame=%dms)",
            device, self._sample_rate, self._frame_duration_ms,
        )

    async def stop(self) -> None:
        if self._stream:
            self._stream.stop()
            self._stream.close()
            self._stream = None
        if self._queue:
            self._queue.close()
            await self._queue.wait_closed()
            self._queue = None
        if self._dropped_frames:
            logger.warning("Microphone dropped %d frames", self._dropped_frames)

    async def read_frames(self) -> AsyncIterator[bytes]:
        queue = self._queue
        if not queue:
            return
        while True:
            try:
                yield await asyncio.wait_for(queue.async_q.get(), timeout=1.0)
            except asyncio.TimeoutError:
                if queue.closed:
                    break
            except janus.AsyncQueueShutDown:
                break

    def _resolve_device(self) -> str | int | None:
        if self._device is None or isinstance(self._device, int):
            return self._device
        try:
            return int(self._device)
        except ValueError:
            pass
        for i, dev in enumerate(sd.query_devices()):
            if self._device.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
                logger.info("Resolved device '%s' -> %d (%s)", self._device, i, dev["name"])
                return i
        os.environ["PIPEWIRE_NODE"] = self._device
        logger.info("Device '%s' not in PortAudio, set PIPEWIRE_NODE for PipeWire routing", self._device)
        return None
