import asyncio
import logging
from collections.abc import Awaitable, Callable

from dialog_stt.domain.audio import capture_chunk_size, downmix_stereo_to_mono
from dialog_stt.domain.state import CaptureState, validate_transition
from dialog_stt.ports.capture import CaptureLauncher, CaptureProcess

logger = logging.getLogger(__name__)

CAPTURE_CHUNK_SIZE = capture_chunk_size()
STDOUT_READ_SIZE = 4096
PROCESS_EXIT_TIMEOUT_SECONDS = 2.0


class PcmChunker:
    def __init__(self, chunk_size: int = CAPTURE_CHUNK_SIZE) -> None:
        self._chunk_size = chunk_size
        self._buffer = bytearray()

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def leftover(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> list[bytes]:
        self._buffer.extend(data)
        chunks = []
        while len(self._buffer) >= self._chunk_size:
            chunks.append(bytes(self._buffer[: self._chunk_size]))
            del self._buffer[: self._chunk_size]
        return chunks

    def reset(self) -> None:
        self._buffer.clear()


class CaptureSupervisor:
    def __init__(
        self,
        launcher: CaptureLauncher,
        on_chunk: Callable[[bytes], Awaitable[None]],
        can_start: Callable[[], bool] = lambda: True,
        on_status: Callable[[str], None] | None = None,
        chunk_size: int = CAPTURE_CHUNK_SIZE,
        read_size: int = STDOUT_READ_SIZE,
    ) -> None:
        self._launcher = launcher
        self._on_chunk = on_chunk
        self._can_start = can_start
        self._on_status = on_status
        self._read_size = read_size
        self._chunker = PcmChunker(chunk_size)
        self._state = CaptureState.IDLE
        self._process: CaptureProcess | None = None
        self._reader_task: asyncio.Task | None = None

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is CaptureState.RUNNING

    @property
    def leftover_bytes(self) -> int:
        return self._chunker.leftover

    def _transition_to(self, target: CaptureState) -> None:
        validate_transition(self._state, target)
        logger.info("Capture: %s -> %s", self._state.name, target.name)
        self._state = target

    async def start(self) -> bool:
        if self._state is CaptureState.RUNNING:
            return True
        if self._state is CaptureState.STARTING:
            return False
        if not self._launcher.is_supported():
            logger.warning("System audio capture is not supported on this platform")
            return False
        if not self._can_start():
            logger.warning("Remote STT session not active, not starting capture")
            return False

        self._transition_to(CaptureState.STARTING)

        try:
            if await self._launcher.kill_stray():
                logger.info("Killed stray system audio capture processes")
        except Exception:
            logger.warning("Could not check for stray capture processes", exc_info=True)

        try:
            process = await self._launcher.spawn()
        except Exception:
            logger.exception("Failed to start system audio capture")
            if self._state is CaptureState.STARTING:
                self._transition_to(CaptureState.IDLE)
            return False

        if self._state is not CaptureState.STARTING:
            logger.info("Capture stopped while starting, terminating process")
            await _terminate(process)
            return False

        self._process = process
        self._chunker.reset()
        self._transition_to(CaptureState.RUNNING)
        self._reader_task = asyncio.create_task(self._read_loop(process))
        logger.info("System audio capture started (pid=%s)", process.pid)
        self._notify("System audio capture started")
        return True

    async def stop(self) -> None:
        if self._state is CaptureState.IDLE:
            return

        process = self._process
        reader_task = self._reader_task
        self._release()

        if reader_task and not reader_task.done() and reader_task is not asyncio.current_task():
            reader_task.cancel()
            try:
                await reader_task
            except asyncio.CancelledError:
                pass

        if process is not None:
            logger.info("Stopping system audio capture (pid=%s)", process.pid)
            await _terminate(process)
        self._notify("System audio capture stopped")

    async def _read_loop(self, process: CaptureProcess) -> None:
        try:
            while True:
                data = await process.read(self._read_size)
                if not data:
                    break
                for chunk in self._chunker.feed(data):
                    await self._forward(downmix_stereo_to_mono(chunk))
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("System audio capture stream error")

        if self._process is not process:
            return

        self._release()
        await _terminate(process)
        logger.warning("System audio capture exited with code %s", _return_code(process))
        self._notify("System audio capture stopped")

    async def _forward(self, mono_chunk: bytes) -> None:
        try:
            await self._on_chunk(mono_chunk)
        except Exception:
            logger.exception("Failed to forward system audio chunk")

    def _release(self) -> None:
        self._process = None
        self._reader_task = None
        self._chunker.reset()
        if self._state is not CaptureState.IDLE:
            self._transition_to(CaptureState.IDLE)

    def _notify(self, text: str) -> None:
        if self._on_status:
            self._on_status(text)


async def _terminate(process: CaptureProcess) -> None:
    try:
        process.terminate()
    except ProcessLookupError:
        pass
    try:
        await asyncio.wait_for(process.wait(), timeout=PROCESS_EXIT_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("Capture process did not exit, killing it")
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()


def _return_code(process: CaptureProcess) -> int | None:
    return getattr(process, "returncode", None)
