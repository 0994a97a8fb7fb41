import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pytest

from dialog_stt.domain.events import SessionEvent, StatusUpdate, TranscriptEvent
from dialog_stt.domain.protocol import ProtocolFamily, ProviderDescriptor

SAMPLE_RATE = 24000
QUICK_DEBOUNCE_SECONDS = 0.05
QUICK_BATCH_WINDOW_SECONDS = 0.05


def generate_silence(duration_ms: int = 100, sample_rate: int = SAMPLE_RATE) -> bytes:
    num_samples = int(sample_rate * duration_ms / 1000)
    return np.zeros(num_samples, dtype=np.int16).tobytes()


def generate_sine_wave(
    frequency: float = 440.0,
    duration_ms: int = 100,
    amplitude: float = 0.8,
    sample_rate: int = SAMPLE_RATE,
) -> bytes:
    num_samples = int(sample_rate * duration_ms / 1000)
    t = np.arange(num_samples) / sample_rate
    signal = np.sin(2 * np.pi * frequency * t) * amplitude
    return (signal * 32767).astype("<i2").tobytes()


def interleave_stereo(left: bytes, right: bytes) -> bytes:
    left_samples = np.frombuffer(left, dtype="<i2")
    right_samples = np.frombuffer(right, dtype="<i2")
    return np.column_stack([left_samples, right_samples]).astype("<i2").tobytes()


def make_descriptor(
    family: ProtocolFamily = ProtocolFamily.DELTA_STREAMING,
    provider_id: str = "fake",
    credential_ref: str = "secret-key",
) -> ProviderDescriptor:
    return ProviderDescriptor(
        provider_id=provider_id,
        model_id="fake-model",
        credential_ref=credential_ref,
        protocol_family=family,
    )


async def wait_for_quiet_period(seconds: float = QUICK_DEBOUNCE_SECONDS) -> None:
    await asyncio.sleep(seconds * 3)


class ManualTimer:
    def __init__(self, delay: float, callback) -> None:
        self.delay = delay
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler:
    """Records timers so tests can fire them deterministically."""

    def __init__(self) -> None:
        self.timers: list[ManualTimer] = []

    def call_later(self, delay_seconds: float, callback) -> ManualTimer:
        timer = ManualTimer(delay_seconds, callback)
        self.timers.append(timer)
        return timer

    @property
    def live_timers(self) -> list[ManualTimer]:
        return [t for t in self.timers if not t.cancelled()]

    def fire_latest(self):
        live = self.live_timers
        assert live, "no live timer to fire"
        timer = live[-1]
        timer.cancel()
        return timer.callback()


class LoopTimerScheduler:
    """Runs callbacks straight from ``loop.call_later``, outside any mailbox."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def call_later(self, delay_seconds: float, callback) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(delay_seconds, self._fire, callback)

    def _fire(self, callback) -> None:
        result = callback()
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)


class FakeStreamingSession:
    def __init__(self, on_message=None, fail_send: bool = False) -> None:
        self.on_message = on_message
        self.payloads: list[Any] = []
        self.closed = False
        self.fail_send = fail_send

    async def send_realtime_input(self, payload: Any) -> None:
        if self.fail_send:
            raise ConnectionError("socket gone")
        self.payloads.append(payload)

    async def close(self) -> None:
        self.closed = True

    def push(self, message: dict[str, Any]) -> None:
        self.on_message(message)


class FakeBatchSession:
    def __init__(self, responses: list[Any] | None = None, error: Exception | None = None) -> None:
        self.responses = list(responses or [])
        self.error = error
        self.submissions: list[bytes] = []
        self.closed = False

    async def transcribe_audio(self, wav_data: bytes) -> Any:
        self.submissions.append(wav_data)
        if self.error is not None:
            raise self.error
        if self.responses:
            return self.responses.pop(0)
        return {"text": ""}

    async def close(self) -> None:
        self.closed = True


class SessionWithoutRealtimeInput:
    async def close(self) -> None:
        pass


class FakeSessionFactory:
    def __init__(self, make_session=None, failures: dict[int, Exception] | None = None) -> None:
        self._make_session = make_session or (lambda on_message: FakeStreamingSession(on_message))
        self._failures = failures or {}
        self.created: list[Any] = []
        self.languages: list[str] = []
        self.calls = 0

    async def create_session(self, descriptor, language, on_message):
        index = self.calls
        self.calls += 1
        self.languages.append(language)
        await asyncio.sleep(0)
        if index in self._failures:
            raise self._failures[index]
        session = self._make_session(on_message)
        self.created.append(session)
        return session


class FakeModelResolver:
    def __init__(self, descriptor: ProviderDescriptor | None, is_async: bool = False) -> None:
        self._descriptor = descriptor
        self._is_async = is_async
        self.capabilities: list[str] = []

    def get_current_model_info(self, capability: str):
        self.capabilities.append(capability)
        if self._is_async:
            return self._resolve()
        return self._descriptor

    async def _resolve(self):
        return self._descriptor


class FakeCaptureProcess:
    def __init__(self, chunks: list[bytes] | None = None, hold_open: bool = False) -> None:
        self.pid = 4242
        self.returncode: int | None = None
        self.terminated = False
        self.killed = False
        self._chunks = asyncio.Queue()
        for chunk in chunks or []:
            self._chunks.put_nowait(chunk)
        if not hold_open:
            self._chunks.put_nowait(b"")
        self._exited = asyncio.Event()

    def feed(self, data: bytes) -> None:
        self._chunks.put_nowait(data)

    def end_stream(self) -> None:
        self._chunks.put_nowait(b"")

    async def read(self, size: int) -> bytes:
        return await self._chunks.get()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        self._exit(0)

    def kill(self) -> None:
        self.killed = True
        self._exit(-9)

    def _exit(self, code: int) -> None:
        if self.returncode is None:
            self.returncode = code
        self._exited.set()
        self._chunks.put_nowait(b"")


class FakeCaptureLauncher:
    def __init__(
        self,
        process: FakeCaptureProcess | None = None,
        supported: bool = True,
        stray_found: bool = False,
        spawn_error: Exception | None = None,
    ) -> None:
        self.process = process
        self.supported = supported
        self.stray_found = stray_found
        self.spawn_error = spawn_error
        self.kill_stray_calls = 0
        self.spawn_calls = 0
        self.spawn_gate: asyncio.Event | None = None

    def is_supported(self) -> bool:
        return self.supported

    async def kill_stray(self) -> bool:
        self.kill_stray_calls += 1
        return self.stray_found

    async def spawn(self) -> FakeCaptureProcess:
        self.spawn_calls += 1
        if self.spawn_gate is not None:
            await self.spawn_gate.wait()
        if self.spawn_error is not None:
            raise self.spawn_error
        if self.process is None:
            self.process = FakeCaptureProcess(hold_open=True)
        return self.process


@dataclass
class EventRecorder:
    events: list[SessionEvent] = field(default_factory=list)

    def __call__(self, event: SessionEvent) -> None:
        self.events.append(event)

    @property
    def transcripts(self) -> list[TranscriptEvent]:
        return [e for e in self.events if isinstance(e, TranscriptEvent)]

    @property
    def finals(self) -> list[TranscriptEvent]:
        return [e for e in self.transcripts if not e.partial]

    @property
    def partials(self) -> list[TranscriptEvent]:
        return [e for e in self.transcripts if e.partial]

    @property
    def statuses(self) -> list[str]:
        return [e.text for e in self.events if isinstance(e, StatusUpdate)]

    def of_type(self, event_type: type) -> list[Any]:
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def scheduler():
    return ManualScheduler()
