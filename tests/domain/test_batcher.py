import asyncio
from types import SimpleNamespace

import pytest

from dialog_stt.domain.audio import WAV_HEADER_SIZE
from dialog_stt.domain.batcher import AUDIO_SEND_INTERVAL_SECONDS, AudioBatcher, sanitize_transcript

from conftest import FakeBatchSession, LoopTimerScheduler, generate_sine_wave


def make_batcher(scheduler, session: FakeBatchSession, **kwargs):
    finals: list[str] = []
    batcher = AudioBatcher(
        transcribe=session.transcribe_audio,
        scheduler=scheduler,
        on_final=finals.append,
        **kwargs,
    )
    return batcher, finals


class TestSanitizeTranscript:
    def test_strips_bracket_and_paren_annotations(self):
        assert sanitize_transcript("[BLANK_AUDIO] hello (coughs) there") == "hello  there"

    def test_annotation_only_becomes_empty(self):
        assert sanitize_transcript(" [Music] (silence) ") == ""

    def test_plain_text_is_trimmed(self):
        assert sanitize_transcript("  just words ") == "just words"


class TestAudioBatcher:
    @pytest.mark.asyncio
    async def test_first_chunk_arms_window_and_later_chunks_do_not(self, scheduler):
        batcher, _ = make_batcher(scheduler, FakeBatchSession())
        batcher.on_audio(b"\x01\x00" * 10)
        batcher.on_audio(b"\x02\x00" * 10)
        assert len(scheduler.timers) == 1
        assert scheduler.timers[0].delay == AUDIO_SEND_INTERVAL_SECONDS
        assert batcher.pending_bytes == 40

    @pytest.mark.asyncio
    async def test_window_submits_concatenation_of_chunks_as_wav(self, scheduler):
        session = FakeBatchSession(responses=[{"text": "hello there"}])
        batcher, finals = make_batcher(scheduler, session)
        chunks = [generate_sine_wave(duration_ms=20), generate_sine_wave(frequency=220.0, duration_ms=20)]
        for chunk in chunks:
            batcher.on_audio(chunk)

        await scheduler.fire_latest()

        assert len(session.submissions) == 1
        wav = session.submissions[0]
        assert wav[:4] == b"RIFF"
        assert wav[WAV_HEADER_SIZE:] == b"".join(chunks)
        assert finals == ["hello there"]
        assert batcher.pending_bytes == 0
        assert not batcher.timer_armed

    @pytest.mark.asyncio
    async def test_next_chunk_after_submit_arms_a_new_window(self, scheduler):
        batcher, _ = make_batcher(scheduler, FakeBatchSession())
        batcher.on_audio(b"\x00\x00")
        await scheduler.fire_latest()
        batcher.on_audio(b"\x00\x00")
        assert len(scheduler.live_timers) == 1
        assert len(scheduler.timers) == 2

    @pytest.mark.asyncio
    async def test_annotation_only_result_emits_nothing(self, scheduler):
        session = FakeBatchSession(responses=[{"text": "[BLANK_AUDIO]"}])
        batcher, finals = make_batcher(scheduler, session)
        batcher.on_audio(b"\x00\x00" * 100)
        assert await batcher.flush() is None
        assert finals == []
        assert len(session.submissions) == 1

    @pytest.mark.asyncio
    async def test_object_result_with_text_attribute(self, scheduler):
        session = FakeBatchSession(responses=[SimpleNamespace(text="object result (laughs)")])
        batcher, finals = make_batcher(scheduler, session)
        batcher.on_audio(b"\x00\x00" * 10)
        assert await batcher.flush() == "object result"
        assert finals == ["object result"]

    @pytest.mark.asyncio
    async def test_transcription_failure_drops_audio(self, scheduler):
        session = FakeBatchSession(error=RuntimeError("backend down"))
        batcher, finals = make_batcher(scheduler, session)
        batcher.on_audio(b"\x00\x00" * 10)
        await scheduler.fire_latest()
        assert finals == []
        assert batcher.pending_bytes == 0

        session.error = None
        session.responses = [{"text": "recovered"}]
        batcher.on_audio(b"\x01\x00" * 10)
        await scheduler.fire_latest()
        assert finals == ["recovered"]
        assert session.submissions[-1][WAV_HEADER_SIZE:] == b"\x01\x00" * 10

    @pytest.mark.asyncio
    async def test_flush_with_nothing_pending_does_not_call_backend(self, scheduler):
        session = FakeBatchSession()
        batcher, _ = make_batcher(scheduler, session)
        assert await batcher.flush() is None
        assert session.submissions == []

    @pytest.mark.asyncio
    async def test_discard_cancels_window_and_drops_audio(self, scheduler):
        session = FakeBatchSession()
        batcher, _ = make_batcher(scheduler, session)
        batcher.on_audio(b"\x00\x00" * 10)
        batcher.discard()
        assert batcher.pending_bytes == 0
        assert scheduler.live_timers == []
        assert session.submissions == []

    @pytest.mark.asyncio
    async def test_window_elapses_on_the_loop(self):
        session = FakeBatchSession(responses=[{"text": "from the loop"}])
        batcher, finals = make_batcher(LoopTimerScheduler(), session, window_seconds=0.02)
        batcher.on_audio(generate_sine_wave(duration_ms=10))
        await asyncio.sleep(0.1)
        assert finals == ["from the loop"]

    @pytest.mark.asyncio
    async def test_twelve_thousand_bytes_make_one_wav_request(self, scheduler):
        session = FakeBatchSession()
        batcher, _ = make_batcher(scheduler, session)
        for _ in range(5):
            batcher.on_audio(b"\x00" * 2400)
        await scheduler.fire_latest()
        assert len(session.submissions) == 1
        assert len(session.submissions[0]) == 12044
