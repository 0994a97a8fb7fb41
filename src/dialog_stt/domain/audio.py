import io
import wave

import numpy as np

SAMPLE_RATE = 24000
SAMPLE_WIDTH_BYTES = 2
CAPTURE_CHANNELS = 2
STEREO_FRAME_BYTES = SAMPLE_WIDTH_BYTES * CAPTURE_CHANNELS
WAV_HEADER_SIZE = 44
DEFAULT_PCM_MIME_TYPE = f"audio/pcm;rate={SAMPLE_RATE}"


def encode_wav(
    pcm_data: bytes,
    channels: int = 1,
    sample_rate: int = SAMPLE_RATE,
    bit_depth: int = 16,
) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(bit_depth // 8)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm_data)
    return buffer.getvalue()


def downmix_stereo_to_mono(stereo_data: bytes) -> bytes:
    usable_length = len(stereo_data) - len(stereo_data) % STEREO_FRAME_BYTES
    samples = np.frombuffer(stereo_data[:usable_length], dtype="<i2")
    return samples.reshape(-1, CAPTURE_CHANNELS)[:, 0].tobytes()


def capture_chunk_size(
    sample_rate: int = SAMPLE_RATE,
    chunk_duration_ms: int = 100,
    channels: int = CAPTURE_CHANNELS,
) -> int:
    frames = sample_rate * chunk_duration_ms // 1000
    return frames * SAMPLE_WIDTH_BYTES * channels
