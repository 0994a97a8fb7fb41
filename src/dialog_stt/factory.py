import logging

from dialog_stt.adapters.provider_factory import ProviderSessionRegistry
from dialog_stt.adapters.settings_resolver import SettingsModelResolver
from dialog_stt.adapters.system_audio_capture import SystemAudioCaptureLauncher
from dialog_stt.config import DialogSttConfig
from dialog_stt.domain.audio import capture_chunk_size
from dialog_stt.domain.coordinator import SessionCoordinator

logger = logging.getLogger(__name__)


def create_capture_launcher(config: DialogSttConfig) -> SystemAudioCaptureLauncher | None:
    if not config.capture_enabled:
        return None
    return SystemAudioCaptureLauncher(
        binary_path=config.capture_binary,
        sample_rate=config.sample_rate,
    )


def create_coordinator(config: DialogSttConfig) -> SessionCoordinator:
    return SessionCoordinator(
        session_factory=ProviderSessionRegistry(sample_rate=config.sample_rate, prompt=config.stt_prompt),
        model_resolver=SettingsModelResolver(config),
        capture_launcher=create_capture_launcher(config),
        debounce_seconds=config.debounce_seconds,
        batch_window_seconds=config.batch_window_seconds,
        sample_rate=config.sample_rate,
        capture_chunk_size=capture_chunk_size(
            sample_rate=config.sample_rate,
            chunk_duration_ms=config.capture_chunk_ms,
        ),
        flush_on_close=config.flush_on_close,
        language_override=config.transcribe_language,
    )


def create_mic_capture(config: DialogSttConfig):
    if not config.mic_enabled:
        return None
    from dialog_stt.adapters.sounddevice_audio import MicrophoneCapture

    return MicrophoneCapture(
        device=config.mic_device or None,
        sample_rate=config.sample_rate,
        frame_duration_ms=config.mic_frame_duration_ms,
    )
