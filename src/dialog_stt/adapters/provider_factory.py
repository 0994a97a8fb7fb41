import logging
from collections.abc import Callable
from dataclasses import dataclass

from dialog_stt.domain.audio import SAMPLE_RATE
from dialog_stt.domain.errors import ConfigurationError
from dialog_stt.domain.protocol import ProtocolFamily, ProviderDescriptor
from dialog_stt.ports.provider import MessageHandler, ProviderSession

logger = logging.getLogger(__name__)

SessionBuilder = Callable[[ProviderDescriptor, str, MessageHandler, int, str], ProviderSession]


@dataclass(frozen=True)
class ProviderSpec:
    family: ProtocolFamily
    default_model: str
    build: SessionBuilder


def _build_gemini(
    descriptor: ProviderDescriptor, language: str, on_message: MessageHandler, sample_rate: int, prompt: str
) -> ProviderSession:
    from dialog_stt.adapters.gemini_live_stt import GeminiLiveTranscriber

    return GeminiLiveTranscriber(
        api_key=descriptor.credential_ref,
        on_message=on_message,
        model=descriptor.model_id,
        language=language,
        url=descriptor.api_url,
    )


def _build_openai(
    descriptor: ProviderDescriptor, language: str, on_message: MessageHandler, sample_rate: int, prompt: str
) -> ProviderSession:
    from dialog_stt.adapters.openai_realtime_stt import OpenAIRealtimeTranscriber

    return OpenAIRealtimeTranscriber(
        api_key=descriptor.credential_ref,
        on_message=on_message,
        model=descriptor.model_id,
        language=language,
        url=descriptor.api_url,
    )


def _build_deepgram(
    descriptor: ProviderDescriptor, language: str, on_message: MessageHandler, sample_rate: int, prompt: str
) -> ProviderSession:
    from dialog_stt.adapters.deepgram_stt import DeepgramStreamingTranscriber

    return DeepgramStreamingTranscriber(
        api_key=descriptor.credential_ref,
        on_message=on_message,
        model=descriptor.model_id,
        language=language,
        sample_rate=sample_rate,
    )


def _build_whisper(
    descriptor: ProviderDescriptor, language: str, on_message: MessageHandler, sample_rate: int, prompt: str
) -> ProviderSession:
    from dialog_stt.adapters.openai_whisper_stt import OpenAIWhisperTranscriber

    return OpenAIWhisperTranscriber(
        api_key=descriptor.credential_ref,
        model=descriptor.model_id,
        language=language,
        base_url=descriptor.api_url,
        prompt=prompt,
    )


PROVIDERS: dict[str, ProviderSpec] = {
    "gemini": ProviderSpec(ProtocolFamily.TURN_BASED, "gemini-live-2.5-flash-preview", _build_gemini),
    "openai": ProviderSpec(ProtocolFamily.DELTA_STREAMING, "gpt-4o-mini-transcribe", _build_openai),
    "deepgram": ProviderSpec(ProtocolFamily.DELTA_STREAMING, "nova-2", _build_deepgram),
    "whisper": ProviderSpec(ProtocolFamily.BATCH_ONLY, "whisper-1", _build_whisper),
}


def provider_spec(provider_id: str) -> ProviderSpec:
    spec = PROVIDERS.get(provider_id)
    if spec is None:
        raise ConfigurationError(f"Unsupported STT provider: {provider_id}")
    return spec


class ProviderSessionRegistry:
    def __init__(self, sample_rate: int = SAMPLE_RATE, prompt: str = "") -> None:
        self._sample_rate = sample_rate
        self._prompt = prompt

    async def create_session(
        self,
        descriptor: ProviderDescriptor,
        language: str,
        on_message: MessageHandler,
    ) -> ProviderSession:
        spec = provider_spec(descriptor.provider_id)
        session = spec.build(descriptor, language, on_message, self._sample_rate, self._prompt)

        connect = getattr(session, "connect", None)
        if connect is not None:
            await connect()
        logger.debug("Created %s session (model=%s, language=%s)", descriptor.provider_id, descriptor.model_id, language)
        return session
