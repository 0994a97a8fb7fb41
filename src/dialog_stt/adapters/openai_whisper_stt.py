import io
import logging

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)


class OpenAIWhisperTranscriber:
    def __init__(
        self,
        api_key: str,
        model: str = "whisper-1",
        language: str = "en",
        base_url: str = "",
        prompt: str = "",
    ) -> None:
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url or None)
        self._model = model
        self._language = language
        self._prompt = prompt

    async def transcribe_audio(self, wav_data: bytes) -> dict[str, str]:
        wav_buffer = io.BytesIO(wav_data)
        wav_buffer.name = "audio.wav"

        options = {"model": self._model, "file": wav_buffer, "language": self._language}
        if self._prompt:
            options["prompt"] = self._prompt

        logger.debug("Transcribing %d bytes with %s (language=%s)", len(wav_data), self._model, self._language)
        result = await self._client.audio.transcriptions.create(**options)
        return {"text": result.text}

    async def close(self) -> None:
        await self._client.close()
        logger.info("Whisper client closed")
