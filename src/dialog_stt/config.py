from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class DialogSttConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DIALOG_STT_")

    stt_provider: Literal["gemini", "openai", "deepgram", "whisper"] = "openai"
    stt_model: str = ""
    api_key_file: str = ""
    api_url: str = ""

    language: str = "en"
    transcribe_language: str = ""
    stt_prompt: str = ""

    debounce_ms: int = 2000
    batch_window_ms: int = 5000
    flush_on_close: bool = True

    sample_rate: int = 24000
    capture_enabled: bool = True
    capture_binary: str = ""
    capture_chunk_ms: int = 100

    mic_enabled: bool = True
    mic_device: str = ""
    mic_frame_duration_ms: int = 100

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000

    @property
    def batch_window_seconds(self) -> float:
        return self.batch_window_ms / 1000

    def read_secret(self, path: str) -> str:
        if not path:
            return ""
        try:
            with open(path) as f:
                return f.read().strip()
        except FileNotFoundError:
            return ""
