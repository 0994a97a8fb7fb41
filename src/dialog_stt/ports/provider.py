from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from dialog_stt.domain.protocol import ProviderDescriptor

MessageHandler = Callable[[dict[str, Any]], None]


class StreamingProviderSession(Protocol):
    async def send_realtime_input(self, payload: Any) -> None: ...
    async def close(self) -> None: ...


class BatchProviderSession(Protocol):
    async def transcribe_audio(self, wav_data: bytes) -> dict[str, Any]: ...
    async def close(self) -> None: ...


ProviderSession = StreamingProviderSession | BatchProviderSession


class ProviderSessionFactory(Protocol):
    async def create_session(
        self,
        descriptor: ProviderDescriptor,
        language: str,
        on_message: MessageHandler,
    ) -> ProviderSession: ...


class ModelResolver(Protocol):
    def get_current_model_info(
        self, capability: str
    ) -> ProviderDescriptor | None | Awaitable[ProviderDescriptor | None]: ...
