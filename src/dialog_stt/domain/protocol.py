"""Normalization of provider push-messages.

Providers disagree on how they stream transcripts. Turn-based backends send
sub-word pieces of the input transcription and a separate turn-complete
marker. Delta-streaming backends send ``delta`` pieces of the utterance in
progress followed by a ``completed`` message carrying the whole utterance.
Batch-only backends never push anything and are driven by the AudioBatcher.

``classify_message`` reduces every inbound message to one of five outcomes
so the rest of the channel never looks at provider wire shapes.
"""

import base64
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

from dialog_stt.domain.audio import DEFAULT_PCM_MIME_TYPE

NOISE_SENTINEL = "<noise>"
INTERNAL_AUDIO_TAG_MARKER = "vq_lbr_audio_"
DELTA_EVENT = "delta"
COMPLETED_EVENT = "completed"


class ProtocolFamily(Enum):
    TURN_BASED = auto()
    DELTA_STREAMING = auto()
    BATCH_ONLY = auto()

    @property
    def is_streaming(self) -> bool:
        return self is not ProtocolFamily.BATCH_ONLY


@dataclass(frozen=True)
class ProviderDescriptor:
    provider_id: str
    model_id: str
    credential_ref: str
    protocol_family: ProtocolFamily
    api_url: str = ""


@dataclass(frozen=True)
class PartialFragment:
    text: str
    suppressed: bool = False


@dataclass(frozen=True)
class FinalFragment:
    text: str


@dataclass(frozen=True)
class TurnComplete:
    pass


@dataclass(frozen=True)
class Ignore:
    pass


@dataclass(frozen=True)
class ProviderError:
    detail: str


ClassifiedMessage = PartialFragment | FinalFragment | TurnComplete | Ignore | ProviderError


def classify_message(family: ProtocolFamily, message: Any) -> ClassifiedMessage:
    if not isinstance(message, dict):
        return Ignore()

    error = message.get("error")
    if error:
        return ProviderError(detail=_describe_error(error))

    if family is ProtocolFamily.TURN_BASED:
        return _classify_turn_based(message)
    if family is ProtocolFamily.DELTA_STREAMING:
        return _classify_delta_streaming(message)
    return Ignore()


def build_realtime_payload(
    family: ProtocolFamily, data: bytes | str, mime_type: str | None = None
) -> Any:
    encoded = data if isinstance(data, str) else base64.b64encode(data).decode("ascii")
    if family is ProtocolFamily.TURN_BASED:
        return {"audio": {"data": encoded, "mimeType": mime_type or DEFAULT_PCM_MIME_TYPE}}
    return encoded


def _classify_turn_based(message: dict) -> ClassifiedMessage:
    server_content = message.get("serverContent") or {}
    if server_content.get("turnComplete"):
        return TurnComplete()

    transcription = server_content.get("inputTranscription") or {}
    text = transcription.get("text")
    if not text:
        return Ignore()

    stripped = text.strip()
    if not stripped or stripped == NOISE_SENTINEL:
        return Ignore()
    return PartialFragment(text=text)


def _classify_delta_streaming(message: dict) -> ClassifiedMessage:
    event_name = str(message.get("type", "")).rsplit(".", 1)[-1]
    text = _extract_delta_text(message)

    if event_name == DELTA_EVENT:
        if not text:
            return Ignore()
        return PartialFragment(text=text, suppressed=INTERNAL_AUDIO_TAG_MARKER in text)

    if event_name == COMPLETED_EVENT:
        stripped = text.strip()
        if not stripped:
            return Ignore()
        return FinalFragment(text=stripped)

    return Ignore()


def _extract_delta_text(message: dict) -> str:
    text = message.get("transcript") or message.get("delta")
    if not text:
        alternatives = message.get("alternatives") or []
        if alternatives and isinstance(alternatives[0], dict):
            text = alternatives[0].get("transcript")
    return text if isinstance(text, str) else ""


def _describe_error(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error)
