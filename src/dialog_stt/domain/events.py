from dataclasses import dataclass, field
from enum import Enum
from time import time


class ChannelIdentity(Enum):
    LOCAL = "local"
    REMOTE = "remote"

    @property
    def label(self) -> str:
        return "Me" if self is ChannelIdentity.LOCAL else "Them"


def now_millis() -> int:
    return int(time() * 1000)


@dataclass(frozen=True)
class SessionEvent:
    timestamp_millis: int = field(default_factory=now_millis)


@dataclass(frozen=True)
class TranscriptEvent(SessionEvent):
    channel: ChannelIdentity = ChannelIdentity.LOCAL
    text: str = ""
    partial: bool = False


@dataclass(frozen=True)
class CaptureAudioEvent(SessionEvent):
    data: str = ""


@dataclass(frozen=True)
class StatusUpdate(SessionEvent):
    text: str = ""


@dataclass(frozen=True)
class ProviderErrorEvent(SessionEvent):
    channel: ChannelIdentity = ChannelIdentity.LOCAL
    detail: str = ""
