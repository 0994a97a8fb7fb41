from enum import Enum, auto

from dialog_stt.domain.errors import DialogSttError


class CaptureState(Enum):
    IDLE = auto()
    STARTING = auto()
    RUNNING = auto()


VALID_TRANSITIONS: dict[CaptureState, set[CaptureState]] = {
    CaptureState.IDLE: {CaptureState.STARTING},
    CaptureState.STARTING: {CaptureState.RUNNING, CaptureState.IDLE},
    CaptureState.RUNNING: {CaptureState.IDLE},
}


class InvalidTransitionError(DialogSttError):
    pass


def validate_transition(current: CaptureState, target: CaptureState) -> None:
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Cannot transition from {current.name} to {target.name}")
