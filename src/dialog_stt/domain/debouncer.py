import logging
from collections.abc import Callable

from dialog_stt.domain.protocol import ProtocolFamily
from dialog_stt.domain.timers import TimerHandle, TimerScheduler

logger = logging.getLogger(__name__)

COMPLETION_DEBOUNCE_SECONDS = 2.0


class TurnDebouncer:
    def __init__(
        self,
        family: ProtocolFamily,
        scheduler: TimerScheduler,
        on_final: Callable[[str], None],
        on_partial: Callable[[str], None] | None = None,
        debounce_seconds: float = COMPLETION_DEBOUNCE_SECONDS,
    ) -> None:
        self._family = family
        self._scheduler = scheduler
        self._on_final = on_final
        self._on_partial = on_partial
        self._debounce_seconds = debounce_seconds
        self._committed_buffer = ""
        self._live_buffer = ""
        self._timer: TimerHandle | None = None

    @property
    def committed_text(self) -> str:
        return self._committed_buffer

    @property
    def live_text(self) -> str:
        return self._live_buffer

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    @property
    def running_text(self) -> str:
        if self._committed_buffer and self._live_buffer:
            return f"{self._committed_buffer} {self._live_buffer}"
        return self._committed_buffer or self._live_buffer

    def on_fragment(self, text: str, emit_partial: bool = True) -> None:
        previous_text = self.running_text
        if self._family is ProtocolFamily.DELTA_STREAMING:
            self._live_buffer += text
        else:
            self._committed_buffer += text
        # Deltas arm the timer too, so a stream that never sends ``completed`` still finalizes.
        self._rearm()
        self._publish_partial_if_changed(previous_text, emit_partial)

    def on_explicit_final(self, text: str) -> None:
        previous_text = self.running_text
        self.cancel()
        self._live_buffer = ""
        separator = " " if self._committed_buffer else ""
        self._committed_buffer += separator + text
        self._rearm()
        self._publish_partial_if_changed(previous_text, emit_partial=True)

    def on_turn_complete(self) -> None:
        self.cancel()
        self.flush()

    def flush(self) -> str | None:
        final_text = self.running_text.strip()
        self.cancel()
        if not final_text:
            return None

        self._committed_buffer = ""
        self._live_buffer = ""
        self._on_final(final_text)
        return final_text

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def reset(self) -> None:
        self.cancel()
        self._committed_buffer = ""
        self._live_buffer = ""

    def _rearm(self) -> None:
        self.cancel()
        self._timer = self._scheduler.call_later(self._debounce_seconds, self._on_quiet_period)

    def _on_quiet_period(self) -> None:
        self._timer = None
        logger.debug("Quiet period elapsed, flushing turn")
        self.flush()

    def _publish_partial_if_changed(self, previous_text: str, emit_partial: bool) -> None:
        current_text = self.running_text
        if not emit_partial or self._on_partial is None:
            return
        if current_text == previous_text or not current_text.strip():
            return
        self._on_partial(current_text)
