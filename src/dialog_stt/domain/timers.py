from collections.abc import Awaitable, Callable
from typing import Protocol

TimerCallback = Callable[[], Awaitable[None] | None]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...
    def cancelled(self) -> bool: ...


class TimerScheduler(Protocol):
    def call_later(self, delay_seconds: float, callback: TimerCallback) -> TimerHandle: ...
