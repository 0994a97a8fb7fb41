from typing import Protocol


class CaptureProcess(Protocol):
    @property
    def pid(self) -> int | None: ...
    async def read(self, size: int) -> bytes: ...
    async def wait(self) -> int: ...
    def terminate(self) -> None: ...
    def kill(self) -> None: ...


class CaptureLauncher(Protocol):
    def is_supported(self) -> bool: ...
    async def kill_stray(self) -> bool: ...
    async def spawn(self) -> CaptureProcess: ...
