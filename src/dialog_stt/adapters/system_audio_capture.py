import asyncio
import logging
import shutil
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

SYSTEM_AUDIO_DUMP_NAME = "SystemAudioDump"
KILL_STRAY_TIMEOUT_SECONDS = 2.0
PULSE_MONITOR_DEVICE = "@DEFAULT_MONITOR@"


def build_capture_command(platform: str, binary_path: str, sample_rate: int) -> list[str] | None:
    if platform == "darwin":
        return [binary_path] if binary_path else None
    if platform.startswith("linux"):
        return [
            "parec",
            "--raw",
            "--format=s16le",
            f"--rate={sample_rate}",
            "--channels=2",
            f"--device={PULSE_MONITOR_DEVICE}",
        ]
    return None


def build_stray_pattern(command: list[str]) -> str:
    executable = Path(command[0]).name
    if executable == "parec":
        return f"parec.*{PULSE_MONITOR_DEVICE}"
    return executable


class SubprocessCapture:
    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self._process = process
        self._stderr_task = asyncio.create_task(self._log_stderr())

    @property
    def pid(self) -> int | None:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    async def read(self, size: int) -> bytes:
        return await self._process.stdout.read(size)

    async def wait(self) -> int:
        return_code = await self._process.wait()
        if not self._stderr_task.done():
            self._stderr_task.cancel()
        return return_code

    def terminate(self) -> None:
        if self._process.returncode is None:
            self._process.terminate()

    def kill(self) -> None:
        if self._process.returncode is None:
            self._process.kill()

    async def _log_stderr(self) -> None:
        if self._process.stderr is None:
            return
        while True:
            line = await self._process.stderr.readline()
            if not line:
                break
            logger.warning("Capture stderr: %s", line.decode(errors="replace").rstrip())


class SystemAudioCaptureLauncher:
    def __init__(
        self,
        binary_path: str = "",
        sample_rate: int = 24000,
        platform: str = sys.platform,
    ) -> None:
        self._command = build_capture_command(platform, binary_path, sample_rate)

    @property
    def command(self) -> list[str] | None:
        return self._command

    def is_supported(self) -> bool:
        if not self._command:
            return False
        executable = self._command[0]
        if Path(executable).is_absolute():
            return Path(executable).exists()
        return shutil.which(executable) is not None

    async def kill_stray(self) -> bool:
        if not self._command:
            return False
        pattern = build_stray_pattern(self._command)
        logger.debug("Checking for existing capture processes matching '%s'", pattern)
        try:
            process = await asyncio.create_subprocess_exec(
                "pkill",
                "-f",
                pattern,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except FileNotFoundError:
            logger.debug("pkill not available, skipping stray process check")
            return False

        try:
            return_code = await asyncio.wait_for(process.wait(), timeout=KILL_STRAY_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return False
        return return_code == 0

    async def spawn(self) -> SubprocessCapture:
        if not self._command:
            raise RuntimeError("System audio capture is not supported on this platform")
        logger.info("Starting system audio capture: %s", " ".join(self._command))
        process = await asyncio.create_subprocess_exec(
            *self._command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        return SubprocessCapture(process)
