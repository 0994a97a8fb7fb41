import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from dialog_stt.adapters.provider_factory import PROVIDERS
from dialog_stt.adapters.system_audio_capture import SystemAudioCaptureLauncher
from dialog_stt.config import DialogSttConfig

logger = logging.getLogger(__name__)

CRITICAL_CHECKS = {"provider", "api_keys"}


@dataclass
class HealthCheckResult:
    name: str
    passed: bool
    detail: str


def run_startup_checks(config: DialogSttConfig) -> list[HealthCheckResult]:
    results = [
        _check_provider(config),
        _check_api_keys(config),
        _check_capture_helper(config),
        _check_audio_device(config),
    ]

    passed = sum(1 for r in results if r.passed)
    logger.info("Health check: %d/%d passed", passed, len(results))
    for result in results:
        level = logging.INFO if result.passed else logging.WARNING
        symbol = "OK" if result.passed else "FAIL"
        logger.log(level, "  [%s] %s: %s", symbol, result.name, result.detail)

    return results


def has_critical_failures(results: list[HealthCheckResult]) -> bool:
    return any(not r.passed and r.name in CRITICAL_CHECKS for r in results)


def _check_provider(config: DialogSttConfig) -> HealthCheckResult:
    name = "provider"
    spec = PROVIDERS.get(config.stt_provider)
    if spec is None:
        return HealthCheckResult(name=name, passed=False, detail=f"Unknown provider '{config.stt_provider}'")
    model = config.stt_model or spec.default_model
    return HealthCheckResult(
        name=name, passed=True, detail=f"{config.stt_provider} ({model}, {spec.family.name})"
    )


def _check_api_keys(config: DialogSttConfig) -> HealthCheckResult:
    name = "api_keys"
    if not config.read_secret(config.api_key_file):
        return HealthCheckResult(
            name=name,
            passed=False,
            detail=f"Missing: {config.stt_provider} ({config.api_key_file or 'not configured'})",
        )
    return HealthCheckResult(name=name, passed=True, detail=f"{config.stt_provider} key loaded")


def _check_capture_helper(config: DialogSttConfig) -> HealthCheckResult:
    name = "capture_helper"
    if not config.capture_enabled:
        return HealthCheckResult(name=name, passed=True, detail="Skipped (capture disabled)")

    launcher = SystemAudioCaptureLauncher(binary_path=config.capture_binary, sample_rate=config.sample_rate)
    command = launcher.command
    if not command:
        return HealthCheckResult(name=name, passed=False, detail="No system audio capture helper for this platform")
    if not launcher.is_supported():
        return HealthCheckResult(name=name, passed=False, detail=f"'{command[0]}' not found")
    if shutil.which("pkill") is None:
        return HealthCheckResult(
            name=name, passed=True, detail=f"{Path(command[0]).name} found, pkill missing (stray check disabled)"
        )
    return HealthCheckResult(name=name, passed=True, detail=f"{Path(command[0]).name} found")


def _check_audio_device(config: DialogSttConfig) -> HealthCheckResult:
    name = "audio_device"
    if not config.mic_enabled:
        return HealthCheckResult(name=name, passed=True, detail="Skipped (microphone disabled)")
    try:
        import sounddevice as sd

        if config.mic_device:
            for dev in sd.query_devices():
                if config.mic_device.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
                    return HealthCheckResult(name=name, passed=True, detail=f"Device '{config.mic_device}' found")

        default = sd.query_devices(kind="input")
        return HealthCheckResult(name=name, passed=True, detail=f"Default input: {default['name']}")
    except Exception as exc:
        return HealthCheckResult(name=name, passed=False, detail=str(exc))
