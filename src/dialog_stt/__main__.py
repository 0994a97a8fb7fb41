import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from dialog_stt.config import DialogSttConfig
from dialog_stt.domain.errors import DialogSttError
from dialog_stt.domain.events import ProviderErrorEvent, SessionEvent, StatusUpdate
from dialog_stt.log_format import ColoredFormatter

ENV_FILE_PATH = Path.home() / ".config" / "dialog-stt" / "env"


def _load_env_file(path: Path = ENV_FILE_PATH) -> None:
    if not path.exists():
        return
    with open(path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            if key not in os.environ:
                os.environ[key] = value.strip().strip("'\"")


def _configure_logging(verbose: bool) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(ColoredFormatter(datefmt="%H:%M:%S"))
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, handlers=[handler])

    if verbose:
        logging.getLogger("websockets").setLevel(logging.INFO)
        logging.getLogger("httpcore").setLevel(logging.INFO)
        logging.getLogger("httpx").setLevel(logging.INFO)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Two-channel live conversation transcription")
    parser.add_argument("--provider", choices=["gemini", "openai", "deepgram", "whisper"], help="STT provider")
    parser.add_argument("--model", help="Provider model id")
    parser.add_argument("--language", help="Transcription language (e.g. en)")
    parser.add_argument("--no-capture", action="store_true", help="Do not capture system audio")
    parser.add_argument("--no-mic", action="store_true", help="Do not capture the microphone")
    parser.add_argument("--skip-checks", action="store_true", help="Skip startup health checks")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    return parser


def apply_overrides(config: DialogSttConfig, args: argparse.Namespace) -> DialogSttConfig:
    if args.provider:
        config.stt_provider = args.provider
    if args.model:
        config.stt_model = args.model
    if args.language:
        config.language = args.language
    if args.no_capture:
        config.capture_enabled = False
    if args.no_mic:
        config.mic_enabled = False
    return config


def main() -> None:
    _load_env_file()
    args = build_parser().parse_args()
    _configure_logging(args.verbose)

    config = apply_overrides(DialogSttConfig(), args)
    asyncio.run(_run_daemon(config, skip_checks=args.skip_checks))


def _log_event(event: SessionEvent) -> None:
    if isinstance(event, StatusUpdate):
        logging.info("Status: %s", event.text)
    elif isinstance(event, ProviderErrorEvent):
        logging.error("[%s] Provider error: %s", event.channel.label, event.detail)


async def _run_daemon(config: DialogSttConfig, skip_checks: bool = False) -> None:
    from dialog_stt.factory import create_coordinator, create_mic_capture
    from dialog_stt.health import has_critical_failures, run_startup_checks

    if not skip_checks:
        results = run_startup_checks(config)
        if has_critical_failures(results):
            logging.error("Critical health check failures, aborting startup")
            sys.exit(1)

    coordinator = create_coordinator(config)
    coordinator.add_listener(_log_event)
    try:
        await coordinator.initialize_session(config.language)
    except DialogSttError as exc:
        logging.error("Could not start transcription: %s", exc)
        sys.exit(1)

    shutdown_event = asyncio.Event()
    shutdown_triggered = False

    def handle_signal() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            logging.warning("Forced exit")
            sys.exit(1)
        shutdown_triggered = True
        logging.info("Shutting down...")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    if config.capture_enabled:
        await coordinator.start_capture()

    mic = create_mic_capture(config)
    mic_task: asyncio.Task | None = None
    if mic is not None:
        await mic.start()

        async def mic_loop() -> None:
            async for frame in mic.read_frames():
                try:
                    await coordinator.ingest_local_audio(frame)
                except DialogSttError:
                    logging.warning("Local STT session not active, dropping microphone audio")

        mic_task = asyncio.create_task(mic_loop())

    try:
        await shutdown_event.wait()
    finally:
        if mic_task is not None:
            mic_task.cancel()
            try:
                await asyncio.wait_for(mic_task, timeout=1.0)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass
        if mic is not None:
            await mic.stop()
        await coordinator.close_session()


if __name__ == "__main__":
    main()
