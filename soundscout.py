import sys
import os

# Safety fix for running with pythonw.exe (no console)
if sys.stdout is None:
    sys.stdout = open(os.devnull, "w")
if sys.stderr is None:
    sys.stderr = open(os.devnull, "w")

import argparse
import asyncio
import json
import logging
import mimetypes
import signal
from pathlib import Path

from hypercorn.config import Config
from hypercorn.asyncio import serve

from config import DEBUG, SERVER, STORAGE, VERSION
from logging_config import setup_logging, get_logger

logger = get_logger(__name__)

_shutdown_event = asyncio.Event()


def _signal_handler() -> None:
    logger.info("Received interrupt, shutting down...")
    _shutdown_event.set()


async def run_server(host: str, port: int) -> None:
    """Run the Quart app under Hypercorn until interrupted."""
    from server import app

    config = Config()
    config.bind = [f"{host}:{port}"]
    config.use_reloader = False
    config.graceful_timeout = 2
    config.shutdown_timeout = 2

    # Mute unnecessary logging
    logging.getLogger('hypercorn.error').setLevel(logging.ERROR)
    logging.getLogger('hypercorn.access').setLevel(logging.ERROR)

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, _signal_handler)
        loop.add_signal_handler(signal.SIGTERM, _signal_handler)
    except NotImplementedError:
        pass  # Windows: KeyboardInterrupt reaches asyncio.run instead

    logger.info(f"SoundScout {VERSION} listening on http://{host}:{port}")
    await serve(app, config, shutdown_trigger=_shutdown_event.wait)


def _print_outcome(outcome) -> int:
    from audio_recognition.results import RecognitionError, to_response

    print(json.dumps(to_response(outcome), indent=2))
    return 1 if isinstance(outcome, RecognitionError) else 0


async def identify_file(path: Path, account_id: str) -> int:
    """Identify an audio file from disk."""
    import server
    from audio_recognition import AudioSample, SessionContext

    content_type = mimetypes.guess_type(str(path))[0] or "audio/wav"
    sample = AudioSample(data=path.read_bytes(), content_type=content_type)
    outcome = await server.get_orchestrator().recognize_sample(SessionContext(account_id), sample)
    return _print_outcome(outcome)


async def record_and_identify(account_id: str) -> int:
    """Record from the default microphone until auto-stop (or Ctrl+C), then identify."""
    import server
    from audio_recognition import AudioCaptureController, SessionContext, SoundDeviceRecorder
    from audio_recognition.errors import CaptureError
    from config import CAPTURE

    if not SoundDeviceRecorder.is_available():
        print("sounddevice / PortAudio not available", file=sys.stderr)
        return 2

    done = asyncio.Event()
    samples = []

    def on_auto_stop(sample):
        samples.append(sample)
        done.set()

    controller = AudioCaptureController(
        SoundDeviceRecorder(device_id=CAPTURE.get("device_id"), sample_rate=CAPTURE.get("sample_rate")),
        max_duration_ms=CAPTURE.get("max_duration_ms", 10000),
        tick_ms=CAPTURE.get("tick_ms", 100),
        on_auto_stop=on_auto_stop,
    )
    try:
        await controller.start_recording()
    except CaptureError as e:
        print(f"Could not start recording: {e}", file=sys.stderr)
        return 2

    print("Recording... (Ctrl+C to stop early)")
    try:
        await done.wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        sample = await controller.stop_recording()
        if sample is not None:
            samples.append(sample)

    if not samples:
        print(controller.error or "Nothing recorded", file=sys.stderr)
        return 2
    outcome = await server.get_orchestrator().recognize_sample(SessionContext(account_id), samples[0])
    return _print_outcome(outcome)


async def show_usage(account_id: str) -> int:
    import server

    usage = await server.get_orchestrator().quota.usage(account_id)
    print(json.dumps(usage.to_dict(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='SoundScout - identify music from short recordings')
    parser.add_argument('--store', choices=['json', 'memory'], help='Override the discovery store backend')
    sub = parser.add_subparsers(dest='command')

    serve_parser = sub.add_parser('serve', help='Run the HTTP API (default)')
    serve_parser.add_argument('--host', default=SERVER["host"])
    serve_parser.add_argument('--port', type=int, default=int(SERVER["port"]))

    identify_parser = sub.add_parser('identify', help='Identify an audio file')
    identify_parser.add_argument('file', type=Path)
    identify_parser.add_argument('--account', default='local')

    record_parser = sub.add_parser('record', help='Record from the microphone and identify')
    record_parser.add_argument('--account', default='local')

    usage_parser = sub.add_parser('usage', help='Show quota usage for an account')
    usage_parser.add_argument('--account', default='local')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging(
        console_level=DEBUG.get("log_level", "INFO"),
        file_level="DEBUG" if DEBUG.get("log_detailed", False) else "INFO",
        console=DEBUG.get("log_to_console", True),
        log_file=DEBUG.get("log_file", "soundscout.log"),
        max_bytes=DEBUG["log_rotation"]["max_bytes"],
        backup_count=DEBUG["log_rotation"]["backup_count"],
        log_vendor_http=DEBUG.get("log_vendor_http", False),
    )

    if args.store:
        import server
        from discovery_store import create_store
        server.configure(store=create_store({**STORAGE, "backend": args.store}))

    command = args.command or 'serve'
    try:
        if command == 'serve':
            host = getattr(args, 'host', SERVER["host"])
            port = getattr(args, 'port', int(SERVER["port"]))
            asyncio.run(run_server(host, port))
            return 0
        if command == 'identify':
            if not args.file.is_file():
                print(f"No such file: {args.file}", file=sys.stderr)
                return 2
            return asyncio.run(identify_file(args.file, args.account))
        if command == 'record':
            return asyncio.run(record_and_identify(args.account))
        if command == 'usage':
            return asyncio.run(show_usage(args.account))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt caught in main...")
        return 130
    finally:
        from system_utils import shutdown_daemon_executor
        shutdown_daemon_executor()
    return 0


if __name__ == "__main__":
    sys.exit(main())
