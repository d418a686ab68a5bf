"""Entry point for running dictated as a module: python -m dictated"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from dictated.app import EXIT_FAILURE, EXIT_OK, DictationApp
from dictated.config import Backend, Config, OutputMode
from dictated.errors import DictateError

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool, daemon: bool = False) -> None:
    """Configure logging based on verbosity setting."""
    # Quiet unless asked; the daemon reports its lifecycle at INFO.
    if verbose:
        level = logging.DEBUG
    elif daemon:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    # Reduce noise from all third-party libraries
    for name in ("httpx", "httpcore", "uvicorn.access", "faster_whisper", "sounddevice"):
        logging.getLogger(name).setLevel(logging.WARNING if verbose else logging.ERROR)


def _add_backend_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-b", "--backend",
        choices=[b.value for b in Backend],
        help="Transcription backend (default: from env or running daemon)",
    )
    parser.add_argument("-m", "--model", help="Model name (overrides DICTATED_MODEL)")
    parser.add_argument("--socket-path", type=Path, help="Daemon socket path")


def _add_output_options(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--clipboard", dest="output_mode", action="store_const",
        const=OutputMode.CLIPBOARD, help="Copy text to the clipboard",
    )
    group.add_argument(
        "--type", dest="output_mode", action="store_const",
        const=OutputMode.TYPE, help="Type text at the cursor",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dictated",
        description="Push-to-talk dictation with a preloaded Whisper daemon",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("start", help="Start recording audio")

    stop = sub.add_parser("stop", help="Stop recording and transcribe")
    _add_backend_options(stop)
    _add_output_options(stop)
    stop.add_argument(
        "-a", "--audio-file", type=Path,
        help="Transcribe this file instead of the recorded audio",
    )

    toggle = sub.add_parser(
        "toggle", help="Start if idle, otherwise stop and transcribe",
    )
    _add_backend_options(toggle)
    _add_output_options(toggle)

    daemon = sub.add_parser("daemon", help="Run the transcription daemon")
    _add_backend_options(daemon)

    sub.add_parser("status", help="Show recording and daemon status")
    sub.add_parser("devices", help="List audio input devices")
    return parser


def apply_args(config: Config, args: argparse.Namespace) -> Config:
    """Command-line flags take precedence over every other layer."""
    if getattr(args, "backend", None):
        config.whisper.backend = Backend(args.backend)
    if getattr(args, "model", None):
        config.whisper.model = args.model
    if getattr(args, "socket_path", None):
        config.daemon.socket_path = args.socket_path
    if getattr(args, "output_mode", None):
        config.output_mode = args.output_mode
    if args.verbose:
        config.verbose = True
    return config


def _list_devices() -> int:
    from dictated.capture import list_input_devices

    print("\n🎤 Available audio input devices:")
    print("-" * 50)
    for device in list_input_devices():
        print(f"  {device}")
    print("-" * 50)
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    is_daemon = args.command == "daemon"
    try:
        config = apply_args(Config.from_env(use_daemon_info=not is_daemon), args)
    except ValueError as e:
        print(f"❌ Invalid configuration: {e}", file=sys.stderr)
        return EXIT_FAILURE
    setup_logging(config.verbose, daemon=is_daemon)
    logger.debug("dictated %s starting", args.command)

    try:
        if is_daemon:
            from dictated.server import run_daemon

            run_daemon(config)
            return EXIT_OK
        if args.command == "devices":
            return _list_devices()

        app = DictationApp(config)
        if args.command == "start":
            return app.start()
        if args.command == "stop":
            return app.stop(args.audio_file.resolve() if args.audio_file else None)
        if args.command == "toggle":
            return app.toggle()
        return app.status()
    except KeyboardInterrupt:
        print("\n👋 Interrupted")
        return 130
    except DictateError as e:
        logger.error("%s", e)
        return EXIT_FAILURE
    except Exception as e:
        logging.exception("Fatal error: %s", e)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
