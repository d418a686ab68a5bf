"""Command flows: start, stop, toggle and status."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable

from dictated.capture import SubprocessCapture
from dictated.client import DaemonClient, run_oneshot, transcribe_audio
from dictated.config import Config
from dictated.errors import (
    BackendFailureError,
    CaptureError,
    DaemonUnreachableError,
    EmptyArtifactError,
    FallbackFailedError,
    KillFailedError,
    MalformedResponseError,
    NothingToStopError,
    SessionBusyError,
)
from dictated.lock import SessionLock
from dictated.notify import Notifier
from dictated.output import OutputHandler, deliver_text
from dictated.protocol import TranscriptionResult
from dictated.session import RecordingSession
from dictated.store import PID_KEY, FileSessionStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


def build_session(config: Config) -> RecordingSession:
    """Wire a session coordinator to the on-disk state under the runtime dir."""
    runtime_dir = config.runtime.ensure()
    return RecordingSession(
        lock=SessionLock(config.runtime.lock_path),
        store=FileSessionStore(runtime_dir),
        capture=SubprocessCapture(config.capture, log_path=runtime_dir / "capture.log"),
        artifact_dir=config.runtime.artifact_dir,
        config=config.session,
    )


class DictationApp:
    """
    Push-to-talk dictation commands.

    Each method runs one CLI invocation and returns its exit code. User
    facing failures are reported through the notifier; none are dropped.
    """

    def __init__(
        self,
        config: Config | None = None,
        session: RecordingSession | None = None,
        notifier: Notifier | None = None,
        client: DaemonClient | None = None,
        fallback: Callable[..., TranscriptionResult] = run_oneshot,
        output_handler: OutputHandler | None = None,
    ) -> None:
        self._config = config or Config()
        self._session = session
        self._notifier = notifier or Notifier()
        self._client = client
        self._fallback = fallback
        self._output_handler = output_handler

    @property
    def session(self) -> RecordingSession:
        if self._session is None:
            self._session = build_session(self._config)
        return self._session

    def _backend_label(self) -> str:
        return self._config.whisper.backend.value

    def start(self) -> int:
        try:
            info = self.session.start()
        except SessionBusyError as e:
            self._notifier.notify(f"❌ {e}")
            return EXIT_FAILURE
        except (KillFailedError, CaptureError) as e:
            logger.error("%s", e)
            self._notifier.notify(f"❌ {e}")
            return EXIT_FAILURE

        whisper = self._config.whisper
        self._notifier.notify(
            "Recording... (release to stop)\n"
            f"Backend: {whisper.backend.value} ({whisper.device}) | Model: {whisper.model}",
            timeout_ms=30000,
        )
        logger.debug("Recording to %s (PID %d)", info.audio_path, info.pid)
        return EXIT_OK

    def stop(self, audio_file: Path | None = None) -> int:
        backend = self._backend_label()
        try:
            audio_path = self.session.stop(audio_file)
        except EmptyArtifactError as e:
            logger.warning("%s", e)
            if e.size is None:
                self._notifier.notify(f"❌ No audio recorded\nBackend: {backend}")
            else:
                self._notifier.notify(f"❌ Audio file is empty\nBackend: {backend}")
            return EXIT_FAILURE
        except KillFailedError as e:
            logger.error("%s", e)
            self._notifier.notify(f"❌ {e}")
            return EXIT_FAILURE

        if audio_path is None:
            error = NothingToStopError()
            logger.warning("%s", error)
            self._notifier.notify(f"❌ {error}\nBackend: {backend}")
            return EXIT_FAILURE

        try:
            return self._transcribe_and_deliver(audio_path)
        finally:
            audio_path.unlink(missing_ok=True)

    def _transcribe_and_deliver(self, audio_path: Path) -> int:
        backend = self._backend_label()
        whisper = self._config.whisper
        self._notifier.notify(
            f"⏳ Transcribing...\nBackend: {backend} ({whisper.device}) | Model: {whisper.model}"
        )

        def on_fallback(error: DaemonUnreachableError) -> None:
            self._notifier.notify("⚠️ Daemon not running, using direct mode")

        try:
            transcript = transcribe_audio(
                audio_path,
                self._config,
                client=self._client,
                fallback=self._fallback,
                on_fallback=on_fallback,
            )
        except MalformedResponseError as e:
            logger.warning("%s", e)
            self._notifier.notify(f"⚠️ Could not parse response\nBackend: {backend}")
            return EXIT_FAILURE
        except (BackendFailureError, FallbackFailedError) as e:
            logger.warning("%s", e)
            self._notifier.notify(f"❌ Transcription failed\nBackend: {backend}\n{e}")
            return EXIT_FAILURE

        source = f"{backend} {transcript.route.value}"
        logger.debug("Transcription result via %s: %r", source, transcript.text[:50])
        deliver_text(
            transcript.text,
            self._config.use_clipboard,
            self._notifier,
            source,
            handler=self._output_handler,
        )
        return EXIT_OK

    def toggle(self) -> int:
        if self.session.is_recording():
            logger.debug("Recording in progress, stopping and transcribing")
            return self.stop()
        logger.debug("No recording in progress, starting")
        return self.start()

    def status(self) -> int:
        session = self.session
        if session.is_recording():
            pid = session.recorded_pid()
            started = session.store.mtime(PID_KEY)
            elapsed = f", {time.time() - started:.0f}s" if started else ""
            print(f"🎙️ Recording (PID {pid}{elapsed})")
        else:
            print("⚪ Idle")

        client = self._client or DaemonClient.from_config(self._config)
        health = client.health()
        if health is None:
            print(f"🔌 Daemon: not running ({client.socket_path})")
        else:
            print(
                f"🔌 Daemon: {health.status} | Backend: {health.backend} | "
                f"Model: {health.model} | Loaded: {health.models_loaded}"
            )
        return EXIT_OK
