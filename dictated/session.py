"""Recording session coordinator.

Every ``start``/``stop``/``toggle`` is a separate short-lived process, so the
only shared state is on disk: the session lock, and the session record
(recorder pid plus artifact path) kept in a :class:`SessionStore`.

The lock serializes the start race only. Once the recorder is running and
recorded, the lock is released and the live pid in the record is what
marks a recording as in progress.
"""

from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from dictated.capture import CaptureLauncher
from dictated.config import SessionConfig
from dictated.errors import EmptyArtifactError, SessionBusyError
from dictated.lock import SessionLock
from dictated.process import (
    is_alive,
    process_start_time,
    signal_process,
    terminate_with_escalation,
)
from dictated.store import AUDIO_PATH_KEY, PID_KEY, STARTED_KEY, SessionStore

logger = logging.getLogger(__name__)

ARTIFACT_PREFIX = "voice-recording-"
ARTIFACT_SUFFIX = ".wav"
WAV_HEADER_BYTES = 44


@dataclass(frozen=True)
class SessionInfo:
    pid: int
    audio_path: Path


def _parse_int(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        logger.debug("Failed to parse integer from: %r", value)
        return None


def _epoch_ms() -> int:
    return time.time_ns() // 1_000_000


class RecordingSession:
    """Start/stop state machine for the single recording slot."""

    def __init__(
        self,
        lock: SessionLock,
        store: SessionStore,
        capture: CaptureLauncher,
        artifact_dir: Path,
        config: SessionConfig | None = None,
        alive: Callable[[int], bool] = is_alive,
        send_signal: Callable[[int, int], None] = signal_process,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        start_time: Callable[[int], int | None] = process_start_time,
    ) -> None:
        self._lock = lock
        self._store = store
        self._capture = capture
        self._artifact_dir = artifact_dir
        self._config = config or SessionConfig()
        self._alive = alive
        self._send_signal = send_signal
        self._sleep = sleep
        self._clock = clock
        self._start_time = start_time

    @property
    def lock(self) -> SessionLock:
        return self._lock

    @property
    def store(self) -> SessionStore:
        return self._store

    def recorded_pid(self) -> int | None:
        return _parse_int(self._store.get(PID_KEY))

    def recorded_audio_path(self) -> Path | None:
        value = self._store.get(AUDIO_PATH_KEY)
        return Path(value) if value else None

    def is_recording(self) -> bool:
        """True if the recorded recorder is alive or a live process holds the lock."""
        pid = self.recorded_pid()
        if pid is not None and self._is_recorder(pid):
            logger.debug("Recording in progress (PID %d)", pid)
            return True
        if self._lock.is_held():
            logger.debug("Recording lock is held by another process")
            return True
        logger.debug("No recording in progress")
        return False

    def _is_recorder(self, pid: int) -> bool:
        """True if ``pid`` is alive and is still the process that was recorded."""
        if not self._alive(pid):
            return False
        recorded = _parse_int(self._store.get(STARTED_KEY))
        if recorded is None:
            return True
        current = self._start_time(pid)
        if current is not None and current != recorded:
            logger.warning("PID %d now belongs to another process, ignoring it", pid)
            return False
        return True

    def _drop_pid(self, raw_pid: str) -> None:
        if self._store.compare_and_delete(PID_KEY, raw_pid):
            self._store.delete(STARTED_KEY)

    def _terminate(self, pid: int) -> int:
        return terminate_with_escalation(
            pid,
            self._config.escalation,
            poll_interval_s=self._config.poll_interval_s,
            alive=self._alive,
            send_signal=self._send_signal,
            sleep=self._sleep,
        )

    def new_artifact_path(self, label: str = "") -> Path:
        stem = f"{ARTIFACT_PREFIX}{label}-" if label else ARTIFACT_PREFIX
        stamp = _epoch_ms()
        path = self._artifact_dir / f"{stem}{stamp}{ARTIFACT_SUFFIX}"
        while path.exists():
            stamp += 1
            path = self._artifact_dir / f"{stem}{stamp}{ARTIFACT_SUFFIX}"
        return path

    def cleanup_old_artifacts(self, keep: Path | None = None) -> int:
        """Delete orphaned artifacts older than the retention ceiling."""
        protected = {p for p in (keep, self._active_artifact()) if p is not None}
        now = self._clock()
        cleaned = 0
        for path in self._artifact_dir.glob(f"{ARTIFACT_PREFIX}*{ARTIFACT_SUFFIX}"):
            if path in protected:
                continue
            try:
                age = now - path.stat().st_mtime
            except FileNotFoundError:
                continue
            if age > self._config.artifact_retention_s:
                logger.debug("Removing old recording: %s (age: %.0fs)", path.name, age)
                path.unlink(missing_ok=True)
                cleaned += 1
        if cleaned:
            logger.debug("Cleaned up %d old recording file(s)", cleaned)
        return cleaned

    def _active_artifact(self) -> Path | None:
        pid = self.recorded_pid()
        if pid is not None and self._is_recorder(pid):
            return self.recorded_audio_path()
        return None

    def kill_existing(self) -> None:
        """Stop a recorder left behind by an earlier session and drop its record."""
        raw = self._store.get(PID_KEY)
        if raw is None:
            logger.debug("No existing pidfile found")
            return
        pid = _parse_int(raw)
        if pid is not None and self._is_recorder(pid):
            logger.debug("Killing existing recording process (PID %d)", pid)
            self._terminate(pid)
        self._drop_pid(raw)

    def start(self) -> SessionInfo:
        """Begin a new recording. Raises SessionBusyError or KillFailedError."""
        logger.debug("Starting recording...")
        self._artifact_dir.mkdir(mode=0o700, parents=True, exist_ok=True)

        self.cleanup_old_artifacts()
        self.kill_existing()

        handle = self._lock.acquire()
        if handle is None:
            raise SessionBusyError(self._lock.path, self._lock.holder_pid())

        with handle:
            # Another start may have recorded its recorder since the first check.
            self.kill_existing()
            audio_path = self.new_artifact_path()
            logger.debug("Audio file will be: %s", audio_path)
            self._store.put(AUDIO_PATH_KEY, str(audio_path))
            try:
                pid = self._capture.launch(audio_path)
            except BaseException:
                self._store.compare_and_delete(AUDIO_PATH_KEY, str(audio_path))
                raise
            started = self._start_time(pid)
            if started is not None:
                self._store.put(STARTED_KEY, str(started))
            else:
                self._store.delete(STARTED_KEY)
            self._store.put(PID_KEY, str(pid))
            logger.info("Recording started (PID %d) -> %s", pid, audio_path)

        return SessionInfo(pid=pid, audio_path=audio_path)

    def _wait_for_record(self) -> str | None:
        for attempt in range(self._config.pid_wait_attempts):
            raw = self._store.get(PID_KEY)
            if raw is not None:
                return raw
            logger.debug("Waiting for pidfile (attempt %d)", attempt + 1)
            self._sleep(self._config.pid_wait_interval_s)
        return self._store.get(PID_KEY)

    def _clear_record(self, raw_pid: str | None) -> None:
        if raw_pid is not None:
            self._drop_pid(raw_pid)
        self._store.delete(AUDIO_PATH_KEY)
        self._lock.clear()

    def stop(self, override_path: Path | None = None) -> Path | None:
        """End the current recording and return its artifact.

        Returns None when there is nothing to stop. Raises
        EmptyArtifactError when a recording ended without audio, and
        KillFailedError if the recorder cannot be terminated.
        """
        logger.debug("Stopping recording...")
        raw_pid = self._wait_for_record()

        if raw_pid is None:
            logger.debug("No session record found")
            # A held lock means a start is still writing the record.
            if not self._lock.is_held():
                self._store.delete(STARTED_KEY)
                self._store.delete(AUDIO_PATH_KEY)
                self._lock.clear()
            if override_path is None:
                return None
        else:
            pid = _parse_int(raw_pid)
            if pid is None or not self._is_recorder(pid):
                logger.debug("Recording process %s is not running", raw_pid)
                self._clear_record(raw_pid)
                if override_path is None:
                    return None
            else:
                # Let the recorder flush its last buffered block.
                self._sleep(self._config.settle_s)
                self._terminate(pid)
                logger.debug("Recording stopped")
                self._drop_pid(raw_pid)
                self._lock.clear()

        if override_path is not None:
            recorded = self._store.get(AUDIO_PATH_KEY)
            self._store.delete(AUDIO_PATH_KEY)
            if recorded:
                Path(recorded).unlink(missing_ok=True)
            return self._adopt_override(override_path)

        audio_value = self._store.get(AUDIO_PATH_KEY)
        self._store.delete(AUDIO_PATH_KEY)
        if not audio_value:
            logger.debug("Could not read audio file path")
            return None
        return self._check_artifact(Path(audio_value))

    def _adopt_override(self, source: Path) -> Path:
        if not source.is_file():
            raise EmptyArtifactError(source, None)
        self._artifact_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        target = self.new_artifact_path("override")
        shutil.copyfile(source, target)
        logger.debug("Copied override audio %s to %s", source, target)
        return self._check_artifact(target)

    def _check_artifact(self, path: Path) -> Path:
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            logger.warning("Audio file does not exist: %s", path)
            raise EmptyArtifactError(path, None) from None
        if size <= WAV_HEADER_BYTES:
            logger.warning("Audio file is empty (only WAV header): %d bytes", size)
            path.unlink(missing_ok=True)
            raise EmptyArtifactError(path, size)
        logger.debug("Audio file ready: %s (%d bytes)", path, size)
        return path
