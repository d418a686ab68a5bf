"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
import signal
from pathlib import Path
from typing import TYPE_CHECKING, Generator

import numpy as np
import pytest

from dictated.capture import CaptureLauncher
from dictated.config import Config, EscalationStage, RuntimeConfig, SessionConfig
from dictated.lock import SessionLock
from dictated.notify import Notifier
from dictated.output import OutputHandler
from dictated.session import RecordingSession
from dictated.store import MemorySessionStore

if TYPE_CHECKING:
    from numpy.typing import NDArray


@pytest.fixture
def sample_audio_16k() -> NDArray[np.int16]:
    """Generate 1 second of sample audio at 16kHz."""
    sample_rate = 16000
    duration = 1.0
    t = np.linspace(0, duration, int(sample_rate * duration), dtype=np.float32)
    # Generate a 440Hz sine wave
    audio = np.sin(2 * np.pi * 440 * t) * 0.5
    return (audio * 32767).astype(np.int16)


@pytest.fixture
def temp_wav_file(tmp_path: Path, sample_audio_16k: NDArray[np.int16]) -> Path:
    """Create a WAV file with sample audio."""
    from scipy.io.wavfile import write as wav_write

    path = tmp_path / "sample.wav"
    wav_write(str(path), 16000, sample_audio_16k)
    return path


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Fixture to clean environment variables before/after tests."""
    env_vars = [
        "DICTATED_RUNTIME_DIR",
        "DICTATED_BACKEND",
        "DICTATED_MODEL",
        "DICTATED_LANGUAGE",
        "DICTATED_DEVICE",
        "DICTATED_COMPUTE_TYPE",
        "DICTATED_SOCKET",
        "DICTATED_OUTPUT_MODE",
        "DICTATED_RECORDER",
        "DICTATED_AUDIO_DEVICE",
        "DICTATED_VERBOSE",
    ]
    original_values = {var: os.environ.get(var) for var in env_vars}

    for var in env_vars:
        os.environ.pop(var, None)

    yield

    for var, value in original_values.items():
        if value is not None:
            os.environ[var] = value
        else:
            os.environ.pop(var, None)


class FakeProcessTable:
    """Pretend process table: spawn, check and signal without real processes."""

    def __init__(self) -> None:
        self.alive: set[int] = set()
        self.signals: list[tuple[int, int]] = []
        self._ignored: dict[int, set[int]] = {}
        self._started: dict[int, int] = {}
        self._next_pid = 4000
        self._ticks = 100

    def spawn(self, ignore: tuple[int, ...] = ()) -> int:
        pid = self._next_pid
        self._next_pid += 1
        self.alive.add(pid)
        self._ignored[pid] = set(ignore)
        self._stamp(pid)
        return pid

    def reuse(self, pid: int) -> None:
        """Hand ``pid`` to a new, unrelated process."""
        self.alive.add(pid)
        self._ignored[pid] = set()
        self._stamp(pid)

    def _stamp(self, pid: int) -> None:
        self._ticks += 1
        self._started[pid] = self._ticks

    def is_alive(self, pid: int) -> bool:
        return pid in self.alive

    def start_time(self, pid: int) -> int | None:
        return self._started.get(pid) if pid in self.alive else None

    def send(self, pid: int, sig: int) -> None:
        self.signals.append((pid, sig))
        if sig not in self._ignored.get(pid, set()):
            self.alive.discard(pid)

    def signals_for(self, pid: int) -> list[int]:
        return [sig for p, sig in self.signals if p == pid]


class FakeCapture(CaptureLauncher):
    """Launches fake recorders that write ``payload`` to the artifact path."""

    def __init__(self, processes: FakeProcessTable, payload: bytes | None = b"\x00" * 3244) -> None:
        self.processes = processes
        self.payload = payload
        self.ignore: tuple[int, ...] = ()
        self.launched: list[tuple[int, Path]] = []
        self.fail_with: Exception | None = None

    def launch(self, audio_path: Path) -> int:
        if self.fail_with is not None:
            raise self.fail_with
        if self.payload is not None:
            audio_path.write_bytes(self.payload)
        pid = self.processes.spawn(self.ignore)
        self.launched.append((pid, audio_path))
        return pid


class RecordingNotifier(Notifier):
    """Keeps messages in memory instead of showing them."""

    def __init__(self) -> None:
        super().__init__(enabled=False)
        self.messages: list[str] = []

    def notify(self, message: str, timeout_ms: int = 2000) -> None:
        self.messages.append(message)


class CollectingOutput(OutputHandler):
    def __init__(self) -> None:
        self.texts: list[str] = []

    def output(self, text: str) -> None:
        self.texts.append(text)


FAST_ESCALATION = (
    EscalationStage(signal.SIGINT, 0.1),
    EscalationStage(signal.SIGTERM, 0.1),
    EscalationStage(signal.SIGKILL, 0.1),
)


@pytest.fixture
def processes() -> FakeProcessTable:
    return FakeProcessTable()


@pytest.fixture
def capture(processes: FakeProcessTable) -> FakeCapture:
    return FakeCapture(processes)


@pytest.fixture
def store() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
def runtime_dir(tmp_path: Path) -> Path:
    path = tmp_path / "run"
    path.mkdir()
    return path


@pytest.fixture
def session_lock(runtime_dir: Path) -> SessionLock:
    return SessionLock(runtime_dir / "recording.lock")


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(escalation=FAST_ESCALATION, settle_s=0.0)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def session(
    session_lock: SessionLock,
    store: MemorySessionStore,
    capture: FakeCapture,
    runtime_dir: Path,
    session_config: SessionConfig,
    processes: FakeProcessTable,
    sleeps: list[float],
) -> RecordingSession:
    """Coordinator over a real lock file, an in-memory store and fake processes."""
    return RecordingSession(
        lock=session_lock,
        store=store,
        capture=capture,
        artifact_dir=runtime_dir,
        config=session_config,
        alive=processes.is_alive,
        send_signal=processes.send,
        sleep=sleeps.append,
        start_time=processes.start_time,
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def collected_output() -> CollectingOutput:
    return CollectingOutput()


@pytest.fixture
def config(runtime_dir: Path) -> Config:
    return Config(runtime=RuntimeConfig(runtime_dir=runtime_dir))
