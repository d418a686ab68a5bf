"""Configuration for the Dictated application."""

from __future__ import annotations

import json
import logging
import os
import signal
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)

APP_DIR_NAME = "dictated"
DAEMON_INFO_FILE = "daemon.json"


class OutputMode(str, Enum):
    TYPE = "type"
    CLIPBOARD = "clipboard"


class Backend(str, Enum):
    FASTER_WHISPER = "faster-whisper"
    MLX_WHISPER = "mlx-whisper"


class Recorder(str, Enum):
    SOUNDDEVICE = "sounddevice"
    PW_RECORD = "pw-record"
    ARECORD = "arecord"


def default_runtime_dir() -> Path:
    """Per-user runtime directory that holds all shared session state."""
    base = os.environ.get("XDG_RUNTIME_DIR")
    if base:
        return Path(base) / APP_DIR_NAME
    return Path(f"/tmp/{APP_DIR_NAME}-{os.getuid()}")


@dataclass(frozen=True)
class EscalationStage:
    """One step of a stop sequence: send ``signal``, then wait up to ``wait_s``."""

    signal: signal.Signals
    wait_s: float


DEFAULT_ESCALATION: tuple[EscalationStage, ...] = (
    EscalationStage(signal.SIGINT, 1.0),
    EscalationStage(signal.SIGTERM, 0.5),
    EscalationStage(signal.SIGKILL, 0.5),
)


@dataclass
class RuntimeConfig:
    runtime_dir: Path = field(default_factory=default_runtime_dir)

    @property
    def lock_path(self) -> Path:
        return self.runtime_dir / "recording.lock"

    @property
    def artifact_dir(self) -> Path:
        return self.runtime_dir

    @property
    def daemon_info_path(self) -> Path:
        return self.runtime_dir / DAEMON_INFO_FILE

    def ensure(self) -> Path:
        self.runtime_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        return self.runtime_dir


@dataclass
class SessionConfig:
    artifact_retention_s: float = 600.0
    pid_wait_attempts: int = 10
    pid_wait_interval_s: float = 0.02
    poll_interval_s: float = 0.02
    settle_s: float = 0.1
    escalation: tuple[EscalationStage, ...] = DEFAULT_ESCALATION


@dataclass
class CaptureConfig:
    recorder: Recorder = Recorder.SOUNDDEVICE
    sample_rate: int = 16_000
    channels: int = 1
    device_id: int | None = None
    volume: float = 1.5


@dataclass
class WhisperConfig:
    backend: Backend = Backend.FASTER_WHISPER
    model: str = "base.en"
    language: str | None = None
    device: str = "auto"
    compute_type: str = "default"


@dataclass
class DaemonConfig:
    socket_path: Path | None = None
    connect_timeout_s: float = 2.0
    read_timeout_s: float = 300.0
    fallback_timeout_s: float = 600.0

    def resolve_socket(self, runtime: RuntimeConfig) -> Path:
        if self.socket_path is not None:
            return self.socket_path
        return runtime.runtime_dir / "daemon.sock"


@dataclass
class DaemonInfo:
    """Settings published by a running daemon for CLI invocations to reuse."""

    backend: str | None = None
    model: str | None = None
    socket_path: str | None = None
    use_clipboard: bool | None = None

    def write(self, path: Path) -> None:
        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        path.write_text(json.dumps(asdict(self), indent=2))
        logger.debug("Wrote daemon info to %s", path)

    @classmethod
    def read(cls, path: Path) -> "DaemonInfo | None":
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.debug("Failed to parse daemon info %s: %s", path, e)
            return None
        if not isinstance(data, dict):
            return None
        known = {k: data.get(k) for k in ("backend", "model", "socket_path", "use_clipboard")}
        return cls(**known)


def _truthy(value: str) -> bool:
    return value.lower() in ("1", "true", "yes")


@dataclass
class Config:
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    whisper: WhisperConfig = field(default_factory=WhisperConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    output_mode: OutputMode = OutputMode.TYPE
    verbose: bool = False

    @property
    def use_clipboard(self) -> bool:
        return self.output_mode == OutputMode.CLIPBOARD

    @property
    def socket_path(self) -> Path:
        return self.daemon.resolve_socket(self.runtime)

    def apply_daemon_info(self, info: DaemonInfo) -> None:
        """Layer a running daemon's settings under the environment."""
        if info.backend:
            try:
                self.whisper.backend = Backend(info.backend)
            except ValueError:
                logger.debug("Ignoring unknown backend in daemon info: %s", info.backend)
        if info.model:
            self.whisper.model = info.model
        if info.socket_path:
            self.daemon.socket_path = Path(info.socket_path)
        if info.use_clipboard is not None:
            self.output_mode = OutputMode.CLIPBOARD if info.use_clipboard else OutputMode.TYPE

    def daemon_info(self) -> DaemonInfo:
        return DaemonInfo(
            backend=self.whisper.backend.value,
            model=self.whisper.model,
            socket_path=str(self.socket_path),
            use_clipboard=self.use_clipboard,
        )

    @classmethod
    def from_env(cls, use_daemon_info: bool = True) -> "Config":
        config = cls()

        if runtime_dir := os.environ.get("DICTATED_RUNTIME_DIR"):
            config.runtime.runtime_dir = Path(runtime_dir)

        if use_daemon_info:
            info = DaemonInfo.read(config.runtime.daemon_info_path)
            if info is not None:
                config.apply_daemon_info(info)

        if backend := os.environ.get("DICTATED_BACKEND"):
            config.whisper.backend = Backend(backend.lower())

        if model := os.environ.get("DICTATED_MODEL"):
            config.whisper.model = model

        if lang := os.environ.get("DICTATED_LANGUAGE"):
            config.whisper.language = None if lang.lower() == "auto" else lang

        if device := os.environ.get("DICTATED_DEVICE"):
            config.whisper.device = device

        if compute_type := os.environ.get("DICTATED_COMPUTE_TYPE"):
            config.whisper.compute_type = compute_type

        if socket_path := os.environ.get("DICTATED_SOCKET"):
            config.daemon.socket_path = Path(socket_path)

        if mode := os.environ.get("DICTATED_OUTPUT_MODE"):
            config.output_mode = OutputMode(mode.lower())

        if recorder := os.environ.get("DICTATED_RECORDER"):
            config.capture.recorder = Recorder(recorder.lower())

        if audio_device := os.environ.get("DICTATED_AUDIO_DEVICE"):
            config.capture.device_id = int(audio_device)

        if verbose := os.environ.get("DICTATED_VERBOSE"):
            config.verbose = _truthy(verbose)

        return config
