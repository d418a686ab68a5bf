"""Audio capture subprocess: launching it, and the built-in recorder it runs."""

from __future__ import annotations

import argparse
import logging
import queue
import signal
import subprocess
import sys
import threading
import wave
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

from dictated.config import CaptureConfig, Recorder
from dictated.errors import CaptureError

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

FIRST_CHANNEL_INDEX = 0
STOP_POLL_SECONDS = 0.1
SAMPLE_WIDTH_BYTES = 2


@dataclass
class AudioDevice:
    index: int
    name: str
    is_default: bool = False

    def __str__(self) -> str:
        marker = " (DEFAULT)" if self.is_default else ""
        return f"[{self.index}] {self.name}{marker}"


def list_input_devices() -> list[AudioDevice]:
    import sounddevice as sd

    devices = sd.query_devices()
    default_input = sd.default.device[FIRST_CHANNEL_INDEX]

    input_devices = []
    for i, dev in enumerate(devices):
        if dev["max_input_channels"] > 0:  # type: ignore[index]
            input_devices.append(
                AudioDevice(
                    index=i,
                    name=dev["name"],  # type: ignore[index]
                    is_default=(i == default_input),
                )
            )
    return input_devices


def get_device_name(device_id: int | None) -> str:
    import sounddevice as sd

    if device_id is not None:
        info = sd.query_devices(device_id)
    else:
        default_id = sd.default.device[FIRST_CHANNEL_INDEX]
        info = sd.query_devices(default_id)
    return info["name"]  # type: ignore[index,return-value]


class CaptureLauncher(ABC):
    """Starts a recorder writing to a given path and returns its pid."""

    @abstractmethod
    def launch(self, audio_path: Path) -> int:
        ...


class SubprocessCapture(CaptureLauncher):
    """Runs the configured recorder as a detached subprocess.

    The recorder gets its own session so it keeps running after the
    ``start`` invocation exits and is not hit by the terminal's Ctrl+C.
    """

    def __init__(self, config: CaptureConfig, log_path: Path | None = None) -> None:
        self._config = config
        self._log_path = log_path

    def command(self, audio_path: Path) -> list[str]:
        cfg = self._config
        if cfg.recorder == Recorder.PW_RECORD:
            return [
                "pw-record",
                "--channels", str(cfg.channels),
                "--rate", str(cfg.sample_rate),
                "--format", "s16",
                "--volume", str(cfg.volume),
                str(audio_path),
            ]
        if cfg.recorder == Recorder.ARECORD:
            cmd = [
                "arecord", "-q",
                "-f", "S16_LE",
                "-c", str(cfg.channels),
                "-r", str(cfg.sample_rate),
                "-t", "wav",
            ]
            if cfg.device_id is not None:
                cmd += ["-D", f"plughw:{cfg.device_id}"]
            return cmd + [str(audio_path)]

        cmd = [
            sys.executable, "-m", "dictated.capture",
            str(audio_path),
            "--rate", str(cfg.sample_rate),
            "--channels", str(cfg.channels),
        ]
        if cfg.device_id is not None:
            cmd += ["--device", str(cfg.device_id)]
        return cmd

    def launch(self, audio_path: Path) -> int:
        cmd = self.command(audio_path)
        logger.debug("Starting recorder: %s", " ".join(cmd))

        log = None
        try:
            if self._log_path is not None:
                log = open(self._log_path, "ab")
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=log if log is not None else subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise CaptureError(f"Failed to start {cmd[0]}: {e}") from e
        finally:
            if log is not None:
                log.close()

        logger.debug("Recorder started with PID %d", process.pid)
        return process.pid


class WavStreamWriter:
    """Appends 16-bit PCM frames to a WAV file as they arrive.

    The header is rewritten after every block, so the file on disk is a
    valid WAV holding everything captured so far even if the recorder is
    killed before it can close it.
    """

    def __init__(self, path: Path, sample_rate: int, channels: int) -> None:
        self.path = path
        self.frames = 0
        self._file = open(path, "wb")
        self._wav = wave.open(self._file, "wb")
        self._wav.setnchannels(channels)
        self._wav.setsampwidth(SAMPLE_WIDTH_BYTES)
        self._wav.setframerate(sample_rate)
        self._wav.writeframes(b"")
        self._file.flush()

    def write(self, block: "NDArray[np.int16]") -> None:
        self._wav.writeframes(np.ascontiguousarray(block, dtype=np.int16).tobytes())
        self._file.flush()
        self.frames += len(block)

    def close(self) -> None:
        try:
            self._wav.close()
        finally:
            self._file.close()

    def __enter__(self) -> "WavStreamWriter":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def _drain(blocks: "queue.Queue[NDArray[np.int16]]", writer: WavStreamWriter) -> None:
    while True:
        try:
            block = blocks.get_nowait()
        except queue.Empty:
            return
        writer.write(block)


def record(
    path: Path,
    sample_rate: int = 16_000,
    channels: int = 1,
    device_id: int | None = None,
) -> int:
    """Record from the microphone into ``path`` until SIGINT or SIGTERM.

    The WAV header is written up front so the artifact exists for the
    whole session, and captured blocks are appended every poll interval.
    Returns the number of frames written.
    """
    import sounddevice as sd

    stop = threading.Event()
    blocks: "queue.Queue[NDArray[np.int16]]" = queue.Queue()

    def handle_stop(signum: int, frame: object) -> None:
        stop.set()

    previous = {
        signum: signal.signal(signum, handle_stop)
        for signum in (signal.SIGINT, signal.SIGTERM)
    }

    def callback(
        indata: "NDArray[np.int16]",
        frames: int,
        time_info: dict,
        status: sd.CallbackFlags,
    ) -> None:
        if status:
            logger.warning("Audio callback status: %s", status)
        blocks.put(indata.copy())

    try:
        with WavStreamWriter(path, sample_rate, channels) as writer:
            with sd.InputStream(
                samplerate=sample_rate,
                channels=channels,
                dtype="int16",
                device=device_id,
                callback=callback,
            ):
                while not stop.is_set():
                    stop.wait(STOP_POLL_SECONDS)
                    _drain(blocks, writer)
            _drain(blocks, writer)
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    logger.info("Wrote %d frames to %s", writer.frames, path)
    return writer.frames


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Dictated microphone recorder")
    parser.add_argument("path", type=Path)
    parser.add_argument("--rate", type=int, default=16_000)
    parser.add_argument("--channels", type=int, default=1)
    parser.add_argument("--device", type=int, default=None)
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        record(args.path, args.rate, args.channels, args.device)
    except Exception as e:
        logger.exception("Recording failed: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
