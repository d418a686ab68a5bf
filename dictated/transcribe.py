"""Speech-to-text backends."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dictated.config import Backend

if TYPE_CHECKING:
    from dictated.config import WhisperConfig

logger = logging.getLogger(__name__)


class WhisperBackend(ABC):
    """Transcribes an audio file to text."""

    name: str = ""

    def __init__(self, config: "WhisperConfig") -> None:
        self._config = config
        self._load_lock = threading.Lock()

    @property
    def model(self) -> str:
        return self._config.model

    @property
    @abstractmethod
    def is_loaded(self) -> bool:
        ...

    @abstractmethod
    def load(self) -> None:
        """Load the model so the first transcription is fast."""
        ...

    @abstractmethod
    def _run(self, audio_path: Path) -> str:
        ...

    def transcribe(self, audio_path: Path | str) -> str:
        """
        Transcribe an audio file.

        Args:
            audio_path: Path to a 16 kHz mono WAV file.

        Returns:
            Transcribed text, stripped. Empty if no speech was found.
        """
        path = Path(audio_path)
        with self._load_lock:
            if not self.is_loaded:
                self.load()

        t0 = time.time()
        text = self._run(path).strip()
        logger.info("%s done in %.2fs (%d chars)", self.name, time.time() - t0, len(text))
        if not text:
            logger.warning("Whisper returned empty transcription")
        return text


class FasterWhisperBackend(WhisperBackend):
    name = Backend.FASTER_WHISPER.value

    def __init__(self, config: "WhisperConfig") -> None:
        super().__init__(config)
        self._model: Any = None

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def load(self) -> None:
        if self._model is not None:
            return
        from faster_whisper import WhisperModel

        device = self._config.device
        if device == "auto":
            device = "cpu" if _cuda_unavailable() else "cuda"
        logger.info(
            "Loading faster-whisper model: %s (%s, %s)",
            self._config.model, device, self._config.compute_type,
        )
        self._model = WhisperModel(
            self._config.model,
            device=device,
            compute_type=self._config.compute_type,
        )
        logger.info("faster-whisper model loaded")

    def _run(self, audio_path: Path) -> str:
        segments, _info = self._model.transcribe(
            str(audio_path),
            language=self._config.language,
            beam_size=5,
            vad_filter=True,
        )
        return " ".join(segment.text.strip() for segment in segments)


class MlxWhisperBackend(WhisperBackend):
    name = Backend.MLX_WHISPER.value

    def __init__(self, config: "WhisperConfig") -> None:
        super().__init__(config)
        self._model_loaded = False

    @property
    def is_loaded(self) -> bool:
        return self._model_loaded

    @property
    def repo(self) -> str:
        model = self._config.model
        return model if "/" in model else f"mlx-community/whisper-{model}-mlx"

    def load(self) -> None:
        # mlx_whisper caches the model after the first call.
        import mlx_whisper  # noqa: F401

        logger.info("Whisper model will load on first use: %s", self.repo)
        self._model_loaded = True

    def _run(self, audio_path: Path) -> str:
        import mlx_whisper

        result = mlx_whisper.transcribe(
            str(audio_path),
            path_or_hf_repo=self.repo,
            language=self._config.language,
        )
        text = result.get("text", "")
        return str(text) if isinstance(text, str) else ""


def _cuda_unavailable() -> bool:
    try:
        import ctranslate2
    except ImportError:
        return True
    try:
        return ctranslate2.get_cuda_device_count() == 0
    except Exception:
        return True


_BACKENDS: dict[Backend, type[WhisperBackend]] = {
    Backend.FASTER_WHISPER: FasterWhisperBackend,
    Backend.MLX_WHISPER: MlxWhisperBackend,
}


def create_backend(config: "WhisperConfig") -> WhisperBackend:
    """Build the backend selected by ``config.backend``."""
    return _BACKENDS[Backend(config.backend)](config)
