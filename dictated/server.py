"""Transcription daemon: a preloaded backend served over a Unix socket."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import FastAPI

from dictated.errors import DictateError
from dictated.protocol import (
    HEALTH_ENDPOINT,
    TRANSCRIBE_ENDPOINT,
    HealthResponse,
    TranscriptionRequest,
    TranscriptionResponse,
)

if TYPE_CHECKING:
    from dictated.config import Config
    from dictated.transcribe import WhisperBackend

logger = logging.getLogger(__name__)

_backend: WhisperBackend | None = None
_config: Config | None = None
# One model instance; requests are transcribed strictly one at a time.
_processing_lock = asyncio.Lock()


class DaemonAlreadyRunningError(DictateError):
    def __init__(self, socket_path: Path) -> None:
        self.socket_path = socket_path
        super().__init__(f"A daemon is already listening on {socket_path}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    global _backend

    if _backend is None and _config is not None:
        from dictated.transcribe import create_backend

        print("\n📦 Loading model...")
        backend = create_backend(_config.whisper)
        await asyncio.to_thread(backend.load)
        _backend = backend

    if _backend is not None:
        print(f"\n✅ Daemon ready! Backend: {_backend.name} | Model: {_backend.model}")

    yield

    print("\n👋 Shutting down...")


def transcribe_file(audio_path: str) -> str:
    """Run the loaded backend on ``audio_path``. Raises on any failure."""
    if _backend is None:
        raise RuntimeError("Backend not initialized")

    path = Path(audio_path)
    if not path.is_absolute():
        raise ValueError(f"Audio path must be absolute: {audio_path}")
    if not path.is_file():
        raise FileNotFoundError(f"Audio file not found: {audio_path}")

    logger.info("Transcribing %s (%d bytes)", path, path.stat().st_size)
    return _backend.transcribe(path)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Dictated Daemon",
        description="Local transcription service with a preloaded Whisper model",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.get(HEALTH_ENDPOINT, response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        return HealthResponse(
            status="healthy",
            models_loaded=_backend is not None and _backend.is_loaded,
            backend=_backend.name if _backend is not None else "",
            model=_backend.model if _backend is not None else "",
        )

    @app.post(TRANSCRIBE_ENDPOINT, response_model=TranscriptionResponse)
    async def transcribe(request: TranscriptionRequest) -> TranscriptionResponse:
        logger.info("Transcription request for %s", request.audio_path)

        if _backend is None:
            return TranscriptionResponse.failed("Server not ready, model still loading")

        async with _processing_lock:
            try:
                text = await asyncio.to_thread(transcribe_file, request.audio_path)
            except Exception as e:
                logger.exception("Transcription error")
                return TranscriptionResponse.failed(str(e) or type(e).__name__)

        return TranscriptionResponse.ok(text)

    return app


def _remove_socket(socket_path: Path) -> None:
    try:
        os.remove(socket_path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to remove socket %s: %s", socket_path, e)


def run_daemon(config: "Config") -> None:
    """Serve transcription requests on the configured socket until interrupted."""
    global _config

    from dictated.client import DaemonClient

    import uvicorn

    socket_path = config.socket_path
    if DaemonClient(socket_path, connect_timeout_s=0.5).ping():
        raise DaemonAlreadyRunningError(socket_path)

    config.runtime.ensure()
    socket_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    _remove_socket(socket_path)

    _config = config
    info_path = config.runtime.daemon_info_path
    config.daemon_info().write(info_path)

    print("\n🌐 Dictated Daemon")
    print("=" * 40)
    print(f"   Backend: {config.whisper.backend.value}")
    print(f"   Model: {config.whisper.model}")
    print(f"   Socket: {socket_path}")
    print("=" * 40)

    try:
        uvicorn.run(
            create_app(),
            uds=str(socket_path),
            log_level="info" if config.verbose else "warning",
        )
    finally:
        info_path.unlink(missing_ok=True)
        _remove_socket(socket_path)
