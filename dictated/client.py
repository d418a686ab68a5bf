"""Client side of the daemon protocol, with the direct one-shot fallback."""

from __future__ import annotations

import logging
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable

import httpx
from pydantic import ValidationError

from dictated.errors import (
    BackendFailureError,
    DaemonUnreachableError,
    DictateError,
    FallbackFailedError,
)
from dictated.protocol import (
    HEALTH_ENDPOINT,
    TRANSCRIBE_ENDPOINT,
    HealthResponse,
    Route,
    TranscriptionFailure,
    TranscriptionRequest,
    TranscriptionResult,
    decode_response,
)

if TYPE_CHECKING:
    from dictated.config import Config, WhisperConfig

logger = logging.getLogger(__name__)

# httpx needs a host in the URL even when the transport is a Unix socket.
BASE_URL = "http://dictated"
STDERR_TAIL_CHARS = 300


@dataclass(frozen=True)
class Transcript:
    text: str
    route: Route


class DaemonClient:
    """Talks to the daemon over its Unix socket, one connection per request."""

    def __init__(
        self,
        socket_path: Path,
        connect_timeout_s: float = 2.0,
        read_timeout_s: float = 300.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._socket_path = socket_path
        self._timeout = httpx.Timeout(read_timeout_s, connect=connect_timeout_s)
        self._transport = transport

    @classmethod
    def from_config(cls, config: "Config") -> "DaemonClient":
        return cls(
            config.socket_path,
            connect_timeout_s=config.daemon.connect_timeout_s,
            read_timeout_s=config.daemon.read_timeout_s,
        )

    @property
    def socket_path(self) -> Path:
        return self._socket_path

    def _client(self) -> httpx.Client:
        transport = self._transport or httpx.HTTPTransport(uds=str(self._socket_path))
        return httpx.Client(
            transport=transport,
            base_url=BASE_URL,
            timeout=self._timeout,
            headers={"Connection": "close"},
        )

    def health(self) -> HealthResponse | None:
        """Return the daemon's health report, or None if it does not answer."""
        try:
            with self._client() as client:
                response = client.get(HEALTH_ENDPOINT)
        except httpx.HTTPError as e:
            logger.debug("Health check failed: %s", e)
            return None
        if response.status_code != 200:
            return None
        try:
            return HealthResponse.model_validate_json(response.content)
        except ValidationError:
            return None

    def ping(self) -> bool:
        return self.health() is not None

    def request(self, audio_path: Path) -> TranscriptionResult:
        """Send one transcription request and decode the reply.

        Raises DaemonUnreachableError if the socket cannot be connected,
        BackendFailureError if the connection breaks afterwards, and
        MalformedResponseError if the reply does not decode.
        """
        # The daemon has its own working directory and only accepts absolute paths.
        payload = TranscriptionRequest(audio_path=str(Path(audio_path).resolve())).model_dump()
        logger.debug("Connecting to daemon at %s", self._socket_path)
        try:
            with self._client() as client:
                response = client.post(TRANSCRIBE_ENDPOINT, json=payload)
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            logger.debug("Failed to connect to daemon: %s", e)
            raise DaemonUnreachableError(self._socket_path, str(e) or type(e).__name__) from e
        except httpx.HTTPError as e:
            raise BackendFailureError(
                f"connection to daemon failed: {e}", route=Route.DAEMON.value
            ) from e

        logger.debug("Received response (%d): %s", response.status_code, response.text)
        return decode_response(response.content)


def oneshot_command(audio_path: Path, config: "WhisperConfig") -> list[str]:
    cmd = [
        sys.executable, "-m", "dictated.oneshot",
        str(audio_path),
        "--backend", config.backend.value,
        "--model", config.model,
        "--device", config.device,
        "--compute-type", config.compute_type,
    ]
    if config.language:
        cmd += ["--language", config.language]
    return cmd


def run_oneshot(
    audio_path: Path,
    config: "WhisperConfig",
    timeout_s: float = 600.0,
) -> TranscriptionResult:
    """Transcribe in a fresh process, without the daemon.

    The child prints the same response envelope the daemon would send.
    """
    cmd = oneshot_command(audio_path, config)
    logger.debug("Direct transcription: %s", " ".join(cmd))
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout_s,
        )
    except subprocess.TimeoutExpired as e:
        raise BackendFailureError(
            f"direct transcription timed out after {timeout_s:.0f}s",
            route=Route.FALLBACK.value,
        ) from e
    except OSError as e:
        raise BackendFailureError(
            f"could not run direct transcription: {e}", route=Route.FALLBACK.value
        ) from e

    stdout = result.stdout.strip()
    if result.stderr:
        logger.debug("Direct transcription stderr: %s", result.stderr.strip())

    if not stdout:
        stderr = result.stderr.strip()[-STDERR_TAIL_CHARS:]
        return TranscriptionFailure(
            detail=stderr or f"exited with status {result.returncode}"
        )
    return decode_response(stdout.splitlines()[-1])


def _unwrap(result: TranscriptionResult, route: Route) -> Transcript:
    if isinstance(result, TranscriptionFailure):
        raise BackendFailureError(result.detail, route=route.value)
    return Transcript(text=result.text, route=route)


def transcribe_audio(
    audio_path: Path,
    config: "Config",
    client: DaemonClient | None = None,
    fallback: Callable[..., TranscriptionResult] = run_oneshot,
    on_fallback: Callable[[DaemonUnreachableError], None] | None = None,
) -> Transcript:
    """Transcribe via the daemon, or directly if no daemon is listening."""
    client = client or DaemonClient.from_config(config)
    try:
        result = client.request(audio_path)
    except DaemonUnreachableError as daemon_error:
        logger.warning("Daemon not available (%s), falling back to direct mode", daemon_error.reason)
        if on_fallback is not None:
            on_fallback(daemon_error)
        try:
            result = fallback(audio_path, config.whisper, config.daemon.fallback_timeout_s)
            return _unwrap(result, Route.FALLBACK)
        except DictateError as e:
            raise FallbackFailedError(daemon_error, e) from e

    return _unwrap(result, Route.DAEMON)
