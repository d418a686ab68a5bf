"""Exceptions raised by the Dictated core."""

from __future__ import annotations

from pathlib import Path


class DictateError(Exception):
    """Base class for all Dictated errors."""


class SessionBusyError(DictateError):
    """Another recording session holds the session lock."""

    def __init__(self, lock_path: Path, holder_pid: int | None = None) -> None:
        self.lock_path = lock_path
        self.holder_pid = holder_pid
        holder = f" (PID {holder_pid})" if holder_pid else ""
        super().__init__(f"Another recording is already in progress{holder}")


class NothingToStopError(DictateError):
    """No recording session was found."""

    def __init__(self) -> None:
        super().__init__("No recording found")


class EmptyArtifactError(DictateError):
    """The recording produced no audio beyond the WAV header."""

    def __init__(self, path: Path, size: int | None) -> None:
        self.path = path
        self.size = size
        if size is None:
            message = f"Audio file does not exist: {path}"
        else:
            message = f"Audio file is empty ({size} bytes): {path}"
        super().__init__(message)


class KillFailedError(DictateError):
    """A capture process survived every escalation stage."""

    def __init__(self, pid: int) -> None:
        self.pid = pid
        super().__init__(f"Failed to kill recording process (PID {pid})")


class CaptureError(DictateError):
    """The capture subprocess could not be launched."""


class DaemonUnreachableError(DictateError):
    """Nothing is listening on the daemon socket."""

    def __init__(self, socket_path: Path, reason: str) -> None:
        self.socket_path = socket_path
        self.reason = reason
        super().__init__(f"Daemon not reachable at {socket_path}: {reason}")


class BackendFailureError(DictateError):
    """The transcription backend reported a failure."""

    def __init__(self, detail: str, route: str | None = None) -> None:
        self.detail = detail
        self.route = route
        prefix = f"[{route}] " if route else ""
        super().__init__(f"{prefix}Transcription failed: {detail}")


class MalformedResponseError(DictateError):
    """A response arrived but does not decode into a valid envelope."""

    def __init__(self, detail: str, payload: bytes = b"") -> None:
        self.detail = detail
        self.payload = payload
        super().__init__(f"Could not parse response: {detail}")


class FallbackFailedError(DictateError):
    """The daemon was unreachable and the direct fallback failed too."""

    def __init__(
        self,
        daemon_error: DaemonUnreachableError,
        fallback_error: DictateError,
    ) -> None:
        self.daemon_error = daemon_error
        self.fallback_error = fallback_error
        super().__init__(
            f"Fallback transcription failed ({fallback_error}); "
            f"daemon was: {daemon_error}"
        )
