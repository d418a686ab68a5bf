"""Key-value view of the shared session state."""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)

PID_KEY = "pid"
AUDIO_PATH_KEY = "audio_path"
STARTED_KEY = "started"

_FILE_NAMES = {
    PID_KEY: "recording.pid",
    AUDIO_PATH_KEY: "recording.audio",
    STARTED_KEY: "recording.started",
}


class SessionStore(ABC):
    """Small string store shared by every CLI invocation."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored value, or None if absent."""
        ...

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        """Store ``value`` atomically."""
        ...

    @abstractmethod
    def compare_and_delete(self, key: str, expected: str | None = None) -> bool:
        """Delete ``key`` if its value equals ``expected`` (any value if None).

        Returns True if something was deleted.
        """
        ...

    def delete(self, key: str) -> bool:
        return self.compare_and_delete(key, None)

    def mtime(self, key: str) -> float | None:
        """Modification time of ``key``, where the store tracks it."""
        return None


class FileSessionStore(SessionStore):
    """Stores each key as a small file in the runtime directory."""

    def __init__(self, directory: Path) -> None:
        self._dir = directory

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, key: str) -> Path:
        return self._dir / _FILE_NAMES.get(key, f"{key}.state")

    def get(self, key: str) -> str | None:
        try:
            return self.path_for(key).read_text().strip()
        except FileNotFoundError:
            return None

    def put(self, key: str, value: str) -> None:
        self._dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        target = self.path_for(key)
        fd, tmp = tempfile.mkstemp(prefix=f".{target.name}.", dir=self._dir)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(value)
            os.replace(tmp, target)
        except BaseException:
            try:
                os.remove(tmp)
            except OSError:
                pass
            raise
        logger.debug("Wrote %s=%s to %s", key, value, target)

    def compare_and_delete(self, key: str, expected: str | None = None) -> bool:
        target = self.path_for(key)
        if expected is not None and self.get(key) != expected:
            return False
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        logger.debug("Removed %s", target)
        return True

    def mtime(self, key: str) -> float | None:
        try:
            return self.path_for(key).stat().st_mtime
        except FileNotFoundError:
            return None


class MemorySessionStore(SessionStore):
    """In-process store, for tests and embedding."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def compare_and_delete(self, key: str, expected: str | None = None) -> bool:
        with self._lock:
            if key not in self._data:
                return False
            if expected is not None and self._data[key] != expected:
                return False
            del self._data[key]
            return True

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._data)
