"""Tests for the session store."""

from __future__ import annotations

from pathlib import Path

from dictated.store import AUDIO_PATH_KEY, PID_KEY, STARTED_KEY, FileSessionStore, MemorySessionStore


class TestFileSessionStore:
    """Tests for FileSessionStore."""

    def test_get_missing(self, tmp_path: Path) -> None:
        assert FileSessionStore(tmp_path).get(PID_KEY) is None

    def test_put_and_get(self, tmp_path: Path) -> None:
        store = FileSessionStore(tmp_path)
        store.put(PID_KEY, "1234")
        store.put(AUDIO_PATH_KEY, "/run/user/1000/dictated/voice-recording-1.wav")

        assert store.get(PID_KEY) == "1234"
        assert store.get(AUDIO_PATH_KEY) == "/run/user/1000/dictated/voice-recording-1.wav"
        assert (tmp_path / "recording.pid").read_text() == "1234"

    def test_start_time_file(self, tmp_path: Path) -> None:
        FileSessionStore(tmp_path).put(STARTED_KEY, "987654")
        assert (tmp_path / "recording.started").read_text() == "987654"

    def test_put_leaves_no_temp_files(self, tmp_path: Path) -> None:
        store = FileSessionStore(tmp_path)
        store.put(PID_KEY, "1")
        store.put(PID_KEY, "2")
        assert sorted(p.name for p in tmp_path.iterdir()) == ["recording.pid"]

    def test_put_creates_directory(self, tmp_path: Path) -> None:
        store = FileSessionStore(tmp_path / "nested" / "dir")
        store.put(PID_KEY, "42")
        assert store.get(PID_KEY) == "42"

    def test_get_strips_whitespace(self, tmp_path: Path) -> None:
        (tmp_path / "recording.pid").write_text("1234\n")
        assert FileSessionStore(tmp_path).get(PID_KEY) == "1234"

    def test_compare_and_delete_matching(self, tmp_path: Path) -> None:
        store = FileSessionStore(tmp_path)
        store.put(PID_KEY, "1234")
        assert store.compare_and_delete(PID_KEY, "1234") is True
        assert store.get(PID_KEY) is None

    def test_compare_and_delete_mismatch_keeps_value(self, tmp_path: Path) -> None:
        """A newer session's record survives cleanup of an older one."""
        store = FileSessionStore(tmp_path)
        store.put(PID_KEY, "5678")
        assert store.compare_and_delete(PID_KEY, "1234") is False
        assert store.get(PID_KEY) == "5678"

    def test_delete_is_idempotent(self, tmp_path: Path) -> None:
        store = FileSessionStore(tmp_path)
        store.put(PID_KEY, "1")
        assert store.delete(PID_KEY) is True
        assert store.delete(PID_KEY) is False

    def test_mtime(self, tmp_path: Path) -> None:
        store = FileSessionStore(tmp_path)
        assert store.mtime(PID_KEY) is None
        store.put(PID_KEY, "1")
        assert store.mtime(PID_KEY) is not None


class TestMemorySessionStore:
    """Tests for MemorySessionStore."""

    def test_round_trip(self) -> None:
        store = MemorySessionStore()
        store.put(PID_KEY, "1")
        assert store.get(PID_KEY) == "1"
        assert store.snapshot() == {PID_KEY: "1"}

    def test_compare_and_delete(self) -> None:
        store = MemorySessionStore({PID_KEY: "1"})
        assert store.compare_and_delete(PID_KEY, "2") is False
        assert store.compare_and_delete(PID_KEY, "1") is True
        assert store.compare_and_delete(PID_KEY) is False

    def test_mtime_untracked(self) -> None:
        assert MemorySessionStore({PID_KEY: "1"}).mtime(PID_KEY) is None
