"""Tests for the process module."""

from __future__ import annotations

import os
import signal
import subprocess
import sys
from unittest.mock import patch

import pytest

from conftest import FakeProcessTable
from dictated.config import EscalationStage
from dictated.errors import KillFailedError
from dictated.process import is_alive, process_start_time, terminate_with_escalation, wait_for_exit

STUBBORN_CHILD = (
    "import signal, time\n"
    "signal.signal(signal.SIGINT, signal.SIG_IGN)\n"
    "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
    "print('ready', flush=True)\n"
    "time.sleep(60)\n"
)


class TestIsAlive:
    """Tests for is_alive."""

    def test_current_process_is_alive(self) -> None:
        assert is_alive(os.getpid()) is True

    @pytest.mark.parametrize("pid", [0, -1, 2**31])
    def test_invalid_pids_are_dead(self, pid: int) -> None:
        """Invalid ids return False instead of raising."""
        assert is_alive(pid) is False

    def test_exited_child_is_dead(self) -> None:
        """A finished and reaped child is reported dead."""
        proc = subprocess.Popen([sys.executable, "-c", "pass"])
        proc.wait(timeout=10)
        assert is_alive(proc.pid) is False

    def test_zombie_child_is_dead(self) -> None:
        """An exited child that nobody reaped yet is not treated as running."""
        proc = subprocess.Popen([sys.executable, "-c", "pass"])
        assert wait_for_exit(proc.pid, timeout_s=10.0, poll_interval_s=0.05)
        assert is_alive(proc.pid) is False
        proc.wait(timeout=5)

    def test_permission_error_means_alive(self) -> None:
        """A process we may not signal still exists."""
        with patch("dictated.process.os.kill", side_effect=PermissionError):
            assert is_alive(12345) is True


@pytest.mark.skipif(not os.path.exists("/proc/self/stat"), reason="needs procfs")
class TestProcessStartTime:
    """Tests for process_start_time."""

    def test_current_process(self) -> None:
        started = process_start_time(os.getpid())
        assert isinstance(started, int)
        assert process_start_time(os.getpid()) == started

    def test_exited_process_is_unknown(self) -> None:
        proc = subprocess.Popen([sys.executable, "-c", "pass"])
        proc.wait(timeout=10)
        assert process_start_time(proc.pid) is None

    def test_command_name_with_parenthesis(self) -> None:
        fields = ["S"] + [str(n) for n in range(4, 22)] + ["98765", "0"]
        stat_raw = "123 (odd) name) " + " ".join(fields)
        with patch("dictated.process.Path.read_text", return_value=stat_raw):
            assert process_start_time(123) == 98765

    def test_malformed_stat(self) -> None:
        with patch("dictated.process.Path.read_text", return_value="garbage"):
            assert process_start_time(123) is None


class TestTerminateWithEscalation:
    """Tests for terminate_with_escalation."""

    STAGES = (
        EscalationStage(signal.SIGINT, 0.1),
        EscalationStage(signal.SIGTERM, 0.1),
        EscalationStage(signal.SIGKILL, 0.1),
    )

    def _terminate(self, table: FakeProcessTable, pid: int) -> int:
        return terminate_with_escalation(
            pid,
            self.STAGES,
            poll_interval_s=0.02,
            alive=table.is_alive,
            send_signal=table.send,
            sleep=lambda s: None,
        )

    def test_already_dead(self) -> None:
        table = FakeProcessTable()
        assert self._terminate(table, 999) == 0
        assert table.signals == []

    def test_graceful_interrupt_is_enough(self) -> None:
        table = FakeProcessTable()
        pid = table.spawn()
        assert self._terminate(table, pid) == 1
        assert table.signals_for(pid) == [signal.SIGINT]

    def test_escalates_to_kill(self) -> None:
        """A process ignoring SIGINT and SIGTERM still dies on SIGKILL."""
        table = FakeProcessTable()
        pid = table.spawn(ignore=(signal.SIGINT, signal.SIGTERM))
        assert self._terminate(table, pid) == 3
        assert table.signals_for(pid) == [signal.SIGINT, signal.SIGTERM, signal.SIGKILL]
        assert not table.is_alive(pid)

    def test_unkillable_raises(self) -> None:
        table = FakeProcessTable()
        pid = table.spawn(ignore=(signal.SIGINT, signal.SIGTERM, signal.SIGKILL))
        with pytest.raises(KillFailedError) as exc_info:
            self._terminate(table, pid)
        assert exc_info.value.pid == pid
        assert len(table.signals_for(pid)) == 3

    def test_waits_are_bounded(self) -> None:
        """Each stage sleeps no longer than its configured wait."""
        table = FakeProcessTable()
        pid = table.spawn(ignore=(signal.SIGINT, signal.SIGTERM, signal.SIGKILL))
        slept: list[float] = []
        with pytest.raises(KillFailedError):
            terminate_with_escalation(
                pid,
                self.STAGES,
                poll_interval_s=0.02,
                alive=table.is_alive,
                send_signal=table.send,
                sleep=slept.append,
            )
        assert sum(slept) == pytest.approx(0.3)

    def test_real_process_ignoring_interrupt_and_terminate(self) -> None:
        proc = subprocess.Popen(
            [sys.executable, "-c", STUBBORN_CHILD],
            stdout=subprocess.PIPE,
            text=True,
        )
        try:
            assert proc.stdout is not None
            assert proc.stdout.readline().strip() == "ready"

            stages = (
                EscalationStage(signal.SIGINT, 0.2),
                EscalationStage(signal.SIGTERM, 0.2),
                EscalationStage(signal.SIGKILL, 5.0),
            )
            assert terminate_with_escalation(proc.pid, stages) == 3
            assert is_alive(proc.pid) is False
        finally:
            if proc.poll() is None:
                proc.kill()
            proc.wait(timeout=5)
            if proc.stdout is not None:
                proc.stdout.close()
