"""Process liveness checks and escalating termination."""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Callable, Iterable

from dictated.config import DEFAULT_ESCALATION, EscalationStage
from dictated.errors import KillFailedError

logger = logging.getLogger(__name__)

# Largest value accepted as a pid by kill(2) on Linux.
PID_MAX = 2**22


def is_alive(pid: int) -> bool:
    """Return True if ``pid`` names a running process.

    Signal 0 performs the existence and permission checks without
    delivering anything. A process owned by another user still counts as
    alive. Our own exited children are reaped here so that a zombie is
    not mistaken for a live recorder.
    """
    if not isinstance(pid, int) or pid <= 0 or pid > PID_MAX:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError as e:
        logger.debug("Liveness check of PID %d failed: %s", pid, e)
        return False

    try:
        reaped, _ = os.waitpid(pid, os.WNOHANG)
    except ChildProcessError:
        return True
    return reaped != pid


# Field 22 of /proc/<pid>/stat, counted from the first field after the comm.
_STARTTIME_FIELD = 22 - 3


def process_start_time(pid: int) -> int | None:
    """Start time of ``pid`` in clock ticks since boot, or None if unknown.

    A pid together with its start time names one process even after the
    kernel hands the pid to someone else.
    """
    try:
        stat_raw = Path(f"/proc/{pid}/stat").read_text(encoding="utf-8", errors="ignore")
    except OSError:
        return None
    # comm may itself contain ") ", so split on the last one.
    _, sep, rest = stat_raw.rpartition(") ")
    if not sep:
        return None
    try:
        return int(rest.split()[_STARTTIME_FIELD])
    except (IndexError, ValueError):
        return None


def signal_process(pid: int, sig: int) -> None:
    """Deliver ``sig`` to ``pid``, ignoring a process that already exited."""
    try:
        os.kill(pid, sig)
    except ProcessLookupError:
        pass
    except PermissionError as e:
        logger.warning("No permission to signal PID %d: %s", pid, e)


def wait_for_exit(
    pid: int,
    timeout_s: float,
    poll_interval_s: float = 0.02,
    alive: Callable[[int], bool] = is_alive,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Poll until ``pid`` is gone or ``timeout_s`` elapses. Returns True if gone."""
    waited = 0.0
    while alive(pid):
        if waited >= timeout_s:
            return False
        step = min(poll_interval_s, timeout_s - waited)
        sleep(step)
        waited += step
    return True


def terminate_with_escalation(
    pid: int,
    stages: Iterable[EscalationStage] = DEFAULT_ESCALATION,
    poll_interval_s: float = 0.02,
    alive: Callable[[int], bool] = is_alive,
    send_signal: Callable[[int, int], None] = signal_process,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Stop ``pid`` by walking ``stages`` until it exits.

    Returns the number of stages that were needed (0 if the process was
    already gone). Raises :class:`KillFailedError` if the process is still
    alive after the final stage.
    """
    if not alive(pid):
        logger.debug("PID %d is not running", pid)
        return 0

    used = 0
    for stage in stages:
        used += 1
        logger.debug("Sending %s to PID %d", stage.signal.name, pid)
        send_signal(pid, stage.signal)
        if wait_for_exit(pid, stage.wait_s, poll_interval_s, alive, sleep):
            logger.debug("PID %d exited after %s", pid, stage.signal.name)
            return used
        logger.warning("PID %d still running after %s", pid, stage.signal.name)

    logger.error("Failed to kill recording process (PID %d)", pid)
    raise KillFailedError(pid)
