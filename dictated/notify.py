"""Desktop notifications."""

from __future__ import annotations

import logging
import subprocess
import sys

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Voice Input"
# Lets each notification replace the previous one instead of stacking.
SYNC_HINT = "string:x-canonical-private-synchronous:voice"


class Notifier:
    """Sends notifications through ``notify-send``, printing if that fails."""

    def __init__(self, title: str = DEFAULT_TITLE, enabled: bool = True) -> None:
        self._title = title
        self._enabled = enabled

    def notify(self, message: str, timeout_ms: int = 2000) -> None:
        logger.debug("Sending notification: %s - %s", self._title, message)
        if not self._enabled:
            self._print(message)
            return
        try:
            result = subprocess.run(
                ["notify-send", self._title, message, "-t", str(timeout_ms), "-h", SYNC_HINT],
                capture_output=True,
                text=True,
            )
        except FileNotFoundError:
            logger.debug("notify-send not installed")
            self._print(message)
            return
        if result.returncode != 0:
            logger.debug("notify-send failed: %s", result.stderr.strip())
            self._print(message)

    def _print(self, message: str) -> None:
        print(f"[dictated] {self._title}: {message}", file=sys.stderr)

