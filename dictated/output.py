"""Delivery of transcribed text to the focused window or the clipboard."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import pyperclip

if TYPE_CHECKING:
    from dictated.notify import Notifier

logger = logging.getLogger(__name__)

TYPE_DELAY_SECONDS = 0.03


class OutputHandler(ABC):
    """Abstract base class for output handlers."""

    @abstractmethod
    def output(self, text: str) -> None:
        """Output the transcribed text."""
        ...


class ClipboardOutput(OutputHandler):
    """Outputs text to the system clipboard."""

    def output(self, text: str) -> None:
        pyperclip.copy(text)


class TyperOutput(OutputHandler):
    """Types text directly into the focused window."""

    def __init__(self) -> None:
        from pynput.keyboard import Controller as KeyboardController

        self._controller = KeyboardController()

    def output(self, text: str) -> None:
        try:
            # Small delay to ensure the window is ready
            time.sleep(TYPE_DELAY_SECONDS)
            self._controller.type(text)
        except Exception as e:
            logger.error("Failed to type text: %s", e)
            raise


def create_output_handler(use_clipboard: bool) -> OutputHandler:
    if use_clipboard:
        return ClipboardOutput()
    return TyperOutput()


def deliver_text(
    text: str,
    use_clipboard: bool,
    notifier: "Notifier",
    source: str,
    handler: OutputHandler | None = None,
) -> bool:
    """
    Hand transcribed text to the user.

    Args:
        text: Transcribed text.
        use_clipboard: Copy instead of typing at the cursor.
        notifier: Where to report the outcome.
        source: Label for which path produced the text.
        handler: Output handler override.

    Returns:
        True if text was delivered, False if there was nothing to deliver.
    """
    text = text.strip()
    if not text:
        notifier.notify(f"⚠️ No speech detected\nBackend: {source}")
        return False

    handler = handler or create_output_handler(use_clipboard)
    handler.output(text)

    if use_clipboard:
        notifier.notify(f"✅ Copied to clipboard\nBackend: {source}", timeout_ms=1000)
    else:
        notifier.notify(f"✅ Transcribed\nBackend: {source}", timeout_ms=1000)
    return True
