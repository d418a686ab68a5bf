"""
Dictated - Push-to-Talk Dictation with a Transcription Daemon

Record with one command, stop with another, and get the text typed at the
cursor. A long-running daemon keeps the Whisper model loaded; without it
each stop transcribes in a one-shot process instead.
"""

__version__ = "1.0.0"

from dictated.app import DictationApp
from dictated.config import Config

__all__ = ["DictationApp", "Config", "__version__"]
