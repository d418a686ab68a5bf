"""One-shot transcription used when no daemon is running.

Prints a single response envelope on stdout, the same shape the daemon
returns, so callers decode both paths the same way.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from dictated.config import Backend, WhisperConfig
from dictated.protocol import TranscriptionResponse
from dictated.transcribe import create_backend

logger = logging.getLogger(__name__)


def transcribe_once(audio_path: Path, config: WhisperConfig) -> TranscriptionResponse:
    if not audio_path.is_file():
        return TranscriptionResponse.failed(f"Audio file not found: {audio_path}")
    try:
        text = create_backend(config).transcribe(audio_path)
    except Exception as e:
        logger.exception("Transcription error")
        return TranscriptionResponse.failed(str(e) or type(e).__name__)
    return TranscriptionResponse.ok(text)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Transcribe one audio file")
    parser.add_argument("audio_path", type=Path)
    parser.add_argument("--backend", default=Backend.FASTER_WHISPER.value)
    parser.add_argument("--model", default=WhisperConfig.model)
    parser.add_argument("--device", default=WhisperConfig.device)
    parser.add_argument("--compute-type", default=WhisperConfig.compute_type)
    parser.add_argument("--language", default=None)
    args = parser.parse_args(argv)

    # stdout carries the envelope; logs go to stderr.
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    config = WhisperConfig(
        backend=Backend(args.backend),
        model=args.model,
        language=args.language,
        device=args.device,
        compute_type=args.compute_type,
    )
    response = transcribe_once(args.audio_path.resolve(), config)
    print(response.model_dump_json())
    return 0 if response.success else 1


if __name__ == "__main__":
    sys.exit(main())
