"""Wire envelopes shared by the daemon, its clients and the one-shot fallback."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from pydantic import BaseModel, ValidationError, model_validator

from dictated.errors import MalformedResponseError

TRANSCRIBE_ENDPOINT = "/transcribe"
HEALTH_ENDPOINT = "/health"


class Route(str, Enum):
    """Which path produced a transcript."""

    DAEMON = "daemon"
    FALLBACK = "fallback"


class TranscriptionRequest(BaseModel):
    audio_path: str


class TranscriptionResponse(BaseModel):
    success: bool
    text: str | None = None
    error: str | None = None

    @model_validator(mode="after")
    def _check_envelope(self) -> "TranscriptionResponse":
        if self.success and self.text is None:
            raise ValueError("success response carries no text")
        if not self.success and not (self.error and self.error.strip()):
            raise ValueError("failure response carries no error detail")
        return self

    @classmethod
    def ok(cls, text: str) -> "TranscriptionResponse":
        return cls(success=True, text=text)

    @classmethod
    def failed(cls, error: str) -> "TranscriptionResponse":
        return cls(success=False, error=error or "unknown error")


class HealthResponse(BaseModel):
    status: str
    models_loaded: bool
    backend: str
    model: str


@dataclass(frozen=True)
class TranscriptionSuccess:
    text: str


@dataclass(frozen=True)
class TranscriptionFailure:
    detail: str


TranscriptionResult = Union[TranscriptionSuccess, TranscriptionFailure]


def decode_response(payload: bytes | str) -> TranscriptionResult:
    """Decode a response envelope.

    Raises :class:`MalformedResponseError` if the payload is not JSON or
    does not form a valid success/failure envelope.
    """
    raw = payload.encode() if isinstance(payload, str) else payload
    try:
        response = TranscriptionResponse.model_validate_json(raw)
    except ValidationError as e:
        details = "; ".join(err["msg"] for err in e.errors()) or str(e)
        raise MalformedResponseError(details, raw) from e

    if response.success:
        return TranscriptionSuccess(text=response.text or "")
    return TranscriptionFailure(detail=response.error or "")
