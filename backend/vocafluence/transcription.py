"""Speech-to-text adapters used by the reading submission pipeline."""

from __future__ import annotations

import logging
import math
from functools import lru_cache
from typing import Any, Iterable, Optional, Protocol

import httpx
from openai import (
    APIConnectionError,
    APIError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    BadRequestError,
    PermissionDeniedError,
    RateLimitError,
    UnprocessableEntityError,
)

from .assessment_result import Transcription
from .config import Settings, get_settings
from .errors import TranscriptionError

logger = logging.getLogger(__name__)

LANGUAGE_HINTS = {
    "french": "fr",
    "english": "en",
    "swahili": "sw",
}


class TranscriptionAdapter(Protocol):
    async def transcribe(self, audio: bytes, language_hint: str) -> Transcription:
        ...


def iso_language(language_hint: str) -> Optional[str]:
    """Map a curriculum language tag to an ISO-639-1 code, passing short codes through."""
    normalized = (language_hint or "").strip().lower()
    if not normalized:
        return None
    if normalized in LANGUAGE_HINTS:
        return LANGUAGE_HINTS[normalized]
    if len(normalized) == 2 and normalized.isalpha():
        return normalized
    return None


def confidence_from_segments(segments: Optional[Iterable[Any]], transcript: str) -> float:
    """Average per-segment log-probability converted back to a 0..1 probability."""
    logprobs = []
    for segment in segments or ():
        value = segment.get("avg_logprob") if isinstance(segment, dict) else getattr(segment, "avg_logprob", None)
        if isinstance(value, (int, float)):
            logprobs.append(float(value))
    if not logprobs:
        return 1.0 if transcript.strip() else 0.0
    return max(0.0, min(1.0, math.exp(sum(logprobs) / len(logprobs))))


class OpenAITranscriptionAdapter:
    """Transcribes recordings with the OpenAI audio transcription endpoint."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: str = "whisper-1",
        timeout_seconds: float = 30.0,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAITranscriptionAdapter":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.transcription_model,
            timeout_seconds=settings.transcription_timeout_seconds,
        )

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise TranscriptionError("unauthorized", "OPENAI_API_KEY is not configured.")
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                timeout=self._timeout_seconds,
                max_retries=0,
                http_client=httpx.AsyncClient(timeout=self._timeout_seconds),
            )
        return self._client

    async def transcribe(self, audio: bytes, language_hint: str) -> Transcription:
        if not audio:
            raise TranscriptionError("invalid_audio", "Audio payload is empty.")

        request: dict[str, Any] = {
            "model": self._model,
            "file": ("recording.webm", audio),
            "response_format": "verbose_json",
        }
        language = iso_language(language_hint)
        if language:
            request["language"] = language

        client = self._get_client()
        try:
            response = await client.audio.transcriptions.create(**request)
        except RateLimitError as exc:
            raise TranscriptionError("rate_limited", str(exc)) from exc
        except (AuthenticationError, PermissionDeniedError) as exc:
            raise TranscriptionError("unauthorized", str(exc)) from exc
        except (BadRequestError, UnprocessableEntityError) as exc:
            raise TranscriptionError("invalid_audio", str(exc)) from exc
        except APITimeoutError as exc:
            raise TranscriptionError("timeout", str(exc)) from exc
        except (APIConnectionError, APIError) as exc:
            logger.warning("Transcription provider error: %s", exc)
            raise TranscriptionError("provider_error", str(exc)) from exc

        transcript = (getattr(response, "text", None) or "").strip()
        confidence = confidence_from_segments(getattr(response, "segments", None), transcript)
        logger.debug(
            "Transcribed %d bytes (language=%s, words=%d, confidence=%.2f)",
            len(audio),
            language,
            len(transcript.split()),
            confidence,
        )
        return Transcription(transcript=transcript, confidence=confidence)


@lru_cache
def get_transcription_adapter() -> TranscriptionAdapter:
    return OpenAITranscriptionAdapter.from_settings(get_settings())


__all__ = [
    "LANGUAGE_HINTS",
    "OpenAITranscriptionAdapter",
    "TranscriptionAdapter",
    "confidence_from_segments",
    "get_transcription_adapter",
    "iso_language",
]
