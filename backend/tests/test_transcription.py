from __future__ import annotations

import asyncio
import math
from types import SimpleNamespace
from typing import Any

import httpx
import openai
import pytest

from vocafluence.assessment_result import Transcription
from vocafluence.config import Settings
from vocafluence.errors import TranscriptionError
from vocafluence.practice import transcribe_with_timeout
from vocafluence.transcription import OpenAITranscriptionAdapter, confidence_from_segments, iso_language

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions")


class FakeTranscriptions:
    def __init__(self, *, response: Any = None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


def _client(transcriptions: FakeTranscriptions) -> Any:
    return SimpleNamespace(audio=SimpleNamespace(transcriptions=transcriptions))


def _status_error(cls: type, status_code: int) -> Exception:
    response = httpx.Response(status_code, request=_REQUEST)
    return cls("provider said no", response=response, body=None)


def test_iso_language_hints() -> None:
    assert iso_language("french") == "fr"
    assert iso_language("English") == "en"
    assert iso_language("de") == "de"
    assert iso_language("klingon") is None
    assert iso_language("") is None


def test_confidence_from_segment_logprobs() -> None:
    segments = [SimpleNamespace(avg_logprob=-0.1), {"avg_logprob": -0.3}]
    assert confidence_from_segments(segments, "bonjour") == pytest.approx(math.exp(-0.2))
    assert confidence_from_segments(None, "bonjour") == 1.0
    assert confidence_from_segments([], "  ") == 0.0


def test_openai_adapter_requests_verbose_transcript() -> None:
    transcriptions = FakeTranscriptions(
        response=SimpleNamespace(text=" Je suis dentiste ", segments=[SimpleNamespace(avg_logprob=-0.05)])
    )
    adapter = OpenAITranscriptionAdapter(model="whisper-1", client=_client(transcriptions))

    result = asyncio.run(adapter.transcribe(b"RIFF....", "french"))

    assert isinstance(result, Transcription)
    assert result.transcript == "Je suis dentiste"
    assert result.confidence == pytest.approx(math.exp(-0.05))
    call = transcriptions.calls[0]
    assert call["model"] == "whisper-1"
    assert call["response_format"] == "verbose_json"
    assert call["language"] == "fr"
    assert call["file"][1] == b"RIFF...."


@pytest.mark.parametrize(
    ("error", "reason"),
    [
        (_status_error(openai.RateLimitError, 429), "rate_limited"),
        (_status_error(openai.AuthenticationError, 401), "unauthorized"),
        (_status_error(openai.PermissionDeniedError, 403), "unauthorized"),
        (_status_error(openai.BadRequestError, 400), "invalid_audio"),
        (_status_error(openai.InternalServerError, 500), "provider_error"),
        (openai.APITimeoutError(request=_REQUEST), "timeout"),
        (openai.APIConnectionError(request=_REQUEST), "provider_error"),
    ],
)
def test_openai_errors_are_mapped(error: Exception, reason: str) -> None:
    adapter = OpenAITranscriptionAdapter(client=_client(FakeTranscriptions(error=error)))

    with pytest.raises(TranscriptionError) as excinfo:
        asyncio.run(adapter.transcribe(b"audio", "french"))
    assert excinfo.value.reason == reason


def test_empty_audio_is_rejected_before_calling_provider() -> None:
    transcriptions = FakeTranscriptions(response=SimpleNamespace(text="x"))
    adapter = OpenAITranscriptionAdapter(client=_client(transcriptions))

    with pytest.raises(TranscriptionError) as excinfo:
        asyncio.run(adapter.transcribe(b"", "french"))
    assert excinfo.value.reason == "invalid_audio"
    assert transcriptions.calls == []


def test_adapter_without_api_key_fails_on_first_call() -> None:
    adapter = OpenAITranscriptionAdapter.from_settings(Settings(OPENAI_API_KEY=None))
    with pytest.raises(TranscriptionError) as excinfo:
        asyncio.run(adapter.transcribe(b"audio", "french"))
    assert excinfo.value.reason == "unauthorized"


def test_slow_transcription_times_out() -> None:
    class SlowAdapter:
        async def transcribe(self, audio: bytes, language_hint: str) -> Transcription:
            await asyncio.sleep(1)
            return Transcription(transcript="trop tard", confidence=1.0)

    with pytest.raises(TranscriptionError) as excinfo:
        asyncio.run(transcribe_with_timeout(SlowAdapter(), b"audio", "french", timeout_seconds=0.01))
    assert excinfo.value.reason == "timeout"
