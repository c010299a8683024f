"""Reading submission pipeline: transcribe, score, gate, persist."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Union

from fastapi.concurrency import run_in_threadpool

from .assessment_result import Transcription
from .errors import InvalidInputError, TranscriptionError
from .progression import BelowThresholdResult, ProgressionEngine, SubmissionResult
from .telemetry import emit_event
from .transcription import TranscriptionAdapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadingSubmission:
    learner_id: str
    topic_id: str
    day: int
    audio: bytes
    duration_seconds: float


@dataclass(frozen=True)
class ReadingOutcome:
    transcription: Transcription
    result: Union[SubmissionResult, BelowThresholdResult]


async def transcribe_with_timeout(
    adapter: TranscriptionAdapter,
    audio: bytes,
    language_hint: str,
    *,
    timeout_seconds: float,
) -> Transcription:
    try:
        return await asyncio.wait_for(adapter.transcribe(audio, language_hint), timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise TranscriptionError("timeout", f"No transcript within {timeout_seconds:g}s.") from exc


async def submit_reading(
    engine: ProgressionEngine,
    adapter: TranscriptionAdapter,
    submission: ReadingSubmission,
    *,
    timeout_seconds: float,
    language_hint: Optional[str] = None,
) -> ReadingOutcome:
    """Score one recorded reading and record it if it passes.

    Progress is written only after transcription and scoring finished, inside
    a single transaction, so a cancelled request leaves no partial state.
    """
    if submission.duration_seconds <= 0:
        raise InvalidInputError("Recording duration must be positive.")
    lesson = await run_in_threadpool(
        engine.resolve_accessible_day,
        submission.learner_id,
        submission.topic_id,
        submission.day,
    )
    topic = engine.catalog.topic_by_id(submission.topic_id)
    hint = language_hint or (topic.language if topic else "")

    try:
        transcription = await transcribe_with_timeout(
            adapter,
            submission.audio,
            hint,
            timeout_seconds=timeout_seconds,
        )
    except TranscriptionError as exc:
        logger.warning(
            "Transcription failed learner=%s topic=%s day=%s reason=%s",
            submission.learner_id,
            submission.topic_id,
            submission.day,
            exc.reason,
        )
        emit_event(
            "grammar_transcription_failed",
            learner_id=submission.learner_id,
            topic_id=submission.topic_id,
            day=submission.day,
            reason=exc.reason,
        )
        raise

    result = await run_in_threadpool(
        engine.submit_day_attempt,
        submission.learner_id,
        submission.topic_id,
        submission.day,
        lesson.reference_text,
        transcription.transcript,
        submission.duration_seconds,
    )
    return ReadingOutcome(transcription=transcription, result=result)


__all__ = [
    "ReadingOutcome",
    "ReadingSubmission",
    "submit_reading",
    "transcribe_with_timeout",
]
