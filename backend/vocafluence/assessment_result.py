"""Data models describing the outcome of a spoken-reading assessment."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from pydantic import BaseModel, ConfigDict, Field

FEEDBACK_COMMENT_COUNT = 3


class AssessmentResult(BaseModel):
    """Scores and feedback produced for one recording against its reference text."""

    model_config = ConfigDict(frozen=True)

    score: int = Field(ge=0, le=100)
    accuracy: int = Field(ge=0, le=100)
    fluency: int = Field(ge=0, le=100)
    words_per_minute: int = Field(ge=0)
    feedback_comments: List[str] = Field(
        min_length=FEEDBACK_COMMENT_COUNT,
        max_length=FEEDBACK_COMMENT_COUNT,
    )
    reference_word_count: int = Field(ge=1)
    transcript_word_count: int = Field(ge=0)


class Transcription(BaseModel):
    """Speech-to-text output consumed by the scoring pipeline."""

    transcript: str
    confidence: float = Field(ge=0.0, le=1.0)
    transcribed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


__all__ = [
    "AssessmentResult",
    "FEEDBACK_COMMENT_COUNT",
    "Transcription",
]
