"""Deterministic scoring of a read-aloud transcript against its reference text.

The scorer is a pure function: it holds no state, performs no I/O and always
returns the same :class:`AssessmentResult` for the same inputs, so it is safe
to call concurrently from any number of request handlers.

Accuracy counts how many spoken words occur anywhere in the reference (a
membership test, not an alignment). Fluency blends accuracy with speaking
rate, capped at 100 words per minute. The overall score weights accuracy
60/40 against fluency.
"""

from __future__ import annotations

import math
from typing import List

from .assessment_result import FEEDBACK_COMMENT_COUNT, AssessmentResult
from .errors import InvalidInputError

ACCURACY_WEIGHT = 0.6
FLUENCY_WEIGHT = 0.4
FLUENCY_ACCURACY_WEIGHT = 0.7
FLUENCY_PACE_WEIGHT = 0.3
PACE_CAP_WPM = 100

ENCOURAGEMENT = "keep up the good work"


def tokenize(text: str) -> List[str]:
    """Lowercase ``text`` and split it on whitespace, dropping empty tokens."""
    return [token for token in text.lower().split() if token]


def round_half_up(value: float) -> int:
    """Round non-negative values with .5 going up, as the scores were always reported."""
    return int(math.floor(value + 0.5))


def assess(reference_text: str, transcript: str, duration_seconds: float) -> AssessmentResult:
    """Score ``transcript`` against ``reference_text`` read over ``duration_seconds``."""
    reference = tokenize(reference_text or "")
    if not reference:
        raise InvalidInputError("Reference text must contain at least one word.")
    if duration_seconds is None or not duration_seconds > 0:
        raise InvalidInputError("Recording duration must be greater than zero seconds.")

    spoken = tokenize(transcript or "")
    vocabulary = set(reference)
    matched = sum(1 for token in spoken if token in vocabulary)

    accuracy = min(100.0, matched / len(reference) * 100)
    words_per_minute = round_half_up(len(spoken) / duration_seconds * 60)
    fluency = min(
        100.0,
        accuracy * FLUENCY_ACCURACY_WEIGHT + min(PACE_CAP_WPM, words_per_minute) * FLUENCY_PACE_WEIGHT,
    )
    score = round_half_up(accuracy * ACCURACY_WEIGHT + fluency * FLUENCY_WEIGHT)

    return AssessmentResult(
        score=score,
        accuracy=round_half_up(accuracy),
        fluency=round_half_up(fluency),
        words_per_minute=words_per_minute,
        feedback_comments=feedback_comments(accuracy, fluency, len(reference), len(spoken)),
        reference_word_count=len(reference),
        transcript_word_count=len(spoken),
    )


def feedback_comments(
    accuracy: float,
    fluency: float,
    reference_word_count: int,
    transcript_word_count: int,
) -> List[str]:
    """Return exactly three short feedback keys for the given metrics."""
    comments: List[str] = []

    if accuracy >= 90:
        comments.append("excellent accuracy")
    elif accuracy >= 70:
        comments.append("good accuracy")
    elif accuracy >= 50:
        comments.append("needs pronunciation focus")
    else:
        comments.append("review script")

    if fluency >= 85:
        comments.append("great pace")
    elif fluency >= 60:
        comments.append("improve speed")
    else:
        comments.append("practice reading aloud")

    word_delta = reference_word_count - transcript_word_count
    if word_delta > 3:
        comments.append(f"skipped {word_delta} words")
    elif word_delta < -2:
        comments.append("added extra words")

    while len(comments) < FEEDBACK_COMMENT_COUNT:
        comments.append(ENCOURAGEMENT)
    return comments[:FEEDBACK_COMMENT_COUNT]


__all__ = [
    "ENCOURAGEMENT",
    "assess",
    "feedback_comments",
    "round_half_up",
    "tokenize",
]
