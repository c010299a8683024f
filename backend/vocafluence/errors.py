"""Domain exceptions raised by the scoring and progression layers."""

from __future__ import annotations

from typing import Literal, Optional

TranscriptionFailure = Literal[
    "rate_limited",
    "invalid_audio",
    "timeout",
    "unauthorized",
    "provider_error",
]


class GrammarCoachError(Exception):
    """Base class for all VocaFluence domain errors."""


class InvalidInputError(GrammarCoachError, ValueError):
    """The request cannot be scored or applied as given."""


class AccessDeniedError(GrammarCoachError):
    """The requested day lies beyond the learner's unlock boundary."""

    def __init__(self, topic_id: str, requested_day: int, max_accessible_day: int) -> None:
        self.topic_id = topic_id
        self.requested_day = requested_day
        self.max_accessible_day = max_accessible_day
        if max_accessible_day <= 1:
            message = "You must start with Day 1. Complete it first to unlock Day 2."
        else:
            message = (
                f"You can access up to Day {max_accessible_day}. "
                f"Complete Day {max_accessible_day} first to unlock Day {max_accessible_day + 1}."
            )
        super().__init__(message)


class TopicNotFoundError(GrammarCoachError, LookupError):
    def __init__(self, topic_id: str) -> None:
        self.topic_id = topic_id
        super().__init__(f"Topic '{topic_id}' is not part of the curriculum.")


class LessonNotFoundError(GrammarCoachError, LookupError):
    def __init__(self, topic_id: str, day: int) -> None:
        self.topic_id = topic_id
        self.day = day
        super().__init__(f"No lesson content for topic '{topic_id}' day {day}.")


class ProgressNotFoundError(GrammarCoachError, LookupError):
    def __init__(self, learner_id: str, topic_id: str) -> None:
        self.learner_id = learner_id
        self.topic_id = topic_id
        super().__init__(f"No progress recorded for '{learner_id}' on topic '{topic_id}'.")


class TranscriptionError(GrammarCoachError):
    """The speech-to-text provider could not produce a transcript."""

    def __init__(self, reason: TranscriptionFailure, detail: Optional[str] = None) -> None:
        self.reason = reason
        self.detail = detail
        message = f"Transcription failed ({reason})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class PersistenceError(GrammarCoachError):
    """Progress could not be stored; nothing was committed."""


class CurriculumError(GrammarCoachError, ValueError):
    """The curriculum document is malformed."""


class CurriculumCompleteError(GrammarCoachError):
    """There is no topic after the last one and wraparound is disabled."""

    def __init__(self, topic_id: str) -> None:
        self.topic_id = topic_id
        super().__init__(f"Topic '{topic_id}' is the last topic of the curriculum.")


__all__ = [
    "AccessDeniedError",
    "CurriculumCompleteError",
    "CurriculumError",
    "GrammarCoachError",
    "InvalidInputError",
    "LessonNotFoundError",
    "PersistenceError",
    "ProgressNotFoundError",
    "TopicNotFoundError",
    "TranscriptionError",
    "TranscriptionFailure",
]
