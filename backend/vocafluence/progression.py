"""Day-gated curriculum progression for grammar reading practice.

Each learner owns one :class:`ProgressRecord` per topic. A day is unlocked
once every earlier day of the topic carries a passing score, so the stored
scores always form a contiguous prefix ``1..N``. Passing the final day marks
the topic completed and chains the learner into the next topic of the
catalog, resetting any stale record left there. Both writes commit in a
single transaction.

Writes to one ``(learner_id, topic_id)`` key are serialised in-process by a
keyed lock and guarded across processes by the store's optimistic version
check, so a replayed submission can never advance a learner twice.
"""

from __future__ import annotations

import logging
import math
import threading
import weakref
from collections import Counter
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Dict, Iterator, List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from .assessment_result import AssessmentResult
from .config import get_settings
from .curriculum import CurriculumCatalog, LessonContent, Topic, get_catalog
from .errors import (
    AccessDeniedError,
    CurriculumCompleteError,
    InvalidInputError,
    LessonNotFoundError,
    ProgressNotFoundError,
    TopicNotFoundError,
)
from .progress import ProgressRecord, ProgressStore, RecordLoader
from .scoring import assess, round_half_up
from .telemetry import emit_event

logger = logging.getLogger(__name__)

DEFAULT_PASS_THRESHOLD = 60


class BelowThresholdResult(BaseModel):
    """Outcome of a recording that scored under the pass threshold; nothing was stored."""

    passed: Literal[False] = False
    score: int
    accuracy: int
    fluency: int
    feedback_comments: List[str]
    minimum_required: int
    assessment: AssessmentResult


class SubmissionResult(BaseModel):
    passed: Literal[True] = True
    assessment: Optional[AssessmentResult] = None
    updated_progress: ProgressRecord
    next_progress: Optional[ProgressRecord] = None
    topic_completed: bool = False


class TodaysLesson(BaseModel):
    progress: ProgressRecord
    lesson: Optional[LessonContent] = None
    topic: Optional[Topic] = None


class DayStatus(BaseModel):
    day: int
    title: str
    is_completed: bool = False
    score: Optional[int] = None


class TopicLessons(BaseModel):
    topic_id: str
    topic_name: str
    topic_name_en: str
    level: str
    days: List[DayStatus] = Field(default_factory=list)


class AvailableLessons(BaseModel):
    lessons: List[TopicLessons] = Field(default_factory=list)
    user_progress: Optional[ProgressRecord] = None
    max_accessible_day: int = 1


class ProgressStats(BaseModel):
    total_completed: int
    current_progress: Optional[ProgressRecord] = None
    completed_by_level: Dict[str, int] = Field(default_factory=dict)


class HistoryEntry(BaseModel):
    topic_id: str
    topic_name: str
    level: str
    scores: Dict[int, int]
    avg_score: int
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class Pagination(BaseModel):
    total: int
    pages: int
    current: int


class ProgressHistory(BaseModel):
    history: List[HistoryEntry] = Field(default_factory=list)
    pagination: Pagination


class KeyedLocks:
    """Process-local mutual exclusion per (learner_id, topic_id)."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], threading.Lock]" = weakref.WeakValueDictionary()

    @contextmanager
    def hold(self, learner_id: str, topic_id: str) -> Iterator[None]:
        key = (learner_id.strip(), topic_id)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
        with lock:
            yield


class ProgressionEngine:
    """Gatekeeper for day access, score recording and topic chaining."""

    def __init__(
        self,
        catalog: CurriculumCatalog,
        store: ProgressStore,
        *,
        pass_threshold: int = DEFAULT_PASS_THRESHOLD,
    ) -> None:
        self._catalog = catalog
        self._store = store
        self._pass_threshold = pass_threshold
        self._locks = KeyedLocks()

    @property
    def catalog(self) -> CurriculumCatalog:
        return self._catalog

    @property
    def pass_threshold(self) -> int:
        return self._pass_threshold

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_or_init_progress(self, learner_id: str) -> ProgressRecord:
        """Return the learner's current record, starting the first topic if they have none."""
        records = self._store.list_by_learner(learner_id)
        if not records:
            first = self._catalog.first_topic()
            with self._locks.hold(learner_id, first.topic_id):
                created = self._store.transact(
                    learner_id,
                    first.topic_id,
                    lambda current, _load: [] if current else [ProgressRecord.initial(learner_id, first)],
                )
            if created:
                logger.info("Started curriculum for learner=%s at topic=%s", learner_id, first.topic_id)
            records = self._store.list_by_learner(learner_id)

        current = self._current_record(records)
        touched = self._store.touch(learner_id, current.topic_id)
        return touched or current

    def progress_for(self, learner_id: str, topic_id: str) -> Optional[ProgressRecord]:
        return self._store.get(learner_id, topic_id)

    def resolve_accessible_day(self, learner_id: str, topic_id: str, requested_day: int) -> LessonContent:
        """Return the lesson for ``requested_day`` if the learner has unlocked it."""
        topic = self._require_topic(topic_id)
        max_day = self._catalog.max_day(topic.topic_id)
        if requested_day < 1 or (max_day and requested_day > max_day):
            raise InvalidInputError(f"Day {requested_day} is outside 1..{max_day} for topic '{topic.topic_id}'.")
        if max_day == 0:
            raise LessonNotFoundError(topic.topic_id, requested_day)

        record = self._store.get(learner_id, topic.topic_id)
        boundary = record.max_accessible_day if record else 1
        if requested_day > boundary:
            raise AccessDeniedError(topic.topic_id, requested_day, boundary)

        lesson = self._catalog.lesson(topic.topic_id, requested_day)
        if lesson is None:
            raise LessonNotFoundError(topic.topic_id, requested_day)
        return lesson

    def todays_lesson(self, learner_id: str) -> TodaysLesson:
        progress = self.get_or_init_progress(learner_id)
        return TodaysLesson(
            progress=progress,
            lesson=self._catalog.lesson(progress.topic_id, progress.current_day),
            topic=self._catalog.topic_by_id(progress.topic_id),
        )

    def available_lessons(self, learner_id: str) -> AvailableLessons:
        records = self._store.list_by_learner(learner_id)
        if not records:
            return AvailableLessons(
                lessons=[
                    self._topic_lessons(topic, self._catalog.lessons_for(topic.topic_id)[:1], None)
                    for topic in self._catalog.topics_with_content()
                ],
                user_progress=None,
                max_accessible_day=1,
            )

        current = self._current_record(records)
        boundary = current.max_accessible_day
        topic = self._catalog.topic_by_id(current.topic_id)
        lessons: List[TopicLessons] = []
        if topic is not None:
            unlocked = [lesson for lesson in self._catalog.lessons_for(topic.topic_id) if lesson.day <= boundary]
            if unlocked:
                lessons.append(self._topic_lessons(topic, unlocked, current))
        return AvailableLessons(lessons=lessons, user_progress=current, max_accessible_day=boundary)

    def stats(self, learner_id: str) -> ProgressStats:
        records = self._store.list_by_learner(learner_id)
        in_progress = [record for record in records if not record.completed]
        by_level = Counter(record.level for record in records if record.completed)
        return ProgressStats(
            total_completed=self._store.count_completed_topics(learner_id),
            current_progress=self._current_record(in_progress) if in_progress else None,
            completed_by_level=dict(sorted(by_level.items())),
        )

    def history(self, learner_id: str, *, skip: int = 0, limit: int = 10) -> ProgressHistory:
        skip = max(skip, 0)
        limit = max(limit, 1)
        records, total = self._store.list_completed(learner_id, skip=skip, limit=limit)
        entries = []
        for record in records:
            topic = self._catalog.topic_by_id(record.topic_id)
            entries.append(
                HistoryEntry(
                    topic_id=record.topic_id,
                    topic_name=topic.display_name if topic else "Unknown Topic",
                    level=record.level,
                    scores=record.scores,
                    avg_score=record.average_score,
                    completed_at=record.completed_at,
                    created_at=record.created_at,
                )
            )
        return ProgressHistory(
            history=entries,
            pagination=Pagination(
                total=total,
                pages=math.ceil(total / limit),
                current=skip // limit + 1,
            ),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def submit_day_attempt(
        self,
        learner_id: str,
        topic_id: str,
        day: int,
        reference_text: str,
        transcript: str,
        duration_seconds: float,
    ) -> SubmissionResult | BelowThresholdResult:
        """Score a reading of ``day`` and record it when it reaches the pass threshold."""
        topic = self._require_topic(topic_id)
        max_day = self._catalog.max_day(topic.topic_id)
        if not 1 <= day <= max_day:
            raise InvalidInputError(f"Day {day} is outside 1..{max_day} for topic '{topic.topic_id}'.")
        existing = self._store.get(learner_id, topic.topic_id)
        boundary = existing.max_accessible_day if existing else 1
        if day > boundary:
            raise AccessDeniedError(topic.topic_id, day, boundary)

        assessment = assess(reference_text, transcript, duration_seconds)
        emit_event(
            "grammar_submission_scored",
            learner_id=learner_id,
            topic_id=topic.topic_id,
            day=day,
            score=assessment.score,
            accuracy=assessment.accuracy,
            fluency=assessment.fluency,
            words_per_minute=assessment.words_per_minute,
        )
        if assessment.score < self._pass_threshold:
            logger.info(
                "Submission below threshold learner=%s topic=%s day=%s score=%s",
                learner_id,
                topic.topic_id,
                day,
                assessment.score,
            )
            return BelowThresholdResult(
                score=assessment.score,
                accuracy=assessment.accuracy,
                fluency=assessment.fluency,
                feedback_comments=list(assessment.feedback_comments),
                minimum_required=self._pass_threshold,
                assessment=assessment,
            )

        return self._record_pass(learner_id, topic, day, assessment.score, assessment=assessment)

    def complete_final_exam(self, learner_id: str, topic_id: str, score: float) -> SubmissionResult:
        """Record an externally graded final-day score and complete the topic.

        No threshold applies; the caller already decided the exam was passed.
        """
        topic = self._require_topic(topic_id)
        if score is None or not 0 <= score <= 100:
            raise InvalidInputError("Exam score must be between 0 and 100.")
        max_day = self._catalog.max_day(topic.topic_id)
        if max_day < 1:
            raise LessonNotFoundError(topic.topic_id, 1)
        return self._record_pass(
            learner_id,
            topic,
            max_day,
            round_half_up(score),
            assessment=None,
            require_existing=True,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _record_pass(
        self,
        learner_id: str,
        topic: Topic,
        day: int,
        score: int,
        *,
        assessment: Optional[AssessmentResult],
        require_existing: bool = False,
    ) -> SubmissionResult:
        max_day = self._catalog.max_day(topic.topic_id)
        completed_now = False

        def mutate(current: Optional[ProgressRecord], load: RecordLoader) -> List[ProgressRecord]:
            nonlocal completed_now
            completed_now = False
            if current is None and require_existing:
                raise ProgressNotFoundError(learner_id, topic.topic_id)
            record = current or ProgressRecord.initial(learner_id, topic)
            if day > record.max_accessible_day:
                raise AccessDeniedError(topic.topic_id, day, record.max_accessible_day)

            now = datetime.now(timezone.utc)
            scores = dict(record.scores)
            scores[day] = score

            if day == max_day and not record.completed:
                completed_now = True
                updated = record.evolve(
                    scores=scores,
                    current_day=max_day,
                    completed=True,
                    completed_at=now,
                    last_accessed_at=now,
                )
                return [updated, *self._chain_next(learner_id, topic, load, now)]

            updated = record.evolve(
                scores=scores,
                current_day=max(record.current_day, min(day + 1, max_day)),
                last_accessed_at=now,
            )
            return [updated]

        with self._locks.hold(learner_id, topic.topic_id):
            saved = self._store.transact(learner_id, topic.topic_id, mutate)

        updated_progress = saved[0]
        next_progress = saved[1] if len(saved) > 1 else None
        emit_event(
            "grammar_day_passed",
            learner_id=learner_id,
            topic_id=topic.topic_id,
            day=day,
            score=score,
            current_day=updated_progress.current_day,
        )
        if completed_now:
            logger.info(
                "Learner=%s completed topic=%s; next topic=%s",
                learner_id,
                topic.topic_id,
                next_progress.topic_id if next_progress else None,
            )
            emit_event(
                "grammar_topic_completed",
                learner_id=learner_id,
                topic_id=topic.topic_id,
                topic_name=topic.display_name,
                level=updated_progress.level,
                average_score=updated_progress.average_score,
                next_topic_id=next_progress.topic_id if next_progress else None,
            )
        return SubmissionResult(
            assessment=assessment,
            updated_progress=updated_progress,
            next_progress=next_progress,
            topic_completed=completed_now,
        )

    def _chain_next(
        self,
        learner_id: str,
        topic: Topic,
        load: RecordLoader,
        now: datetime,
    ) -> List[ProgressRecord]:
        try:
            next_topic = self._catalog.next_after(topic.topic_id)
        except CurriculumCompleteError:
            logger.info("Learner=%s finished the final topic %s", learner_id, topic.topic_id)
            return []
        if next_topic.topic_id == topic.topic_id:
            return []

        existing = load(next_topic.topic_id)
        if existing is None:
            return [ProgressRecord.initial(learner_id, next_topic)]
        return [
            existing.reset().evolve(
                language=next_topic.language,
                level=next_topic.level,
                last_accessed_at=now,
            )
        ]

    def _require_topic(self, topic_id: str) -> Topic:
        topic = self._catalog.topic_by_id(topic_id)
        if topic is None:
            raise TopicNotFoundError(topic_id)
        return topic

    def _current_record(self, records: Sequence[ProgressRecord]) -> ProgressRecord:
        incomplete = [record for record in records if not record.completed]
        if incomplete:
            return min(incomplete, key=self._catalog_position)
        return max(records, key=lambda record: _as_utc(record.last_accessed_at))

    def _catalog_position(self, record: ProgressRecord) -> Tuple[int, str]:
        topic = self._catalog.topic_by_id(record.topic_id)
        return (topic.order if topic else len(self._catalog.topics) + 1, record.topic_id)

    def _topic_lessons(
        self,
        topic: Topic,
        lessons: Sequence[LessonContent],
        progress: Optional[ProgressRecord],
    ) -> TopicLessons:
        scores = progress.scores if progress else {}
        return TopicLessons(
            topic_id=topic.topic_id,
            topic_name=topic.display_name,
            topic_name_en=topic.name,
            level=topic.level,
            days=[
                DayStatus(
                    day=lesson.day,
                    title=lesson.title,
                    is_completed=lesson.day in scores,
                    score=scores.get(lesson.day),
                )
                for lesson in lessons
            ],
        )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@lru_cache
def get_progression_engine() -> ProgressionEngine:
    settings = get_settings()
    return ProgressionEngine(
        get_catalog(),
        ProgressStore(),
        pass_threshold=settings.pass_threshold,
    )


__all__ = [
    "AvailableLessons",
    "BelowThresholdResult",
    "DayStatus",
    "HistoryEntry",
    "KeyedLocks",
    "Pagination",
    "ProgressHistory",
    "ProgressStats",
    "ProgressionEngine",
    "SubmissionResult",
    "TodaysLesson",
    "TopicLessons",
    "get_progression_engine",
]
