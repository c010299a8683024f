"""Grammar progress records and the persistence facade used by the progression engine."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple, TypeVar

from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .config import get_settings
from .db.session import session_scope
from .errors import PersistenceError
from .scoring import round_half_up

if TYPE_CHECKING:
    from .curriculum import Topic
    from .repositories.progress_records import ProgressRecordRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _repo() -> "ProgressRecordRepository":
    from .repositories.progress_records import progress_records as repository

    return repository


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProgressRecord(BaseModel):
    """Per-(learner, topic) progression state."""

    learner_id: str = Field(..., min_length=1)
    topic_id: str = Field(..., min_length=1)
    language: str = "french"
    level: str
    current_day: int = Field(default=1, ge=1)
    scores: Dict[int, int] = Field(default_factory=dict)
    completed: bool = False
    completed_at: Optional[datetime] = None
    last_accessed_at: datetime = Field(default_factory=_utcnow)
    created_at: Optional[datetime] = None
    version: Optional[int] = None

    @field_validator("scores")
    @classmethod
    def _scores_form_prefix(cls, value: Dict[int, int]) -> Dict[int, int]:
        days = sorted(value)
        if days != list(range(1, len(days) + 1)):
            raise ValueError(f"Day scores must cover days 1..N without gaps, got {days}.")
        for day in days:
            if not 0 <= value[day] <= 100:
                raise ValueError(f"Score for day {day} must be between 0 and 100.")
        return {day: value[day] for day in days}

    @classmethod
    def initial(cls, learner_id: str, topic: "Topic") -> "ProgressRecord":
        return cls(
            learner_id=learner_id,
            topic_id=topic.topic_id,
            language=topic.language,
            level=topic.level,
        )

    @property
    def max_accessible_day(self) -> int:
        return len(self.scores) + 1

    @property
    def average_score(self) -> int:
        if not self.scores:
            return 0
        return round_half_up(sum(self.scores.values()) / len(self.scores))

    def evolve(self, **changes: Any) -> "ProgressRecord":
        """Return a validated copy with ``changes`` applied."""
        payload = self.model_dump()
        payload.update(changes)
        return type(self).model_validate(payload)

    def reset(self) -> "ProgressRecord":
        return self.evolve(current_day=1, scores={}, completed=False, completed_at=None)


class ActivityEntry(BaseModel):
    event_type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    actor: Optional[str] = None
    created_at: datetime


RecordLoader = Callable[[str], Optional[ProgressRecord]]
Mutation = Callable[[Optional[ProgressRecord], RecordLoader], List[ProgressRecord]]


class ProgressStore:
    """Durable storage for progress records keyed by (learner_id, topic_id).

    Every write runs inside one database transaction. ``transact`` applies a
    read-modify-write with optimistic version checks and retries the whole
    cycle when another writer won the race.
    """

    def __init__(
        self,
        repository: Optional["ProgressRecordRepository"] = None,
        *,
        max_retries: Optional[int] = None,
    ) -> None:
        self._repository = repository
        self._max_retries = get_settings().persistence_max_retries if max_retries is None else max_retries

    @property
    def repository(self) -> "ProgressRecordRepository":
        return self._repository or _repo()

    def get(self, learner_id: str, topic_id: str) -> Optional[ProgressRecord]:
        with session_scope(commit=False) as session:
            return self.repository.get(session, learner_id, topic_id)

    def list_by_learner(self, learner_id: str) -> List[ProgressRecord]:
        with session_scope(commit=False) as session:
            return self.repository.list_by_learner(session, learner_id)

    def count_completed_topics(self, learner_id: str) -> int:
        with session_scope(commit=False) as session:
            return self.repository.count_completed(session, learner_id)

    def list_completed(self, learner_id: str, *, skip: int = 0, limit: int = 10) -> Tuple[List[ProgressRecord], int]:
        with session_scope(commit=False) as session:
            return self.repository.list_completed(session, learner_id, skip=skip, limit=limit)

    def upsert(self, record: ProgressRecord) -> ProgressRecord:
        return self._run("upsert", lambda session: self.repository.save(session, record))

    def touch(self, learner_id: str, topic_id: str) -> Optional[ProgressRecord]:
        return self._run("touch", lambda session: self.repository.touch(session, learner_id, topic_id))

    def transact(self, learner_id: str, topic_id: str, mutate: Mutation) -> List[ProgressRecord]:
        """Atomically rewrite the record for ``(learner_id, topic_id)``.

        ``mutate`` receives the current record (or ``None``) and a loader for
        other topics of the same learner, and returns every record to write.
        Nothing is committed unless all of them are stored.
        """

        def _apply(session: Session) -> List[ProgressRecord]:
            current = self.repository.get(session, learner_id, topic_id)

            def _load(other_topic_id: str) -> Optional[ProgressRecord]:
                return self.repository.get(session, learner_id, other_topic_id)

            return [self.repository.save(session, record) for record in mutate(current, _load)]

        return self._run("transact", _apply)

    def record_activity(
        self,
        learner_id: str,
        event_type: str,
        payload: Dict[str, Any],
        *,
        actor: str = "system",
    ) -> None:
        self._run(
            "record_activity",
            lambda session: self.repository.record_activity(session, learner_id, event_type, payload, actor=actor),
        )

    def recent_activity(
        self,
        learner_id: str,
        *,
        event_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[ActivityEntry]:
        with session_scope(commit=False) as session:
            return self.repository.recent_activity(session, learner_id, event_type=event_type, limit=limit)

    def _run(self, operation: str, work: Callable[[Session], T]) -> T:
        attempts = self._max_retries + 1
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                with session_scope() as session:
                    return work(session)
            except (StaleDataError, IntegrityError) as exc:
                last_error = exc
                logger.warning(
                    "Concurrent progress write during %s (attempt %d/%d): %s",
                    operation,
                    attempt,
                    attempts,
                    exc,
                )
            except OperationalError as exc:
                logger.exception("Database unavailable during %s", operation)
                raise PersistenceError(f"Progress store unavailable during {operation}.") from exc
            except SQLAlchemyError as exc:
                logger.exception("Progress write failed during %s", operation)
                raise PersistenceError(f"Progress write failed during {operation}.") from exc
        raise PersistenceError(
            f"Progress write during {operation} kept conflicting after {attempts} attempts."
        ) from last_error


__all__ = [
    "ActivityEntry",
    "Mutation",
    "ProgressRecord",
    "ProgressStore",
    "RecordLoader",
]
