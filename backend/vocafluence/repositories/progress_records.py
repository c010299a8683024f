"""Database-backed grammar progress repository."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..db.models import GrammarProgressModel, PersistenceAuditEventModel
from ..errors import InvalidInputError
from ..progress import ActivityEntry, ProgressRecord

MAX_ACTIVITY_ENTRIES = 200


def normalize_learner_id(learner_id: str) -> str:
    normalized = (learner_id or "").strip()
    if not normalized:
        raise InvalidInputError("Learner id cannot be empty.")
    return normalized


class ProgressRecordRepository:
    """Session-scoped queries and writes for ``grammar_progress`` rows."""

    def get(self, session: Session, learner_id: str, topic_id: str) -> Optional[ProgressRecord]:
        model = self._get_model(session, learner_id, topic_id)
        if model is None:
            return None
        return self._to_domain(model)

    def list_by_learner(self, session: Session, learner_id: str) -> List[ProgressRecord]:
        normalized = normalize_learner_id(learner_id)
        stmt = (
            select(GrammarProgressModel)
            .where(GrammarProgressModel.learner_id == normalized)
            .order_by(GrammarProgressModel.created_at.asc(), GrammarProgressModel.id.asc())
        )
        return [self._to_domain(model) for model in session.execute(stmt).scalars().all()]

    def count_completed(self, session: Session, learner_id: str) -> int:
        normalized = normalize_learner_id(learner_id)
        stmt = select(func.count(GrammarProgressModel.id)).where(
            GrammarProgressModel.learner_id == normalized,
            GrammarProgressModel.completed.is_(True),
        )
        return int(session.execute(stmt).scalar_one())

    def list_completed(
        self,
        session: Session,
        learner_id: str,
        *,
        skip: int = 0,
        limit: int = 10,
    ) -> Tuple[List[ProgressRecord], int]:
        normalized = normalize_learner_id(learner_id)
        stmt = (
            select(GrammarProgressModel)
            .where(
                GrammarProgressModel.learner_id == normalized,
                GrammarProgressModel.completed.is_(True),
            )
            .order_by(GrammarProgressModel.completed_at.desc(), GrammarProgressModel.id.asc())
            .offset(max(skip, 0))
            .limit(max(limit, 1))
        )
        records = [self._to_domain(model) for model in session.execute(stmt).scalars().all()]
        return records, self.count_completed(session, normalized)

    def save(self, session: Session, record: ProgressRecord, *, actor: str = "system") -> ProgressRecord:
        """Insert or conditionally update ``record``.

        Updates are applied only when the stored version still matches the
        version the record was read at; otherwise :class:`StaleDataError` is
        raised so the caller can retry against fresh state.
        """
        model = self._get_model(session, record.learner_id, record.topic_id)
        if model is None:
            if record.version is not None:
                raise StaleDataError(
                    f"Progress for '{record.learner_id}' on '{record.topic_id}' disappeared during update."
                )
            model = GrammarProgressModel(
                learner_id=normalize_learner_id(record.learner_id),
                topic_id=record.topic_id,
            )
            session.add(model)
        elif record.version is None or model.version != record.version:
            raise StaleDataError(
                f"Progress for '{record.learner_id}' on '{record.topic_id}' changed concurrently "
                f"(expected version {record.version}, found {model.version})."
            )

        self._apply(model, record)
        session.flush()
        self._record_audit(
            session,
            model.learner_id,
            "progress_upsert",
            {
                "topic_id": model.topic_id,
                "current_day": model.current_day,
                "completed": model.completed,
                "version": model.version,
            },
            actor=actor,
        )
        return self._to_domain(model)

    def touch(self, session: Session, learner_id: str, topic_id: str) -> Optional[ProgressRecord]:
        model = self._get_model(session, learner_id, topic_id)
        if model is None:
            return None
        model.last_accessed_at = datetime.now(timezone.utc)
        session.flush()
        return self._to_domain(model)

    def record_activity(
        self,
        session: Session,
        learner_id: str,
        event_type: str,
        payload: Dict[str, Any],
        *,
        actor: str = "system",
    ) -> None:
        normalized = normalize_learner_id(learner_id)
        self._record_audit(session, normalized, event_type, payload, actor=actor)
        session.flush()

    def recent_activity(
        self,
        session: Session,
        learner_id: str,
        *,
        event_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[ActivityEntry]:
        normalized = normalize_learner_id(learner_id)
        stmt = select(PersistenceAuditEventModel).where(PersistenceAuditEventModel.learner_id == normalized)
        if event_type:
            stmt = stmt.where(PersistenceAuditEventModel.event_type == event_type)
        stmt = stmt.order_by(PersistenceAuditEventModel.created_at.desc()).limit(
            max(1, min(limit, MAX_ACTIVITY_ENTRIES))
        )
        return [
            ActivityEntry(
                event_type=event.event_type,
                payload=dict(event.payload or {}),
                actor=event.actor,
                created_at=event.created_at,
            )
            for event in session.execute(stmt).scalars().all()
        ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_model(self, session: Session, learner_id: str, topic_id: str) -> Optional[GrammarProgressModel]:
        normalized = normalize_learner_id(learner_id)
        stmt = select(GrammarProgressModel).where(
            GrammarProgressModel.learner_id == normalized,
            GrammarProgressModel.topic_id == topic_id,
        )
        return session.execute(stmt).scalar_one_or_none()

    def _apply(self, model: GrammarProgressModel, record: ProgressRecord) -> None:
        model.language = record.language
        model.level = record.level
        model.current_day = record.current_day
        model.scores = {str(day): int(score) for day, score in sorted(record.scores.items())}
        model.completed = record.completed
        model.completed_at = record.completed_at
        model.last_accessed_at = record.last_accessed_at or datetime.now(timezone.utc)

    def _to_domain(self, model: GrammarProgressModel) -> ProgressRecord:
        return ProgressRecord.model_validate(
            {
                "learner_id": model.learner_id,
                "topic_id": model.topic_id,
                "language": model.language,
                "level": model.level,
                "current_day": model.current_day,
                "scores": {int(day): int(score) for day, score in (model.scores or {}).items()},
                "completed": model.completed,
                "completed_at": model.completed_at,
                "last_accessed_at": model.last_accessed_at,
                "created_at": model.created_at,
                "version": model.version,
            }
        )

    def _record_audit(
        self,
        session: Session,
        learner_id: Optional[str],
        event_type: str,
        payload: Dict[str, Any],
        *,
        actor: str = "system",
    ) -> None:
        session.add(
            PersistenceAuditEventModel(
                learner_id=learner_id,
                event_type=event_type,
                payload=payload,
                actor=actor,
            )
        )


progress_records = ProgressRecordRepository()

__all__ = ["ProgressRecordRepository", "normalize_learner_id", "progress_records"]
