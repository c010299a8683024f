"""Grammar practice REST endpoints: lessons, reading submissions, exams and history."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, NoReturn, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from pydantic import BaseModel, Field

from .assessment_result import AssessmentResult
from .config import Settings, get_settings
from .curriculum import LessonContent, Topic
from .errors import (
    AccessDeniedError,
    GrammarCoachError,
    InvalidInputError,
    LessonNotFoundError,
    PersistenceError,
    ProgressNotFoundError,
    TopicNotFoundError,
    TranscriptionError,
)
from .practice import ReadingSubmission, submit_reading
from .progress import ProgressRecord
from .progression import (
    AvailableLessons,
    BelowThresholdResult,
    ProgressHistory,
    ProgressionEngine,
    ProgressStats,
    TodaysLesson,
    get_progression_engine,
)
from .transcription import TranscriptionAdapter, get_transcription_adapter

router = APIRouter(prefix="/api/grammar", tags=["grammar"])
logger = logging.getLogger(__name__)

_TRANSCRIPTION_STATUS = {
    "rate_limited": status.HTTP_429_TOO_MANY_REQUESTS,
    "invalid_audio": status.HTTP_400_BAD_REQUEST,
    "timeout": status.HTTP_504_GATEWAY_TIMEOUT,
    "unauthorized": status.HTTP_401_UNAUTHORIZED,
    "provider_error": status.HTTP_502_BAD_GATEWAY,
}


class TopicCatalogResponse(BaseModel):
    topics: List[Topic]
    wraparound: bool


class LessonResponse(BaseModel):
    lesson: LessonContent
    progress: Optional[ProgressRecord] = None


class ReadingResultResponse(BaseModel):
    success: bool = True
    message: str
    score: int
    accuracy: int
    fluency: int
    words_per_minute: int
    feedback: List[str]
    transcript: str
    progress: ProgressRecord
    next_progress: Optional[ProgressRecord] = None
    topic_completed: bool = False


class ExamCompletionRequest(BaseModel):
    topic_id: str = Field(..., min_length=1)
    score: float = Field(..., ge=0, le=100)


class ExamCompletionResponse(BaseModel):
    success: bool = True
    message: str = "Exam completed successfully"
    completed_topic: ProgressRecord
    next_topic: Optional[ProgressRecord] = None


def _raise_http(exc: GrammarCoachError) -> NoReturn:
    if isinstance(exc, AccessDeniedError):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": str(exc), "unlocked_days": exc.max_accessible_day},
        ) from exc
    if isinstance(exc, (TopicNotFoundError, LessonNotFoundError, ProgressNotFoundError)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, InvalidInputError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, TranscriptionError):
        raise HTTPException(
            status_code=_TRANSCRIPTION_STATUS.get(exc.reason, status.HTTP_502_BAD_GATEWAY),
            detail={"message": "Audio evaluation failed.", "reason": exc.reason},
        ) from exc
    if isinstance(exc, PersistenceError):
        logger.exception("Progress persistence failed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Unable to save progress. Try again shortly.",
        ) from exc
    logger.exception("Unhandled grammar coach error")
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc


def _below_threshold_detail(result: BelowThresholdResult) -> Dict[str, Any]:
    return {
        "success": False,
        "message": (
            f"Score too low ({result.score}/100). You need {result.minimum_required}+ to proceed. "
            "Please try again."
        ),
        "score": result.score,
        "accuracy": result.accuracy,
        "fluency": result.fluency,
        "feedback": result.feedback_comments,
        "minimum_required": result.minimum_required,
    }


@router.get("/topics", response_model=TopicCatalogResponse, status_code=status.HTTP_200_OK)
def list_topics(engine: ProgressionEngine = Depends(get_progression_engine)) -> TopicCatalogResponse:
    return TopicCatalogResponse(topics=engine.catalog.topics, wraparound=engine.catalog.wraparound)


@router.get("/{learner_id}/today", response_model=TodaysLesson, status_code=status.HTTP_200_OK)
def get_todays_lesson(
    learner_id: str,
    engine: ProgressionEngine = Depends(get_progression_engine),
) -> TodaysLesson:
    try:
        today = engine.todays_lesson(learner_id)
    except GrammarCoachError as exc:
        _raise_http(exc)
    if today.lesson is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "message": "Lesson content not yet created for this topic.",
                "progress": today.progress.model_dump(mode="json"),
            },
        )
    return today


@router.get(
    "/{learner_id}/lesson/{topic_id}/{day}",
    response_model=LessonResponse,
    status_code=status.HTTP_200_OK,
)
def get_lesson(
    learner_id: str,
    topic_id: str,
    day: int,
    engine: ProgressionEngine = Depends(get_progression_engine),
) -> LessonResponse:
    try:
        lesson = engine.resolve_accessible_day(learner_id, topic_id, day)
        progress = engine.progress_for(learner_id, topic_id)
    except GrammarCoachError as exc:
        _raise_http(exc)
    return LessonResponse(lesson=lesson, progress=progress)


@router.get("/{learner_id}/available", response_model=AvailableLessons, status_code=status.HTTP_200_OK)
def get_available_lessons(
    learner_id: str,
    engine: ProgressionEngine = Depends(get_progression_engine),
) -> AvailableLessons:
    try:
        return engine.available_lessons(learner_id)
    except GrammarCoachError as exc:
        _raise_http(exc)


@router.post(
    "/{learner_id}/progress/save-reading",
    response_model=ReadingResultResponse,
    status_code=status.HTTP_200_OK,
)
async def save_reading(
    learner_id: str,
    topic_id: str = Form(..., min_length=1),
    day: int = Form(...),
    duration: Optional[float] = Form(None),
    audio: UploadFile = File(...),
    engine: ProgressionEngine = Depends(get_progression_engine),
    adapter: TranscriptionAdapter = Depends(get_transcription_adapter),
    settings: Settings = Depends(get_settings),
) -> ReadingResultResponse:
    content_type = (audio.content_type or "").lower()
    if not content_type.startswith("audio/"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only audio files are allowed.",
        )
    payload = await audio.read(settings.max_audio_bytes + 1)
    if not payload:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Audio file is required.")
    if len(payload) > settings.max_audio_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Audio file too large (max {settings.max_audio_bytes} bytes).",
        )

    submission = ReadingSubmission(
        learner_id=learner_id,
        topic_id=topic_id,
        day=day,
        audio=payload,
        duration_seconds=duration if duration is not None else settings.default_duration_seconds,
    )
    try:
        outcome = await submit_reading(
            engine,
            adapter,
            submission,
            timeout_seconds=settings.transcription_timeout_seconds,
        )
    except GrammarCoachError as exc:
        _raise_http(exc)

    result = outcome.result
    if isinstance(result, BelowThresholdResult):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_below_threshold_detail(result))

    assessment: AssessmentResult = result.assessment  # type: ignore[assignment]
    if result.topic_completed:
        message = f"Excellent! Score: {assessment.score}/100. Topic completed!"
    else:
        message = f"Excellent! Score: {assessment.score}/100. Moving to next lesson..."
    return ReadingResultResponse(
        message=message,
        score=assessment.score,
        accuracy=assessment.accuracy,
        fluency=assessment.fluency,
        words_per_minute=assessment.words_per_minute,
        feedback=list(assessment.feedback_comments),
        transcript=outcome.transcription.transcript,
        progress=result.updated_progress,
        next_progress=result.next_progress,
        topic_completed=result.topic_completed,
    )


@router.post(
    "/{learner_id}/progress/complete-exam",
    response_model=ExamCompletionResponse,
    status_code=status.HTTP_200_OK,
)
def complete_exam(
    learner_id: str,
    request: ExamCompletionRequest,
    engine: ProgressionEngine = Depends(get_progression_engine),
) -> ExamCompletionResponse:
    try:
        result = engine.complete_final_exam(learner_id, request.topic_id, request.score)
    except GrammarCoachError as exc:
        _raise_http(exc)
    return ExamCompletionResponse(
        completed_topic=result.updated_progress,
        next_topic=result.next_progress,
    )


@router.get("/{learner_id}/stats", response_model=ProgressStats, status_code=status.HTTP_200_OK)
def get_stats(
    learner_id: str,
    engine: ProgressionEngine = Depends(get_progression_engine),
) -> ProgressStats:
    try:
        return engine.stats(learner_id)
    except GrammarCoachError as exc:
        _raise_http(exc)


@router.get("/{learner_id}/history", response_model=ProgressHistory, status_code=status.HTTP_200_OK)
def get_history(
    learner_id: str,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=10, ge=1, le=100),
    engine: ProgressionEngine = Depends(get_progression_engine),
) -> ProgressHistory:
    try:
        return engine.history(learner_id, skip=skip, limit=limit)
    except GrammarCoachError as exc:
        _raise_http(exc)


__all__ = ["router"]
