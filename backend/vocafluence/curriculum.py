"""Read-only grammar curriculum: ordered topics and their per-day lesson content."""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import get_settings
from .errors import CurriculumCompleteError, CurriculumError

logger = logging.getLogger(__name__)

Level = Literal["A1", "A2", "B1", "B2", "C1"]


class Topic(BaseModel):
    model_config = ConfigDict(frozen=True)

    topic_id: str = Field(..., min_length=1)
    language: str = "french"
    level: Level
    order: int = Field(..., ge=1)
    name: str
    native_name: str = ""

    @property
    def display_name(self) -> str:
        return self.native_name or self.name


class LessonContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    topic_id: str
    day: int = Field(..., ge=1)
    title: str
    explanation: str
    example_sentences: List[str] = Field(default_factory=list)

    @property
    def reference_text(self) -> str:
        """Text the learner reads aloud: explanation followed by every example sentence."""
        return " ".join([self.explanation, *self.example_sentences]).strip()


class CurriculumDocument(BaseModel):
    version: int = 1
    topics: List[Topic]
    lessons: List[LessonContent] = Field(default_factory=list)


class CurriculumCatalog:
    """Lookup helpers over a validated curriculum document."""

    def __init__(
        self,
        topics: Iterable[Topic],
        lessons: Iterable[LessonContent] = (),
        *,
        wraparound: bool = True,
        version: int = 1,
    ) -> None:
        self._topics = sorted(topics, key=lambda topic: topic.order)
        self._wraparound = wraparound
        self.version = version
        if not self._topics:
            raise CurriculumError("Curriculum must define at least one topic.")

        self._by_id: Dict[str, Topic] = {}
        self._by_order: Dict[int, Topic] = {}
        for topic in self._topics:
            if topic.topic_id in self._by_id:
                raise CurriculumError(f"Duplicate topic id '{topic.topic_id}'.")
            if topic.order in self._by_order:
                raise CurriculumError(f"Duplicate topic order {topic.order}.")
            self._by_id[topic.topic_id] = topic
            self._by_order[topic.order] = topic

        expected_orders = list(range(1, len(self._topics) + 1))
        if [topic.order for topic in self._topics] != expected_orders:
            raise CurriculumError("Topic orders must run from 1 without gaps.")

        grouped: Dict[str, Dict[int, LessonContent]] = defaultdict(dict)
        for lesson in lessons:
            if lesson.topic_id not in self._by_id:
                raise CurriculumError(f"Lesson references unknown topic '{lesson.topic_id}'.")
            if lesson.day in grouped[lesson.topic_id]:
                raise CurriculumError(f"Duplicate lesson for topic '{lesson.topic_id}' day {lesson.day}.")
            grouped[lesson.topic_id][lesson.day] = lesson

        for topic_id, days in grouped.items():
            if sorted(days) != list(range(1, len(days) + 1)):
                raise CurriculumError(f"Lesson days for topic '{topic_id}' must run from 1 without gaps.")
        self._lessons: Dict[str, List[LessonContent]] = {
            topic_id: [days[day] for day in sorted(days)] for topic_id, days in grouped.items()
        }

    @property
    def topics(self) -> List[Topic]:
        return list(self._topics)

    @property
    def wraparound(self) -> bool:
        return self._wraparound

    def first_topic(self) -> Topic:
        return self._topics[0]

    def topic_by_id(self, topic_id: str) -> Optional[Topic]:
        return self._by_id.get(topic_id)

    def next_after(self, topic_id: str) -> Topic:
        """Return the topic following ``topic_id``.

        After the last topic the curriculum restarts at order 1 unless
        wraparound is disabled, in which case :class:`CurriculumCompleteError`
        is raised. Unknown ids resolve to the first topic.
        """
        current = self._by_id.get(topic_id)
        if current is None:
            return self.first_topic()
        following = self._by_order.get(current.order + 1)
        if following is not None:
            return following
        if not self._wraparound:
            raise CurriculumCompleteError(topic_id)
        return self.first_topic()

    def max_day(self, topic_id: str) -> int:
        return len(self._lessons.get(topic_id, []))

    def lessons_for(self, topic_id: str) -> List[LessonContent]:
        return list(self._lessons.get(topic_id, []))

    def lesson(self, topic_id: str, day: int) -> Optional[LessonContent]:
        lessons = self._lessons.get(topic_id, [])
        if 1 <= day <= len(lessons):
            return lessons[day - 1]
        return None

    def topics_with_content(self) -> List[Topic]:
        return [topic for topic in self._topics if topic.topic_id in self._lessons]


def parse_catalog(payload: object, *, wraparound: bool = True) -> CurriculumCatalog:
    try:
        document = CurriculumDocument.model_validate(payload)
    except ValidationError as exc:
        raise CurriculumError(f"Invalid curriculum document: {exc}") from exc
    return CurriculumCatalog(
        document.topics,
        document.lessons,
        wraparound=wraparound,
        version=document.version,
    )


def load_catalog(path: Path, *, wraparound: bool = True) -> CurriculumCatalog:
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise CurriculumError(f"Unable to read curriculum from {path}: {exc}") from exc
    catalog = parse_catalog(payload, wraparound=wraparound)
    logger.info(
        "Loaded curriculum v%s from %s (%d topics, %d with lessons)",
        catalog.version,
        path,
        len(catalog.topics),
        len(catalog.topics_with_content()),
    )
    return catalog


@lru_cache
def get_catalog() -> CurriculumCatalog:
    settings = get_settings()
    return load_catalog(settings.curriculum_path, wraparound=settings.curriculum_wraparound)


__all__ = [
    "CurriculumCatalog",
    "CurriculumDocument",
    "LessonContent",
    "Level",
    "Topic",
    "get_catalog",
    "load_catalog",
    "parse_catalog",
]
