"""Telemetry listener that persists topic completions as learner activity."""

from __future__ import annotations

import logging
from typing import Set

from .progress import ProgressStore
from .telemetry import TelemetryEvent, register_listener

logger = logging.getLogger(__name__)

_PERSISTED_EVENTS: Set[str] = {
    "grammar_topic_completed",
}

_ACTIVITY_FIELDS = ("topic_id", "topic_name", "level", "average_score", "next_topic_id")


def _persist_event(event: TelemetryEvent) -> None:
    if event.name not in _PERSISTED_EVENTS:
        return
    learner_id = event.payload.get("learner_id")
    if not isinstance(learner_id, str) or not learner_id.strip():
        return
    payload = {key: event.payload.get(key) for key in _ACTIVITY_FIELDS if key in event.payload}
    try:
        ProgressStore().record_activity(learner_id, event.name, payload, actor="telemetry")
    except Exception:  # noqa: BLE001
        logger.exception("Failed to persist telemetry event for learner_id=%s", learner_id)


def install() -> None:
    register_listener(_persist_event)


install()

__all__ = ["_PERSISTED_EVENTS", "install"]
