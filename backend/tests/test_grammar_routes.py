"""HTTP surface for grammar lessons and reading submissions."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from vocafluence.assessment_result import Transcription
from vocafluence.config import get_settings
from vocafluence.curriculum import get_catalog, parse_catalog
from vocafluence.db.session import dispose_engine, init_database
from vocafluence.errors import TranscriptionError
from vocafluence.main import app
from vocafluence.progress import ProgressStore
from vocafluence.progression import ProgressionEngine, get_progression_engine
from vocafluence.transcription import get_transcription_adapter

LEARNER = "lea"
READING_ONE = "Je suis dentiste Tu es professeur"
READING_TWO = "Il est médecin Nous sommes amis"


class FakeAdapter:
    def __init__(self, transcript: str = "", error: TranscriptionError | None = None) -> None:
        self.transcript = transcript
        self.error = error
        self.calls: list[tuple[int, str]] = []

    async def transcribe(self, audio: bytes, language_hint: str) -> Transcription:
        self.calls.append((len(audio), language_hint))
        if self.error is not None:
            raise self.error
        return Transcription(transcript=self.transcript, confidence=0.9)


def _engine() -> ProgressionEngine:
    catalog = parse_catalog(
        {
            "topics": [
                {"topic_id": "etre", "level": "A1", "order": 1, "name": "Verb To Be", "native_name": "Le verbe être"},
                {"topic_id": "avoir", "level": "A1", "order": 2, "name": "Verb To Have"},
            ],
            "lessons": [
                {"topic_id": "etre", "day": 1, "title": "Je suis", "explanation": "Je suis dentiste", "example_sentences": ["Tu es professeur"]},
                {"topic_id": "etre", "day": 2, "title": "Il est", "explanation": "Il est médecin", "example_sentences": ["Nous sommes amis"]},
            ],
        }
    )
    return ProgressionEngine(catalog, ProgressStore(), pass_threshold=60)


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter(transcript=READING_ONE)


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, adapter: FakeAdapter) -> Iterator[TestClient]:
    monkeypatch.setenv("VOCAFLUENCE_DATABASE_URL", f"sqlite:///{tmp_path / 'routes.db'}")
    monkeypatch.setenv("VOCAFLUENCE_MAX_AUDIO_BYTES", "64")
    get_settings.cache_clear()
    get_catalog.cache_clear()
    dispose_engine()
    init_database()
    engine = _engine()
    app.dependency_overrides[get_progression_engine] = lambda: engine
    app.dependency_overrides[get_transcription_adapter] = lambda: adapter
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        get_settings.cache_clear()
        dispose_engine()


def _save_reading(client: TestClient, day: int, *, audio: bytes = b"fake-audio", content_type: str = "audio/webm", **form: str):
    data = {"topic_id": "etre", "day": str(day), "duration": "2", **form}
    return client.post(
        f"/api/grammar/{LEARNER}/progress/save-reading",
        data=data,
        files={"audio": ("reading.webm", audio, content_type)},
    )


def test_topics_endpoint_lists_catalog(client: TestClient) -> None:
    response = client.get("/api/grammar/topics")
    assert response.status_code == 200
    payload = response.json()
    assert [topic["topic_id"] for topic in payload["topics"]] == ["etre", "avoir"]
    assert payload["wraparound"] is True


def test_today_initialises_progress(client: TestClient) -> None:
    response = client.get(f"/api/grammar/{LEARNER}/today")
    assert response.status_code == 200
    payload = response.json()
    assert payload["progress"]["topic_id"] == "etre"
    assert payload["progress"]["current_day"] == 1
    assert payload["lesson"]["title"] == "Je suis"
    assert payload["topic"]["native_name"] == "Le verbe être"


def test_locked_lesson_returns_unlocked_days(client: TestClient) -> None:
    response = client.get(f"/api/grammar/{LEARNER}/lesson/etre/2")
    assert response.status_code == 403
    detail = response.json()["detail"]
    assert detail["unlocked_days"] == 1
    assert "Day 1" in detail["message"]

    assert client.get(f"/api/grammar/{LEARNER}/lesson/etre/1").status_code == 200
    assert client.get(f"/api/grammar/{LEARNER}/lesson/etre/0").status_code == 400
    assert client.get(f"/api/grammar/{LEARNER}/lesson/nope/1").status_code == 404
    assert client.get(f"/api/grammar/{LEARNER}/lesson/avoir/1").status_code == 404


def test_passing_reading_advances_progress(client: TestClient, adapter: FakeAdapter) -> None:
    response = _save_reading(client, 1)

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["score"] == 100
    assert payload["transcript"] == READING_ONE
    assert payload["progress"]["current_day"] == 2
    assert payload["progress"]["scores"] == {"1": 100}
    assert adapter.calls == [(len(b"fake-audio"), "french")]

    lesson = client.get(f"/api/grammar/{LEARNER}/lesson/etre/2")
    assert lesson.status_code == 200
    assert lesson.json()["lesson"]["title"] == "Il est"


def test_final_reading_completes_topic(client: TestClient, adapter: FakeAdapter) -> None:
    assert _save_reading(client, 1).status_code == 200
    adapter.transcript = READING_TWO

    response = _save_reading(client, 2)

    payload = response.json()
    assert response.status_code == 200
    assert payload["topic_completed"] is True
    assert payload["next_progress"]["topic_id"] == "avoir"

    stats = client.get(f"/api/grammar/{LEARNER}/stats").json()
    assert stats["total_completed"] == 1
    assert stats["completed_by_level"] == {"A1": 1}

    history = client.get(f"/api/grammar/{LEARNER}/history", params={"skip": 0, "limit": 5}).json()
    assert history["pagination"]["total"] == 1
    assert history["history"][0]["topic_name"] == "Le verbe être"


def test_low_score_returns_details(client: TestClient, adapter: FakeAdapter) -> None:
    adapter.transcript = "euh"

    response = _save_reading(client, 1)

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["success"] is False
    assert detail["minimum_required"] == 60
    assert detail["score"] < 60
    assert len(detail["feedback"]) == 3
    assert ProgressStore().get(LEARNER, "etre") is None


def test_reading_rejects_bad_uploads(client: TestClient) -> None:
    assert _save_reading(client, 1, content_type="text/plain").status_code == 400
    assert _save_reading(client, 1, audio=b"x" * 65).status_code == 413
    assert _save_reading(client, 2).status_code == 403
    assert _save_reading(client, 1, duration="0").status_code == 400


def test_transcription_failures_map_to_gateway_errors(client: TestClient, adapter: FakeAdapter) -> None:
    adapter.error = TranscriptionError("timeout")
    response = _save_reading(client, 1)
    assert response.status_code == 504
    assert response.json()["detail"]["reason"] == "timeout"

    adapter.error = TranscriptionError("rate_limited")
    assert _save_reading(client, 1).status_code == 429

    adapter.error = TranscriptionError("provider_error")
    assert _save_reading(client, 1).status_code == 502


def test_missing_api_key_is_reported_as_unauthorized(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "")
    get_settings.cache_clear()
    get_transcription_adapter.cache_clear()
    app.dependency_overrides.pop(get_transcription_adapter, None)
    try:
        assert _save_reading(client, 1, content_type="text/plain").status_code == 400
        response = _save_reading(client, 1)
        assert response.status_code == 401
        assert response.json()["detail"]["reason"] == "unauthorized"
        assert client.get(f"/api/grammar/{LEARNER}/available").json()["user_progress"] is None
    finally:
        get_transcription_adapter.cache_clear()


def test_complete_exam_endpoint(client: TestClient) -> None:
    missing = client.post(f"/api/grammar/{LEARNER}/progress/complete-exam", json={"topic_id": "etre", "score": 80})
    assert missing.status_code == 404

    assert _save_reading(client, 1).status_code == 200
    response = client.post(f"/api/grammar/{LEARNER}/progress/complete-exam", json={"topic_id": "etre", "score": 80})

    assert response.status_code == 200
    payload = response.json()
    assert payload["completed_topic"]["completed"] is True
    assert payload["completed_topic"]["scores"] == {"1": 100, "2": 80}
    assert payload["next_topic"]["topic_id"] == "avoir"

    invalid = client.post(f"/api/grammar/{LEARNER}/progress/complete-exam", json={"topic_id": "etre", "score": 150})
    assert invalid.status_code == 422


def test_available_lessons_endpoint(client: TestClient) -> None:
    payload = client.get(f"/api/grammar/{LEARNER}/available").json()
    assert payload["user_progress"] is None
    assert payload["max_accessible_day"] == 1
    assert payload["lessons"][0]["days"][0]["is_completed"] is False
