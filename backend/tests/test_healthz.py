from __future__ import annotations

import os

from fastapi.testclient import TestClient

os.environ.setdefault("VOCAFLUENCE_DATABASE_URL", "sqlite://")

from vocafluence.config import get_settings  # noqa: E402
from vocafluence.db.session import dispose_engine  # noqa: E402
from vocafluence.main import app  # noqa: E402


def teardown_module() -> None:  # pragma: no cover - test cleanup
    dispose_engine()


def test_health_endpoint_reports_threshold() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "pass_threshold": get_settings().pass_threshold}


def test_database_health_endpoint_success(monkeypatch) -> None:
    monkeypatch.setenv("VOCAFLUENCE_DATABASE_URL", "sqlite://")
    get_settings.cache_clear()
    dispose_engine()
    client = TestClient(app)
    response = client.get("/healthz/database")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["dialect"] == "sqlite"
    assert "pool" in payload


def test_database_health_endpoint_failure(monkeypatch) -> None:
    client = TestClient(app)

    def raise_runtime_error():
        raise RuntimeError("missing database url")

    monkeypatch.setattr("vocafluence.main.get_engine", raise_runtime_error)
    response = client.get("/healthz/database")
    assert response.status_code == 503
    assert response.json()["detail"] == "missing database url"
