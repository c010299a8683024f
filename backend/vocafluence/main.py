import logging
from typing import Any, Dict

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from .config import Settings, get_settings
from .curriculum import get_catalog
from .db.session import get_engine, init_database
from .grammar_routes import router as grammar_router
from .logging_config import configure_logging
from . import telemetry_pipeline  # noqa: F401  # registers activity persistence


configure_logging()
logger = logging.getLogger(__name__)
app = FastAPI(title="VocaFluence Grammar Coach", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(grammar_router)

settings_snapshot = get_settings()
logger.info("Transcription model: %s", settings_snapshot.transcription_model)
logger.info("OpenAI API key configured: %s", bool(settings_snapshot.openai_api_key))


@app.on_event("startup")
def _prepare_storage() -> None:
    try:
        init_database()
    except RuntimeError as exc:
        logger.warning("Database not initialised at startup: %s", exc)
    catalog = get_catalog()
    logger.info("Serving %d curriculum topics (wraparound=%s)", len(catalog.topics), catalog.wraparound)


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    return {"status": "ok", "pass_threshold": settings.pass_threshold}


@app.get("/healthz/database")
def database_health() -> Dict[str, Any]:
    try:
        engine = get_engine()
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception as exc:  # noqa: BLE001
        logger.exception("Database health check failed")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {
        "status": "ok",
        "dialect": engine.dialect.name,
        "pool": engine.pool.status(),
    }
