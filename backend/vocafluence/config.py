import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings

DEFAULT_CURRICULUM_PATH = Path(__file__).resolve().parent / "data" / "curriculum.json"


class Settings(BaseSettings):
    openai_api_key: Optional[str] = Field(None, alias="OPENAI_API_KEY")
    transcription_model: str = Field("whisper-1", alias="VOCAFLUENCE_TRANSCRIPTION_MODEL")
    transcription_timeout_seconds: float = Field(30.0, gt=0, alias="VOCAFLUENCE_TRANSCRIPTION_TIMEOUT")
    database_url: Optional[str] = Field(None, alias="VOCAFLUENCE_DATABASE_URL")
    database_pool_size: int = Field(10, alias="VOCAFLUENCE_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="VOCAFLUENCE_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="VOCAFLUENCE_DATABASE_ECHO")
    curriculum_path: Path = Field(DEFAULT_CURRICULUM_PATH, alias="VOCAFLUENCE_CURRICULUM_PATH")
    pass_threshold: int = Field(60, ge=0, le=100, alias="VOCAFLUENCE_PASS_THRESHOLD")
    curriculum_wraparound: bool = Field(True, alias="VOCAFLUENCE_CURRICULUM_WRAPAROUND")
    persistence_max_retries: int = Field(3, ge=0, alias="VOCAFLUENCE_PERSISTENCE_MAX_RETRIES")
    max_audio_bytes: int = Field(25 * 1024 * 1024, gt=0, alias="VOCAFLUENCE_MAX_AUDIO_BYTES")
    default_duration_seconds: float = Field(10.0, gt=0, alias="VOCAFLUENCE_DEFAULT_DURATION")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        populate_by_name = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid backend configuration: {exc}") from exc
