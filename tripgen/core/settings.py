import logging
from pathlib import Path
from typing import Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


PROJECT_ROOT = Path(__file__).resolve().parents[2]
ROOT_ENV = PROJECT_ROOT / ".env"
ROOT_ENV_LOCAL = PROJECT_ROOT / ".env.local"


class Settings(BaseSettings):
    """
    tripgen - Global Configuration Registry
    Centralizes all environment variables using Pydantic Settings.
    """

    model_config = SettingsConfigDict(
        env_file=(str(ROOT_ENV), str(ROOT_ENV_LOCAL)),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Generation service
    GENERATION_SERVICE_URL: str = "http://localhost:3000"
    GENERATION_SERVICE_API_KEY: Optional[str] = None
    SESSION_INIT_PATH: str = "/api/ai/trip-planning/chunked"
    MANIFEST_PATH: str = "/api/ai/trip-planning/manifest"
    CHUNK_FETCH_PATH: str = "/api/ai/trip-planning/chunked"
    CHUNK_STREAM_PATH: str = "/api/ai/trip-planning/stream"

    # Orchestration
    ORCHESTRATION_MODE: Literal["chunked", "streaming"] = "chunked"
    SESSION_INIT_TIMEOUT_SECONDS: float = 60.0
    CHUNK_REQUEST_TIMEOUT_SECONDS: float = 50.0
    STREAM_CHUNK_TIMEOUT_SECONDS: float = 50.0
    CHUNK_MAX_RETRIES: int = 2
    CHUNK_RETRY_BACKOFF_MULTIPLIER_SECONDS: float = 2.0  # attempt n waits multiplier * 2^(n-1)
    CHUNK_RETRY_MAX_DELAY_SECONDS: float = 30.0
    MIN_VIABLE_CHUNKS: int = 2

    # Run retention behind the HTTP API
    PLAN_RUN_RETENTION_SECONDS: float = 3600.0
    MAX_RETAINED_PLAN_RUNS: int = 100

    # Progress accounting
    PROGRESS_MANIFEST_WEIGHT: float = 0.1
    # Heuristic: a finished chunk is roughly this many characters of JSON.
    STREAM_PROGRESS_EXPECTED_CHARS: int = 4000
    STREAM_PROGRESS_CAP_PERCENT: float = 95.0

    # API Config
    API_PORT: int = 8010
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    ENVIRONMENT: str = "development"

    @field_validator("ORCHESTRATION_MODE", mode="before")
    @classmethod
    def _normalize_mode(cls, value: str | None) -> str:
        return str(value or "chunked").strip().lower()

    @field_validator("ENVIRONMENT", mode="before")
    @classmethod
    def _normalize_environment_label(cls, value: str | None) -> str:
        return str(value or "").strip().lower()

    @model_validator(mode="after")
    def _enforce_progress_constraints(self) -> "Settings":
        if not 0.0 <= self.PROGRESS_MANIFEST_WEIGHT < 1.0:
            logger.warning(
                "PROGRESS_MANIFEST_WEIGHT out of range; falling back to 0.1",
                extra={"configured": self.PROGRESS_MANIFEST_WEIGHT},
            )
            self.PROGRESS_MANIFEST_WEIGHT = 0.1
        self.STREAM_PROGRESS_EXPECTED_CHARS = max(1, int(self.STREAM_PROGRESS_EXPECTED_CHARS))
        self.STREAM_PROGRESS_CAP_PERCENT = max(0.0, min(99.0, float(self.STREAM_PROGRESS_CAP_PERCENT)))
        self.CHUNK_MAX_RETRIES = max(0, int(self.CHUNK_MAX_RETRIES))
        self.MIN_VIABLE_CHUNKS = max(1, int(self.MIN_VIABLE_CHUNKS))
        return self


settings = Settings()  # type: ignore[call-arg]
