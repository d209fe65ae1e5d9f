"""
Application configuration using Pydantic Settings.
Values are read from NOTESMAKER_* environment variables or a .env file.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings for the notes pipeline."""

    model_config = SettingsConfigDict(
        env_prefix="NOTESMAKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── App ──────────────────────────────────────────────
    APP_NAME: str = "AI Notes Maker"
    APP_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "*"  # comma-separated

    # ── Storage ──────────────────────────────────────────
    DATA_DIR: Path = Path("data")      # job and notes records
    OUTPUT_DIR: Path = Path("outputs")  # compiled pdfs
    PERSIST_JOBS: bool = True

    # ── Pipeline ─────────────────────────────────────────
    STEP_DELAY_SECONDS: float = 0.0  # pause after each state change so progress is visible
    RETRIEVAL_TOP_K: int = 6
    RETRIEVAL_THRESHOLD: float = 0.1
    QC_MAX_RETRIES: int = 1
    HUMAN_REVIEW_ON_QC_FAILURE: bool = False
    JOB_RETENTION_DAYS: int = 7

    # ── Syllabus ─────────────────────────────────────────
    SYLLABUS_DIR: Optional[Path] = None  # local <BOARD>_<class>_<Subject>.pdf files
    FETCH_REMOTE_SYLLABUS: bool = False
    HTTP_TIMEOUT: int = 30

    # ── LLM ──────────────────────────────────────────────
    LLM_PROVIDER: str = "template"  # template | ollama
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "llama3"

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance (singleton)."""
    return Settings()
