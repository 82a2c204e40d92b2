"""
Unified configuration for prompt-tracker services.

This module provides a single Settings class that consolidates all
environment variables used by the API, the evaluation workers and the
offline evaluation runner.
"""

from __future__ import annotations

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

# Determine project root for .env file loading (allows running from any CWD)
PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """
    Unified settings for all prompt-tracker services.

    Environment variables are loaded from .env file and can be overridden
    by actual environment variables.
    """

    # Service identification
    SERVICE_NAME: str = "prompt-tracker"

    # PostgreSQL
    POSTGRES_DSN: str = "host=localhost port=5432 dbname=postgres user=postgres password=postgres"

    # Redis / Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"
    CELERY_WORKER_CONCURRENCY: int = 2

    # LLM judge (OpenAI)
    OPENAI_API_KEY: str = ""
    JUDGE_MODEL: str = "gpt-4o"
    JUDGE_TIMEOUT_SECONDS: float = 30.0
    JUDGE_TEMPERATURE: float = 0.0

    # Evaluation engine
    DEFAULT_MIN_DEPENDENCY_SCORE: int = 80
    ASYNC_EVALUATION_MAX_RETRIES: int = 3
    ASYNC_EVALUATION_RETRY_DELAY: float = 2.0
    EVALUATION_WORKER_CONCURRENCY: int = 4
    EVALUATION_DISPATCH_MODE: str = "local"  # "local" or "celery"
    EVALUATION_STORE: str = "postgres"  # "postgres" or "memory"

    # App host/port
    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 8081

    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        extra="ignore"
    )


# Global settings instance
settings = Settings()  # type: ignore
