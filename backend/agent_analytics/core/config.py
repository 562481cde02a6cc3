import logging
import sys
from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    # Project
    PROJECT_NAME: str = "Agent Analytics"
    SERVICE_NAME: str = "agent-analytics"
    # Public origin used in the onboarding snippets returned on project creation
    PUBLIC_BASE_URL: str = "http://localhost:8000"
    VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Storage
    STORAGE_BACKEND: Literal["embedded", "network"] = "embedded"
    DATABASE_URL: str = "sqlite:///./analytics.db"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10

    # Auth - comma-separated static allowlists for single-tenant deployments
    API_KEYS: str = ""
    PROJECT_TOKENS: str = ""
    AUTH_CACHE_TTL_SECONDS: float = 60.0

    # Ingestion
    MAX_BATCH_SIZE: int = 100
    MAX_BODY_BYTES: int = 1024 * 1024

    # Request throttling (slowapi); a redis:// URL in multi-process deployments
    LIMITER_STORAGE_URI: str = "memory://"
    RATE_LIMIT_PER_MINUTE: int = 120

    # Projects
    FREE_TIER_PROJECT_LIMIT: int = 3

    # Retention worker
    RETENTION_INTERVAL_SECONDS: int = 3600

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator("MAX_BATCH_SIZE")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("MAX_BATCH_SIZE must be at least 1")
        return v

    @field_validator("AUTH_CACHE_TTL_SECONDS")
    @classmethod
    def validate_cache_ttl(cls, v: float) -> float:
        if v < 0:
            raise ValueError("AUTH_CACHE_TTL_SECONDS must not be negative")
        return v

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if "://" not in v:
            raise ValueError("DATABASE_URL must be a SQLAlchemy URL")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


def setup_logging() -> None:
    """Configure structured logging for the application."""
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.DEBUG else logging.WARNING
    )
