from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production"] = "local"
    LOG_LEVEL: str = "INFO"
    TIMEZONE: str = "Asia/Kolkata"
    ADMIN_EMAILS: list[str] = []

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Supabase auth
    # Placeholder value keeps local/test runs working without real credentials.
    SUPABASE_JWT_SECRET: str = "test-jwt-secret"

    # Background workers
    REDIS_URL: str = "redis://localhost:6379/0"

    # Enrollment risk policy
    AT_RISK_WINDOW_DAYS: int = 7
    INACTIVITY_THRESHOLD_DAYS: int = 14
    DEFAULT_TOTAL_SESSIONS: int = 9
    MAX_EXTENSION_DAYS: int = 90
    CERTIFICATE_PREFIX: str = "YC"

    # Settlement
    TDS_RATE_PERCENT: int = 10
    TDS_SECTION: str = "194J"
    PAYOUT_BATCH_LIMIT: int = 50
    # Ledger rows younger than this belong to a batch that may still be running
    ORPHAN_GRACE_MINUTES: int = 30

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
