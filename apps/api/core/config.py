"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the sync engine and worker.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="intervals_sync")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)
    # Full SQLAlchemy URL; takes precedence over the POSTGRES_* parts when set.
    DATABASE_URL: Optional[str] = Field(default=None)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Intervals.icu API Configuration
    INTERVALS_ICU_API_BASE: str = Field(default="https://intervals.icu/api/v1")
    # Intervals personal API keys authenticate with the literal username "API_KEY".
    INTERVALS_ICU_USERNAME: str = Field(default="API_KEY")
    INTERVALS_ICU_API_KEY: Optional[str] = Field(default=None)

    # Sync window policy
    INTERVALS_INITIAL_LOOKBACK_DAYS: int = Field(default=14, ge=1)
    INTERVALS_INCREMENTAL_OVERLAP_DAYS: int = Field(default=1, ge=0)
    # Concurrent detail/map fetches for a single activity.
    INTERVALS_FETCH_CONCURRENCY: int = Field(default=2, ge=1, le=8)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # External API Configuration
    EXTERNAL_API_TIMEOUT: int = Field(default=30)

    # Redis (per-user sync lock)
    REDIS_URL: str = Field(default="redis://redis:6379/0")
    # Upper bound on one sync; the lock expires on its own after this.
    INTERVALS_SYNC_LOCK_TTL_S: int = Field(default=30 * 60, ge=60)

    # Celery Configuration
    CELERY_BROKER_URL: str = Field(default="redis://redis:6379/0")
    CELERY_RESULT_BACKEND: str = Field(default="redis://redis:6379/0")

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.POSTGRES_USER}:"
            f"{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:"
            f"{self.POSTGRES_PORT}/"
            f"{self.POSTGRES_DB}"
        )


# Global settings instance
settings = Settings()
