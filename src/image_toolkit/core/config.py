"""Environment-driven settings for the image toolkit service."""

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Application
    APP_NAME: str = "Image Toolkit"
    ENVIRONMENT: str = "development"
    HOST: str = "0.0.0.0"
    PORT: int = 5000
    FRONTEND_URL: str = "http://localhost:5173"

    # Storage
    STORAGE_ROOT: Path = Path("./var")

    # Upload limits
    MAX_FILE_SIZE_MB: float = Field(default=20, gt=0)
    MAX_FILES_PER_REQUEST: int = Field(default=10, gt=0)

    # Rate limiting: global window and the stricter processing window
    RATE_LIMIT_WINDOW_MINUTES: int = Field(default=15, gt=0)
    RATE_LIMIT_MAX_REQUESTS: int = Field(default=100, gt=0)
    PROCESS_RATE_LIMIT_WINDOW_MINUTES: int = Field(default=1, gt=0)
    PROCESS_RATE_LIMIT_MAX_REQUESTS: int = Field(default=20, gt=0)

    # Temp file cleanup
    CLEANUP_INTERVAL_MINUTES: float = Field(default=30, gt=0)
    FILE_TTL_MINUTES: float = Field(default=60, gt=0)

    # Transcoding
    TRANSCODE_WORKERS: int = Field(default=4, gt=0)

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "structured"

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def max_file_size_bytes(self) -> int:
        return int(self.MAX_FILE_SIZE_MB * 1024 * 1024)

    @property
    def cleanup_interval_seconds(self) -> float:
        return self.CLEANUP_INTERVAL_MINUTES * 60

    @property
    def file_ttl_seconds(self) -> float:
        return self.FILE_TTL_MINUTES * 60

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.FRONTEND_URL.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
