"""Application configuration management."""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

GLIDE_MAX_MUTATIONS_PER_CALL = 500


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.debug and self.log_level.upper() != "TRACE":
            self.log_level = "DEBUG"

    # Database
    database_url: str

    # Security
    encryption_key: str

    # CORS
    cors_origins: str = "http://localhost:5173"

    # Application
    debug: bool = False
    log_level: str = "INFO"
    api_v1_str: str = "/api/v1"

    # Glide API
    glide_api_base_url: str = "https://api.glideapp.io"
    glide_timeout_seconds: float = 30.0
    glide_write_batch_size: int = GLIDE_MAX_MUTATIONS_PER_CALL

    # Sync
    sync_upsert_batch_size: int = 100
    sync_stale_run_minutes: int = 60
    relationship_max_attempts: int = 5
    scheduler_enabled: bool = True

    @field_validator("glide_write_batch_size")
    @classmethod
    def validate_write_batch_size(cls, v: int) -> int:
        if v < 1 or v > GLIDE_MAX_MUTATIONS_PER_CALL:
            raise ValueError(f"glide_write_batch_size must be between 1 and {GLIDE_MAX_MUTATIONS_PER_CALL}")
        return v

    @field_validator("sync_upsert_batch_size")
    @classmethod
    def validate_upsert_batch_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("sync_upsert_batch_size must be positive")
        return v

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]


# Global settings instance
settings = Settings()
