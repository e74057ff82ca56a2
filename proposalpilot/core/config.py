"""
ProposalPilot Configuration
Central configuration management using Pydantic Settings
"""
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===== Application =====
    app_name: str = "ProposalPilot"
    app_version: str = "1.0.0"
    environment: str = "development"
    debug: bool = False

    # ===== Logging =====
    log_level: str = "INFO"
    # JSON lines for log shipping; console renderer otherwise
    log_json: bool = False

    # ===== Budget Builder =====
    item_id_prefix: str = "item"
    default_project_years: int = Field(1, ge=1, le=10)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
