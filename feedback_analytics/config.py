"""
Configuration management using pydantic-settings.
All settings loaded from environment variables (12-factor app).
"""

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    db_path: str = Field(default="./data/feedback_analytics.duckdb", description="DuckDB file path")

    # Cache
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    redis_max_connections: int = Field(default=50, description="Redis pool size")
    cache_enabled: bool = Field(default=True, description="Use Redis as the shared cache tier (memory-only when off)")
    cache_default_ttl_seconds: int = Field(default=300, ge=1, description="Default cache TTL")
    cache_analytics_ttl_seconds: int = Field(default=600, ge=1, description="Dashboard cache TTL")
    cache_max_memory_items: int = Field(
        default=1000, ge=1, description="Max entries held by the in-memory fallback"
    )

    # Analytics ETL
    refresh_window_days: int = Field(
        default=30, ge=1, le=366, description="Rolling window covered by a refresh"
    )
    default_granularities: str = Field(
        default="day,week,month,year",
        validate_default=True,
        description="Granularities refreshed when none are requested (comma-separated)",
    )

    # API
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_reload: bool = Field(default=True, description="Enable hot reload")
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        validate_default=True,
        description="CORS allowed origins (comma-separated)",
    )

    # Logging
    log_level: str = Field(default="info", description="Log level")
    log_format: str = Field(default="json", description="Log format (json|console)")

    # Development
    dev_mode: bool = Field(default=True, description="Development mode")
    testing: bool = Field(default=False, description="Testing mode")

    @field_validator("cors_origins", "default_granularities")
    @classmethod
    def parse_comma_separated(cls, v: str) -> List[str]:
        """Parse comma-separated lists."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to ensure singleton behavior.
    """
    return Settings()
