"""
Maestro - Configuration
=======================

All application settings loaded from environment variables.
Uses pydantic-settings for validation and type conversion.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    APP_NAME: str = "Maestro"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = "development"
    DEBUG: bool = False

    # ==========================================================================
    # API
    # ==========================================================================
    API_V1_PREFIX: str = "/api/v1"
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # ==========================================================================
    # Database (supports SQLite and PostgreSQL)
    # ==========================================================================
    DATABASE_URL: str = "sqlite+aiosqlite:///./maestro.db"
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_ECHO: bool = False

    # ==========================================================================
    # Workspaces
    # ==========================================================================
    CLONE_DIR: str = "~/maestro/repos"
    GITHUB_TOKEN: str | None = None
    GIT_BINARY: str = "git"

    # ==========================================================================
    # Coding Agent
    # ==========================================================================
    AGENT_COMMAND: list[str] = ["amp", "--dangerously-allow-all", "--execute", "--stream-json"]
    AGENT_RESUME_ARGS: list[str] = ["threads", "continue"]
    AGENT_THREAD_BASE_URL: str = "https://ampcode.com/threads"

    # ==========================================================================
    # Housekeeping
    # ==========================================================================
    SCAN_CACHE_TTL_SECONDS: float = 30.0

    # Advertised on /health for admission control above the orchestrator, never enforced here
    MAX_CONCURRENT_EXECUTIONS: int = 10

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @computed_field  # type: ignore[misc]
    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @computed_field  # type: ignore[misc]
    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def clone_root(self) -> Path:
        return Path(self.CLONE_DIR).expanduser()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
