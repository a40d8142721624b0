"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates fields and provides typed access to settings.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables.

    Optional:
        CACHE_DIR: Default cache root
        LOG_LEVEL: Logging level
        LOG_FILE: JSON Lines log file
        FSYNC: Whether staged content is fsynced before it is published
        CHUNK_SIZE: Size of individually awaited writes in write_all()
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    CACHE_DIR: Path = Field(default=Path(".cache/casdisk"), description="Cache root")

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    LOG_FILE: Path | None = Field(default=None, description="JSON Lines log file")

    FSYNC: bool = Field(
        default=False, description="fsync staged content before publishing it"
    )
    CHUNK_SIZE: int = Field(
        default=64 * 1024,
        ge=1024,
        le=64 * 1024 * 1024,
        description="Chunk size used to split async write_all() calls",
    )

    def ensure_directories(self) -> None:
        """Create the cache directory if it doesn't exist."""
        self.CACHE_DIR.mkdir(parents=True, exist_ok=True)

    def configure_logging(self, console_output: bool = True) -> None:
        """Apply LOG_LEVEL and LOG_FILE to the casdisk loggers."""
        from casdisk.logging import setup_logging

        setup_logging(
            log_level=self.LOG_LEVEL,
            log_file=self.LOG_FILE,
            console_output=console_output,
        )

    def display(self) -> dict[str, str | int | bool | None]:
        """Return settings for display."""
        return {
            "CACHE_DIR": str(self.CACHE_DIR),
            "LOG_LEVEL": self.LOG_LEVEL,
            "LOG_FILE": str(self.LOG_FILE) if self.LOG_FILE else None,
            "FSYNC": self.FSYNC,
            "CHUNK_SIZE": self.CHUNK_SIZE,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
