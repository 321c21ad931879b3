"""
Configuration Settings
======================

Centralized configuration using Pydantic V2 Settings.
"""

import logging

from pydantic import Field, field_validator, ValidationInfo
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_env: str = Field(default="development")
    app_debug: bool = Field(default=False)
    database_url: str = Field(default="sqlite:///./data/datarepo.db")
    default_page_size: int = Field(default=20, ge=1)
    max_page_size: int = Field(default=2000, ge=1)
    auditor: str = Field(default="system", min_length=1)
    log_level: str = Field(default="INFO")

    @field_validator("max_page_size")
    @classmethod
    def validate_page_sizes(cls, v: int, info: ValidationInfo) -> int:
        """Ensure the page size cap is not below the default page size."""
        default_size = info.data.get("default_page_size")
        if default_size is not None and v < default_size:
            raise ValueError(f"max_page_size ({v}) must be >= default_page_size ({default_size})")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


settings = Settings()


def get_settings() -> Settings:
    """Get the global settings instance."""
    return settings


def print_settings() -> None:
    """Print the active settings (used by the init CLI)."""
    for name, value in settings.model_dump().items():
        print(f"  {name:<18} {value}")


def configure_logging(level: str | None = None) -> None:
    """Apply the configured log level to the root logger."""
    logging.basicConfig(
        level=level or settings.log_level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
