"""Configuration system for the marker editor."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with support for environment variables."""

    database_path: Path = Field(
        default=Path("com.plexapp.plugins.library.db"),
        description="Path to the Plex Media Server library database",
    )
    backup_database_path: Path = Field(
        default=Path("markerActions.db"),
        description="Path to the database that records marker actions",
    )
    backup_actions: bool = Field(
        default=True,
        description="Record marker actions so purged markers can be restored",
    )
    pure_mode: bool = Field(
        default=False,
        description="Leave the thumb_url column untouched instead of storing edit times",
    )

    host: str = Field(default="localhost")
    port: int = Field(default=3232, ge=1, le=65535)
    server_url: str = Field(
        default="http://localhost:3232",
        description="Base URL used by the HTTP client",
    )
    request_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Client request timeout in seconds",
    )
    log_level: str = Field(default="INFO")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "MARKER_EDITOR_",
        "case_sensitive": False,
    }

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log_level is a standard logging level name."""
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        level = v.upper()
        if level not in allowed_levels:
            msg = f"log_level must be one of {allowed_levels}, got '{v}'"
            raise ValueError(msg)
        return level

    @field_validator("server_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Remove any trailing slash from the server URL."""
        return v.rstrip("/")
