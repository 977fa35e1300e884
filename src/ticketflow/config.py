"""Configuration management for Ticketflow."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated
from pathlib import Path
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class TicketflowSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    claude_path: str | None = Field(default=None, validation_alias="CLAUDE_PATH")
    git_path: str | None = Field(default=None, validation_alias="GIT_PATH")
    journal_path: Path = Field(
        default=Path("./storage/journal"), validation_alias="TICKETFLOW_JOURNAL_PATH"
    )
    profile_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("profiles"),), validation_alias="TICKETFLOW_PROFILE_PATHS"
    )
    profile_id: str = Field(default="default", validation_alias="TICKETFLOW_PROFILE")
    log_level: str = Field(default="INFO", validation_alias="TICKETFLOW_LOG_LEVEL")
    diff_dir_name: str = Field(default=".ticketflow", validation_alias="TICKETFLOW_DIFF_DIR")
    branch_slug_length: int = Field(default=30, validation_alias="TICKETFLOW_BRANCH_SLUG_LENGTH")
    wrap_width: int = Field(default=60, validation_alias="TICKETFLOW_WRAP_WIDTH")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "TICKETFLOW_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("profile_paths", mode="before")
    @classmethod
    def _parse_profile_paths(cls, value):
        if value is None or value == "":
            return (Path("profiles"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("profiles"),)
        raise TypeError("TICKETFLOW_PROFILE_PATHS must be a list of paths or a path-separated string")

    @field_validator("diff_dir_name")
    @classmethod
    def _validate_diff_dir(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized or "/" in normalized or normalized in {".", ".."}:
            raise ValueError("TICKETFLOW_DIFF_DIR must be a plain directory name")
        return normalized

    @field_validator("branch_slug_length", "wrap_width")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("length settings must be >= 1")
        return value


@lru_cache(maxsize=1)
def get_settings() -> TicketflowSettings:
    """Return cached settings instance."""

    settings = TicketflowSettings()
    settings.journal_path = settings.journal_path.expanduser().resolve()
    settings.profile_paths = tuple(path.expanduser().resolve() for path in settings.profile_paths)
    return settings


__all__ = ["TicketflowSettings", "get_settings"]
