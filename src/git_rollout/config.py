"""Configuration management for git-rollout."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class RolloutSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    root: Path = Field(default=Path("."), validation_alias="ROLLOUT_ROOT")
    environment: str | None = Field(default=None, validation_alias="ROLLOUT_ENVIRONMENT")
    environment_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("deploy/environments"),), validation_alias="ROLLOUT_ENVIRONMENT_PATHS"
    )
    hook_dir: Path = Field(default=Path("deploy"), validation_alias="ROLLOUT_HOOK_DIR")
    lock_dir: Path = Field(default=Path(".git/rollout"), validation_alias="ROLLOUT_LOCK_DIR")
    deploy_file: Path | None = Field(default=None, validation_alias="ROLLOUT_DEPLOY_FILE")
    date_format: str = Field(default="%Y%m%d-%H%M", validation_alias="ROLLOUT_DATE_FORMAT")
    ignore_older_than: str = Field(default="20000101", validation_alias="ROLLOUT_IGNORE_OLDER_THAN")
    remote: str = Field(default="origin", validation_alias="ROLLOUT_REMOTE")
    no_remote: bool = Field(default=False, validation_alias="ROLLOUT_NO_REMOTE")
    block_file: Path = Field(default=Path(".git/rollout/block"), validation_alias="ROLLOUT_BLOCK_FILE")
    required_umask: int = Field(default=0o002, validation_alias="ROLLOUT_REQUIRED_UMASK")
    log_level: str = Field(default="INFO", validation_alias="ROLLOUT_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "ROLLOUT_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("environment_paths", mode="before")
    @classmethod
    def _parse_environment_paths(cls, value):
        if value is None or value == "":
            return (Path("deploy/environments"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("deploy/environments"),)
        raise ValueError(
            "ROLLOUT_ENVIRONMENT_PATHS must be a list of paths or a path-separated string"
        )

    @field_validator("required_umask", mode="before")
    @classmethod
    def _parse_umask(cls, value):
        if isinstance(value, str):
            try:
                value = int(value.strip(), 8)
            except ValueError as exc:
                raise ValueError("ROLLOUT_REQUIRED_UMASK must be an octal number such as 0002") from exc
        if not 0 <= int(value) <= 0o777:
            raise ValueError("ROLLOUT_REQUIRED_UMASK must be between 0000 and 0777")
        return int(value)

    @field_validator("date_format")
    @classmethod
    def _validate_date_format(cls, value: str) -> str:
        if "%" not in value:
            raise ValueError("ROLLOUT_DATE_FORMAT must contain at least one strftime directive")
        return value

    def resolve(self, path: Path) -> Path:
        """Return ``path`` anchored at the deployment root when it is relative."""

        path = Path(path).expanduser()
        if path.is_absolute():
            return path
        return self.root / path


@lru_cache(maxsize=1)
def get_settings() -> RolloutSettings:
    """Return cached settings instance."""

    settings = RolloutSettings()
    settings.root = settings.root.expanduser().resolve()
    return settings


__all__ = ["RolloutSettings", "get_settings"]
