"""Environment profile models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


class EnvironmentProfile(BaseModel):
    """Per-environment rollout policy."""

    id: str = Field(..., description="Environment name; also the tag prefix.")
    description: str = Field(default="", description="Human-friendly description of the target.")
    can_make_tags: bool = Field(
        default=False,
        description="Whether 'release' and 'tag' may create tags without a sync hook.",
    )
    date_format: str | None = Field(
        default=None,
        description="strftime pattern for tag names; falls back to the global setting.",
    )
    notify: list[str] = Field(
        default_factory=list,
        description="Recipients told about finished rollouts.",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Arbitrary metadata exposed to notifications.",
    )

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Environment id must not be empty")
        if any(char.isspace() for char in normalized) or "/" in normalized:
            raise ValueError("Environment id must not contain whitespace or '/'")
        return normalized

    @field_validator("date_format")
    @classmethod
    def _validate_date_format(cls, value: str | None) -> str | None:
        if value is not None and "%" not in value:
            raise ValueError("date_format must contain at least one strftime directive")
        return value

    @field_validator("notify", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):  # type: ignore[override]
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        if isinstance(value, (list, tuple)):
            return list(value)
        raise ValueError("notify must be a list of recipients or a comma-separated string")

    @classmethod
    def default(cls, environment_id: str) -> "EnvironmentProfile":
        return cls(id=environment_id)


__all__ = ["EnvironmentProfile"]
