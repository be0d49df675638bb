"""Environment profile lookup."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from ..errors import ConfigurationError
from .models import EnvironmentProfile

PROFILE_SUFFIXES = (".yml", ".yaml")


class EnvironmentLoadError(ConfigurationError):
    """Raised when an environment file exists but cannot be used."""

    hint = "fix the environment file, or remove it to fall back to the default policy"


class EnvironmentLoader:
    """Find the profile of one environment among the configured directories.

    A profile lives in ``<id>.yml`` or ``<id>.yaml``. When several search paths
    carry one, the last path wins, so a local directory can override a shared
    one. The ``id`` key may be left out of the file; it defaults to the file
    name and must match it when present.
    """

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        self._search_paths = [Path(path) for path in (search_paths or [])]

    def profile_path(self, environment_id: str) -> Path | None:
        """Return the file that defines ``environment_id``, if any."""

        found: Path | None = None
        for base in self._search_paths:
            for suffix in PROFILE_SUFFIXES:
                candidate = base / f"{environment_id}{suffix}"
                if candidate.is_file():
                    found = candidate
        return found

    def get(self, environment_id: str) -> EnvironmentProfile:
        """Return the profile for ``environment_id``, or the restrictive default."""

        path = self.profile_path(environment_id)
        if path is None:
            return EnvironmentProfile.default(environment_id)
        return self._load(path, environment_id)

    @staticmethod
    def _load(path: Path, environment_id: str) -> EnvironmentProfile:
        try:
            document = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise EnvironmentLoadError(f"failed to parse YAML in {path}: {exc}") from exc

        if document is None:
            document = {}
        if not isinstance(document, dict):
            raise EnvironmentLoadError(f"{path} must contain a mapping of profile settings")
        document.setdefault("id", environment_id)

        try:
            profile = EnvironmentProfile.model_validate(document)
        except ValidationError as exc:
            raise EnvironmentLoadError(f"environment validation error in {path}: {exc}") from exc

        if profile.id != environment_id:
            raise EnvironmentLoadError(
                f"{path} describes environment '{profile.id}', expected '{environment_id}'"
            )
        return profile


__all__ = ["EnvironmentLoadError", "EnvironmentLoader", "PROFILE_SUFFIXES"]
