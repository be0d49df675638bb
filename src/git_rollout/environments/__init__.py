"""Per-environment rollout policy."""

from .loader import EnvironmentLoadError, EnvironmentLoader
from .models import EnvironmentProfile

__all__ = ["EnvironmentLoadError", "EnvironmentLoader", "EnvironmentProfile"]
