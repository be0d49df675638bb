"""Rollout orchestration on top of a git checkout."""

__version__ = "0.1.0"

__all__ = ["__version__"]
