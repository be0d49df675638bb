"""Version-control adapters."""

from .base import BranchRef, TagRef, VcsAdapter
from .git import GitAdapter
from .memory import InMemoryVcs

__all__ = [
    "BranchRef",
    "GitAdapter",
    "InMemoryVcs",
    "TagRef",
    "VcsAdapter",
]
