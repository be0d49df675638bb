"""Version-control capability set required by the rollout engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence


@dataclass(frozen=True, slots=True)
class TagRef:
    """A tag as reported by the VCS: name, peeled target commit and annotation."""

    name: str
    commit: str
    message: str = ""


@dataclass(frozen=True, slots=True)
class BranchRef:
    name: str
    commit: str


class VcsAdapter(Protocol):
    """Protocol for the version-control operations the engine needs."""

    def fetch_tags(self) -> None:
        ...

    def pull(self) -> None:
        ...

    def push(self, ref: str) -> None:
        ...

    def current_commit(self) -> str:
        ...

    def create_annotated_tag(self, name: str, message: str, target: str) -> None:
        ...

    def list_tags(self, pattern: str | None = None) -> Sequence[TagRef]:
        ...

    def list_branches(self) -> Sequence[BranchRef]:
        ...

    def reset_hard(self, commit: str) -> None:
        ...

    def working_tree_clean(self) -> bool:
        ...

    def status_text(self) -> str:
        ...

    def diff(self, base: str, head: str) -> str:
        ...


__all__ = ["BranchRef", "TagRef", "VcsAdapter"]
