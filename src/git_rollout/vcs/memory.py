"""In-memory VCS adapter used as a test double."""

from __future__ import annotations

import fnmatch
from typing import Iterable

from ..errors import VcsError
from .base import BranchRef, TagRef


class InMemoryVcs:
    """Simulate a repository with a linear history, tags and a remote."""

    def __init__(
        self,
        commits: Iterable[str] = ("c0",),
        *,
        head: str | None = None,
        branch: str = "master",
    ) -> None:
        self.commits: list[str] = list(commits)
        if not self.commits:
            raise ValueError("InMemoryVcs needs at least one commit")
        self.head = head or self.commits[-1]
        self.branch = branch
        self.tags: dict[str, TagRef] = {}
        self.remote_tags: dict[str, TagRef] = {}
        self.upstream: list[str] = []
        self.clean = True
        self.calls: list[tuple[str, ...]] = []
        self.fail_on: set[str] = set()

    def _record(self, *call: str) -> None:
        self.calls.append(tuple(call))
        if call[0] in self.fail_on:
            raise VcsError(f"simulated failure of {call[0]}", returncode=1)

    def add_commit(self, commit: str) -> None:
        """Append a commit locally and move HEAD to it."""

        self.commits.append(commit)
        self.head = commit

    def fetch_tags(self) -> None:
        self._record("fetch_tags")
        for name, ref in self.remote_tags.items():
            self.tags.setdefault(name, ref)

    def pull(self) -> None:
        self._record("pull")
        for commit in self.upstream:
            self.add_commit(commit)
        self.upstream = []

    def push(self, ref: str) -> None:
        self._record("push", ref)
        name = ref.removeprefix("refs/tags/")
        if name in self.tags:
            self.remote_tags[name] = self.tags[name]

    def current_commit(self) -> str:
        return self.head

    def create_annotated_tag(self, name: str, message: str, target: str) -> None:
        self._record("create_annotated_tag", name, target)
        if name in self.tags:
            raise VcsError(f"tag '{name}' already exists", returncode=128)
        self.tags[name] = TagRef(name=name, commit=target, message=message)

    def list_tags(self, pattern: str | None = None) -> list[TagRef]:
        return [
            ref
            for name, ref in sorted(self.tags.items())
            if pattern is None or fnmatch.fnmatchcase(name, pattern)
        ]

    def list_branches(self) -> list[BranchRef]:
        return [BranchRef(name=self.branch, commit=self.head)]

    def reset_hard(self, commit: str) -> None:
        self._record("reset_hard", commit)
        if commit not in self.commits:
            raise VcsError(f"unknown revision {commit}", returncode=128)
        self.head = commit
        self.clean = True

    def working_tree_clean(self) -> bool:
        return self.clean

    def status_text(self) -> str:
        state = "clean" if self.clean else "modified"
        return f"## {self.branch}\nworking tree {state} at {self.head}\n"

    def diff(self, base: str, head: str) -> str:
        return f"diff {base}..{head}\n"


__all__ = ["InMemoryVcs"]
