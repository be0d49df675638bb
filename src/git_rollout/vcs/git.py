"""VCS adapter backed by the git command line."""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from ..errors import VcsError
from ..hooks.utils import sanitize_environment
from .base import BranchRef, TagRef

logger = logging.getLogger(__name__)

_FIELD_SEP = "\x00"
_RECORD_SEP = "\x1e"


@dataclass(slots=True)
class GitCommandResult:
    """Holds the outcome of a git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class GitAdapter:
    """Run git commands synchronously inside the deployment root."""

    def __init__(self, root: Path, *, remote: str = "origin", executable: Path | None = None) -> None:
        self._root = Path(root)
        self._remote = remote
        self._executable_path = self._resolve_executable(executable)

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise VcsError(f"git executable not found at {candidate}")

        binary = shutil.which("git")
        if binary is None:
            raise VcsError("git executable not found on PATH")
        return Path(binary)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def remote(self) -> str:
        return self._remote

    def fetch_tags(self) -> None:
        self._run("fetch", "--tags", self._remote)

    def pull(self) -> None:
        self._run("pull", "--ff-only", "--quiet")

    def push(self, ref: str) -> None:
        self._run("push", "--quiet", self._remote, ref)

    def current_commit(self) -> str:
        return self._run("rev-parse", "HEAD").stdout.strip()

    def create_annotated_tag(self, name: str, message: str, target: str) -> None:
        self._run("tag", "-a", name, "-m", message, target)

    def list_tags(self, pattern: str | None = None) -> list[TagRef]:
        ref_pattern = f"refs/tags/{pattern}" if pattern else "refs/tags"
        fmt = "%00".join(
            ["%(refname:strip=2)", "%(objectname)", "%(*objectname)", "%(contents)"]
        ) + "%1e"
        output = self._run("for-each-ref", f"--format={fmt}", ref_pattern).stdout
        tags: list[TagRef] = []
        for chunk in output.split(_RECORD_SEP):
            chunk = chunk.lstrip("\n")
            if not chunk:
                continue
            name, objectname, peeled, contents = chunk.split(_FIELD_SEP, 3)
            tags.append(TagRef(name=name, commit=peeled or objectname, message=contents.strip()))
        return tags

    def list_branches(self) -> list[BranchRef]:
        output = self._run(
            "for-each-ref", "--format=%(refname:strip=2)%00%(objectname)", "refs/heads"
        ).stdout
        branches: list[BranchRef] = []
        for line in output.splitlines():
            if not line:
                continue
            name, commit = line.split(_FIELD_SEP, 1)
            branches.append(BranchRef(name=name, commit=commit))
        return branches

    def reset_hard(self, commit: str) -> None:
        self._run("reset", "--hard", "--quiet", commit)

    def working_tree_clean(self) -> bool:
        return self._run("status", "--porcelain", "--untracked-files=no").stdout.strip() == ""

    def status_text(self) -> str:
        return self._run("status", "--short", "--branch").stdout

    def diff(self, base: str, head: str) -> str:
        return self._run("diff", "--stat", "--patch", base, head).stdout

    def _run(self, *args: str) -> GitCommandResult:
        cmd = [str(self._executable_path), *args]
        logger.debug("Running git command", extra={"git_args": list(args), "cwd": str(self._root)})
        process = subprocess.run(
            cmd,
            cwd=str(self._root),
            capture_output=True,
            text=True,
            env=sanitize_environment(),
        )
        result = GitCommandResult(
            args=tuple(cmd),
            returncode=process.returncode,
            stdout=process.stdout,
            stderr=process.stderr,
        )
        if not result.ok:
            raise VcsError(
                f"git {' '.join(args)} failed with exit code {result.returncode}: {result.stderr.strip()}",
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result


__all__ = ["GitAdapter", "GitCommandResult"]
