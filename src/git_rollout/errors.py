"""Error types raised by the rollout engine and its collaborators."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .storage.models import LockRecord


class RolloutError(RuntimeError):
    """Base class for rollout errors.

    ``hint`` carries remediation text shown to the operator next to the message.
    """

    hint: str | None = None

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        if hint is not None:
            self.hint = hint


class ConfigurationError(RolloutError):
    """Raised when settings or environment profiles are unusable."""


class VcsError(RolloutError):
    """Raised when a version-control command fails."""

    def __init__(self, message: str, *, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class AlreadyLocked(RolloutError):
    """Raised when another operator holds the deployment lock."""

    hint = "wait for the current rollout to finish, or use --force to take the lock over"

    def __init__(self, holder: "LockRecord | None") -> None:
        self.holder = holder
        if holder is None:
            message = "deployment is locked by an unknown holder"
        else:
            message = (
                f"deployment is locked by {holder.user}@{holder.host} (pid {holder.pid}) "
                f"running '{holder.action}' since {holder.acquired_at}"
            )
        super().__init__(message)


class NotLocked(RolloutError):
    """Raised when an action needs the lock but nobody holds it."""

    hint = "run 'start' first"

    def __init__(self, message: str = "deployment is not locked") -> None:
        super().__init__(message)


class MalformedLockRecord(RolloutError):
    """Raised when the lock file exists but cannot be decoded."""

    hint = "inspect the lock file by hand, or run 'abort --force'"


class DirtyWorkingTree(RolloutError):
    """Raised when the working tree has uncommitted changes."""

    hint = "commit or stash your changes, or pass --no-check-clean"


class BlockedByPolicy(RolloutError):
    """Raised when a block file or the umask policy forbids rolling out."""


class PermissionDenied(RolloutError):
    """Raised when the environment is not allowed to perform an action."""

    hint = "set 'can_make_tags: true' in the environment profile to allow this"


class HookConfigurationError(RolloutError):
    """Raised when a hook is missing or not executable."""

    hint = "check that the hook exists and has its executable bit set"


class HookFailed(RolloutError):
    """Raised when a hook exits nonzero under the aborting failure policy."""

    def __init__(self, phase: str, script: Path, exit_code: int) -> None:
        self.phase = phase
        self.script = Path(script)
        self.exit_code = exit_code
        super().__init__(
            f"{phase} hook {self.script} failed with exit code {exit_code}",
            hint="the lock is still held; fix the problem and retry, or run 'abort'",
        )


class SyncFailed(RolloutError):
    """Raised when the environment's sync hook exits nonzero."""

    def __init__(self, script: Path, exit_code: int, tag: str | None) -> None:
        self.script = Path(script)
        self.exit_code = exit_code
        self.tag = tag
        super().__init__(
            f"sync hook {self.script} failed with exit code {exit_code} (tag {tag})",
            hint="fix the problem, run the sync hook by hand, then run 'finish'",
        )


class TagNameCollision(RolloutError):
    """Raised internally when a formatted tag name is already taken."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"tag {name} already exists")


class DeployFileNotFound(RolloutError):
    """Raised when the deploy file does not exist."""


class MalformedDeployRecord(RolloutError):
    """Raised when the deploy file cannot be parsed."""


class NoMatchingTag(RolloutError):
    """Raised when no rollout tag matches the request."""


class RolloutStateError(RolloutError):
    """Raised when an action is not valid in the current rollout state."""


__all__ = [
    "AlreadyLocked",
    "BlockedByPolicy",
    "ConfigurationError",
    "DeployFileNotFound",
    "DirtyWorkingTree",
    "HookConfigurationError",
    "HookFailed",
    "MalformedDeployRecord",
    "MalformedLockRecord",
    "NoMatchingTag",
    "NotLocked",
    "PermissionDenied",
    "RolloutError",
    "RolloutStateError",
    "SyncFailed",
    "TagNameCollision",
    "VcsError",
]
