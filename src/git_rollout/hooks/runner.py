"""Discover and execute hook scripts for a rollout phase."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import HookConfigurationError, HookFailed
from .utils import sanitize_environment

logger = logging.getLogger(__name__)

COMMON_SCOPE = "common"
# Shell convention for "found but cannot execute".
EXEC_FAILURE = 126


@dataclass(frozen=True, slots=True)
class HookDescriptor:
    """A hook script found on disk for one phase and scope."""

    phase: str
    scope: str
    path: Path

    @property
    def sort_key(self) -> str:
        return self.path.name


@dataclass(slots=True)
class HookContext:
    """Values exported to every hook of one invocation."""

    environment: str
    action: str
    commit: str | None = None
    start_commit: str | None = None
    tag: str | None = None
    deploy_file: Path | None = None
    dry_run: bool = False

    def as_environment(self, root: Path, phase: str) -> dict[str, str]:
        return {
            "DEPLOY_ROOT": str(root),
            "DEPLOY_ENVIRONMENT": self.environment,
            "DEPLOY_PREFIX": self.environment,
            "DEPLOY_ACTION": self.action,
            "DEPLOY_PHASE": phase,
            "DEPLOY_COMMIT": self.commit or "",
            "DEPLOY_START_COMMIT": self.start_commit or "",
            "DEPLOY_TAG": self.tag or "",
            "DEPLOY_FILE": str(self.deploy_file) if self.deploy_file else "",
            "DEPLOY_DRY_RUN": "1" if self.dry_run else "0",
        }


@dataclass(slots=True)
class HookExecutionResult:
    """Holds the outcome of one hook invocation."""

    hook: HookDescriptor
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(slots=True)
class HookOutcome:
    phase: str
    results: list[HookExecutionResult] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)

    @property
    def failures(self) -> list[HookExecutionResult]:
        return [result for result in self.results if not result.ok]

    @property
    def ok(self) -> bool:
        return not self.failures


class HookRunner:
    """Run the hooks below ``<root>/<hook_dir>`` in their documented order.

    Phase hooks live in ``apps/common`` and ``apps/<environment>``; common hooks
    run first, and within a directory hooks run in filename order. The sync hook
    for an environment is ``sync/<environment>.sync``.
    """

    def __init__(self, root: Path, *, hook_dir: Path = Path("deploy")) -> None:
        self._root = Path(root)
        hook_dir = Path(hook_dir)
        self._hook_root = hook_dir if hook_dir.is_absolute() else self._root / hook_dir
        self._reported: set[Path] = set()

    @property
    def hook_root(self) -> Path:
        return self._hook_root

    def directories(self, environment: str) -> list[tuple[str, Path]]:
        apps = self._hook_root / "apps"
        scopes = [(COMMON_SCOPE, apps / COMMON_SCOPE)]
        if environment != COMMON_SCOPE:
            scopes.append((environment, apps / environment))
        return scopes

    def discover(self, phase: str, environment: str) -> list[HookDescriptor]:
        """Return the hooks for ``phase`` in execution order."""

        descriptors: list[HookDescriptor] = []
        for scope, directory in self.directories(environment):
            if not directory.is_dir():
                continue
            found = [
                HookDescriptor(phase=phase, scope=scope, path=path)
                for path in directory.glob(f"{phase}.*")
                if path.is_file()
            ]
            descriptors.extend(sorted(found, key=lambda descriptor: descriptor.sort_key))
        return descriptors

    def run(
        self,
        phase: str,
        environment: str,
        context: HookContext,
        *,
        tolerate_failures: bool = False,
    ) -> HookOutcome:
        """Execute the hooks for ``phase``.

        The first failing hook raises :class:`HookFailed` unless
        ``tolerate_failures`` is set, in which case failures are logged and the
        remaining hooks still run.
        """

        outcome = HookOutcome(phase=phase)
        env = sanitize_environment(context.as_environment(self._root, phase))
        for descriptor in self.discover(phase, environment):
            if not os.access(descriptor.path, os.X_OK):
                self._report_not_executable(descriptor.path)
                outcome.skipped.append(descriptor.path)
                continue

            result = self._execute(descriptor, env)
            outcome.results.append(result)
            if result.ok:
                continue
            if not tolerate_failures:
                raise HookFailed(phase, descriptor.path, result.returncode)
            logger.warning(
                "Hook failed; continuing",
                extra={
                    "phase": phase,
                    "hook": str(descriptor.path),
                    "returncode": result.returncode,
                },
            )
        return outcome

    def sync_hook_path(self, environment: str) -> Path:
        """Return the environment's sync hook, checking that it can be executed."""

        path = self._hook_root / "sync" / f"{environment}.sync"
        if not path.is_file():
            raise HookConfigurationError(f"no sync hook for environment '{environment}' at {path}")
        if not os.access(path, os.X_OK):
            raise HookConfigurationError(f"sync hook {path} is not executable")
        return path

    def run_sync(self, environment: str, context: HookContext) -> HookExecutionResult:
        descriptor = HookDescriptor(
            phase="sync", scope=environment, path=self.sync_hook_path(environment)
        )
        env = sanitize_environment(context.as_environment(self._root, "sync"))
        return self._execute(descriptor, env)

    def _report_not_executable(self, path: Path) -> None:
        if path in self._reported:
            return
        self._reported.add(path)
        logger.error("Hook is not executable; skipping", extra={"hook": str(path)})

    def _execute(self, descriptor: HookDescriptor, env: dict[str, str]) -> HookExecutionResult:
        logger.info(
            "Running hook",
            extra={"phase": descriptor.phase, "scope": descriptor.scope, "hook": str(descriptor.path)},
        )
        try:
            process = subprocess.run([str(descriptor.path)], cwd=str(self._root), env=env)
        except OSError as exc:
            logger.error(
                "Hook could not be executed",
                extra={"phase": descriptor.phase, "hook": str(descriptor.path), "error": str(exc)},
            )
            return HookExecutionResult(hook=descriptor, returncode=EXEC_FAILURE)
        return HookExecutionResult(hook=descriptor, returncode=process.returncode)


__all__ = [
    "EXEC_FAILURE",
    "HookContext",
    "HookDescriptor",
    "HookExecutionResult",
    "HookOutcome",
    "HookRunner",
]
