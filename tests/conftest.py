from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable

import pytest

from git_rollout.engine import RolloutEngine, RolloutOptions
from git_rollout.environments import EnvironmentProfile
from git_rollout.hooks import HookRunner
from git_rollout.notify import RecordingNotifier
from git_rollout.storage import DeployFileStore, Holder, LockManager, default_deploy_file
from git_rollout.tags import TagRepository
from git_rollout.vcs import InMemoryVcs

ALICE = Holder(user="alice", host="deploy01", pid=1111)
BOB = Holder(user="bob", host="deploy02", pid=2222)


class StepClock:
    """Returns ``start``, then one ``step`` later on every further call."""

    def __init__(self, start: datetime = datetime(2008, 8, 25, 21, 5), step: timedelta = timedelta(minutes=1)) -> None:
        self._next = start
        self._step = step

    def __call__(self) -> datetime:
        current = self._next
        self._next = current + self._step
        return current


def write_hook(path: Path, body: str = "exit 0", *, executable: bool = True) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
    path.chmod(0o755 if executable else 0o644)
    return path


@pytest.fixture
def deploy_root(tmp_path: Path) -> Path:
    root = tmp_path / "checkout"
    root.mkdir()
    return root


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_engine(deploy_root: Path, notifier: RecordingNotifier) -> Callable[..., RolloutEngine]:
    clock = StepClock()

    def factory(
        vcs: InMemoryVcs,
        *,
        holder: Holder = ALICE,
        profile: EnvironmentProfile | None = None,
        options: RolloutOptions | None = None,
        required_umask: int | None = None,
    ) -> RolloutEngine:
        return RolloutEngine(
            deploy_root,
            profile or EnvironmentProfile(id="sheep"),
            vcs=vcs,
            locks=LockManager(deploy_root / ".git" / "rollout" / "lock"),
            deploy_file=DeployFileStore(default_deploy_file(deploy_root)),
            tags=TagRepository(vcs, no_remote=bool(options and options.no_remote), clock=clock),
            hooks=HookRunner(deploy_root),
            notifier=notifier,
            holder=holder,
            block_file=deploy_root / ".git" / "rollout" / "block",
            required_umask=required_umask,
            options=options,
        )

    return factory
