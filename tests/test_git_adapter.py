from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from git_rollout import engine as engine_module
from git_rollout.config import RolloutSettings
from git_rollout.engine import RolloutState, create_engine
from git_rollout.errors import VcsError
from git_rollout.vcs import GitAdapter

from conftest import ALICE, StepClock, write_hook

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def git(cwd: Path, *args: str) -> str:
    process = subprocess.run(
        ["git", *args], cwd=str(cwd), capture_output=True, text=True, check=True
    )
    return process.stdout.strip()


def commit_file(checkout: Path, name: str, content: str) -> str:
    (checkout / name).write_text(content, encoding="utf-8")
    git(checkout, "add", name)
    git(checkout, "commit", "--quiet", "-m", f"update {name}")
    return git(checkout, "rev-parse", "HEAD")


@pytest.fixture(autouse=True)
def git_identity(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for role in ("AUTHOR", "COMMITTER"):
        monkeypatch.setenv(f"GIT_{role}_NAME", "Rollout Tests")
        monkeypatch.setenv(f"GIT_{role}_EMAIL", "rollout@example.com")


@pytest.fixture
def remote(tmp_path: Path) -> Path:
    path = tmp_path / "remote.git"
    git(tmp_path, "init", "--quiet", "--bare", "--initial-branch=master", str(path))
    return path


def clone(remote: Path, target: Path) -> Path:
    git(remote.parent, "clone", "--quiet", str(remote), str(target))
    return target


@pytest.fixture
def checkout(tmp_path: Path, remote: Path) -> Path:
    path = clone(remote, tmp_path / "checkout")
    commit_file(path, "app.txt", "one\n")
    git(path, "push", "--quiet", "-u", "origin", "master")
    return path


def test_current_commit_and_clean_tree(checkout: Path) -> None:
    adapter = GitAdapter(checkout)

    assert adapter.current_commit() == git(checkout, "rev-parse", "HEAD")
    assert adapter.working_tree_clean()

    (checkout / "scratch.txt").write_text("untracked\n", encoding="utf-8")
    assert adapter.working_tree_clean()

    (checkout / "app.txt").write_text("changed\n", encoding="utf-8")
    assert not adapter.working_tree_clean()
    assert "app.txt" in adapter.status_text()


def test_annotated_tags_are_listed_by_commit(checkout: Path) -> None:
    adapter = GitAdapter(checkout)
    head = adapter.current_commit()

    adapter.create_annotated_tag("sheep-20080825-2105", "first rollout\n\nwith details", head)
    adapter.create_annotated_tag("goat-20080825-2105", "other environment", head)

    tags = adapter.list_tags("sheep-*")
    assert [tag.name for tag in tags] == ["sheep-20080825-2105"]
    assert tags[0].commit == head
    assert tags[0].message == "first rollout\n\nwith details"
    assert {tag.name for tag in adapter.list_tags()} == {"sheep-20080825-2105", "goat-20080825-2105"}

    with pytest.raises(VcsError):
        adapter.create_annotated_tag("sheep-20080825-2105", "again", head)


def test_push_and_fetch_tags(tmp_path: Path, remote: Path, checkout: Path) -> None:
    adapter = GitAdapter(checkout)
    adapter.create_annotated_tag("sheep-20080825-2105", "rollout", adapter.current_commit())
    adapter.push("refs/tags/sheep-20080825-2105")

    assert "refs/tags/sheep-20080825-2105" in git(checkout, "ls-remote", "--tags", "origin")

    other = GitAdapter(clone(remote, tmp_path / "other"))
    other.create_annotated_tag("sheep-20080826-0900", "from elsewhere", other.current_commit())
    other.push("refs/tags/sheep-20080826-0900")

    adapter.fetch_tags()
    assert [tag.name for tag in adapter.list_tags("sheep-*")] == [
        "sheep-20080825-2105",
        "sheep-20080826-0900",
    ]


def test_pull_reset_and_diff(tmp_path: Path, remote: Path, checkout: Path) -> None:
    adapter = GitAdapter(checkout)
    before = adapter.current_commit()

    upstream = clone(remote, tmp_path / "upstream")
    after = commit_file(upstream, "app.txt", "two\n")
    git(upstream, "push", "--quiet", "origin", "master")

    adapter.pull()
    assert adapter.current_commit() == after
    assert "app.txt" in adapter.diff(before, after)
    assert [branch.name for branch in adapter.list_branches()] == ["master"]
    assert adapter.list_branches()[0].commit == after

    adapter.reset_hard(before)
    assert adapter.current_commit() == before
    assert (checkout / "app.txt").read_text(encoding="utf-8") == "one\n"


def test_failing_command_raises(checkout: Path) -> None:
    with pytest.raises(VcsError) as excinfo:
        GitAdapter(checkout).reset_hard("does-not-exist")

    assert excinfo.value.returncode != 0


def test_missing_executable(tmp_path: Path) -> None:
    with pytest.raises(VcsError):
        GitAdapter(tmp_path, executable=tmp_path / "no-such-git")


def test_rollout_against_real_repository(tmp_path: Path, remote: Path, checkout: Path, monkeypatch) -> None:
    monkeypatch.setattr(engine_module, "current_umask", lambda: 0o002)
    write_hook(checkout / "deploy" / "sync" / "sheep.sync")
    settings = RolloutSettings(root=checkout, environment_paths=(tmp_path / "environments",))
    engine = create_engine(settings, environment="sheep", holder=ALICE, clock=StepClock())

    engine.start()
    result = engine.sync()

    assert result.state is RolloutState.UNLOCKED
    assert result.tag == "sheep-20080825-2105"
    assert "refs/tags/sheep-20080825-2105" in git(checkout, "ls-remote", "--tags", "origin")
    assert engine.show_tag().name == result.tag
    assert engine.status().deploy_record_current
    assert not (checkout / ".git" / "rollout" / "lock").exists()
