"""Rollout state machine: start, sync, finish, abort, release, tag and revert."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

from .config import RolloutSettings, get_settings
from .environments import EnvironmentLoader, EnvironmentProfile
from .errors import (
    AlreadyLocked,
    BlockedByPolicy,
    ConfigurationError,
    DeployFileNotFound,
    DirtyWorkingTree,
    MalformedDeployRecord,
    MalformedLockRecord,
    NoMatchingTag,
    NotLocked,
    PermissionDenied,
    RolloutStateError,
    SyncFailed,
)
from .hooks import HookContext, HookExecutionResult, HookRunner
from .notify import LoggingNotifier, Notifier, RolloutNotice
from .storage import DeployFileStore, DeployRecord, Holder, LockManager, LockRecord, default_deploy_file
from .tags import TagRecord, TagRepository, parse_cutoff
from .vcs import GitAdapter, VcsAdapter

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = "lock"


class RolloutState(str, Enum):
    UNLOCKED = "unlocked"
    STARTED = "started"
    SYNC_PENDING = "sync-pending"
    SYNC_FAILED = "sync-failed"
    SYNCED = "synced"


def derive_state(lock: LockRecord | None) -> RolloutState:
    """Rollout state implied by the lock; no lock means UNLOCKED."""

    if lock is None:
        return RolloutState.UNLOCKED
    return RolloutState(lock.phase)


def current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


@dataclass(slots=True)
class RolloutOptions:
    """Flags shared by the mutating actions of one invocation."""

    force: bool = False
    no_check_clean: bool = False
    no_remote: bool = False
    dry_run: bool = False
    message: str | None = None


@dataclass(slots=True)
class RolloutResult:
    action: str
    state: RolloutState
    commit: str
    tag: str | None = None
    hook_failures: list[HookExecutionResult] = field(default_factory=list)


@dataclass(slots=True)
class StatusReport:
    environment: str
    state: RolloutState
    head: str
    clean: bool
    lock: LockRecord | None
    deploy_record: DeployRecord | None
    deploy_record_current: bool
    status_text: str
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "environment": self.environment,
            "state": self.state.value,
            "head": self.head,
            "clean": self.clean,
            "lock": self.lock.to_dict() if self.lock else None,
            "deploy_record": (
                {"headers": dict(self.deploy_record.headers), "message": self.deploy_record.message}
                if self.deploy_record
                else None
            ),
            "deploy_record_current": self.deploy_record_current,
            "status_text": self.status_text,
            "errors": list(self.errors),
        }


class RolloutEngine:
    """Drive one environment's rollouts from a deployment root.

    Preconditions are checked before anything is changed. Once an action has
    started mutating state, a failure leaves the lock in place so the operator
    can inspect the exact situation; only ``abort``, ``finish`` and the
    successful end of ``sync``/``release``/``revert`` release it.
    """

    def __init__(
        self,
        root: Path,
        environment: EnvironmentProfile,
        *,
        vcs: VcsAdapter,
        locks: LockManager,
        deploy_file: DeployFileStore,
        tags: TagRepository,
        hooks: HookRunner,
        notifier: Notifier | None = None,
        holder: Holder | None = None,
        block_file: Path | None = None,
        required_umask: int | None = 0o002,
        cutoff: datetime | None = None,
        options: RolloutOptions | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._root = Path(root)
        self._environment = environment
        self._vcs = vcs
        self._locks = locks
        self._deploy_file = deploy_file
        self._tags = tags
        self._hooks = hooks
        self._notifier = notifier or LoggingNotifier()
        self._holder = holder or Holder.current()
        self._block_file = block_file
        self._required_umask = required_umask
        self._cutoff = cutoff
        self._options = options or RolloutOptions()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def environment(self) -> EnvironmentProfile:
        return self._environment

    @property
    def options(self) -> RolloutOptions:
        return self._options

    @property
    def name(self) -> str:
        return self._environment.id

    # -- mutating actions -------------------------------------------------

    def start(self, *, hotfix: bool = False) -> RolloutResult:
        """Take the lock and bring the checkout up to date.

        ``hotfix`` rolls out whatever is checked out, without pulling.
        """

        action = "hotfix" if hotfix else "start"
        self._check_lock_free()
        self._check_policy()
        self._check_clean()

        start_commit = self._vcs.current_commit()
        context = self._context(action, start_commit=start_commit)
        self._hooks.run("pre-start", self.name, context)
        self._locks.acquire(
            self._holder,
            action,
            environment=self.name,
            start_commit=start_commit,
            force=self._options.force,
        )

        if not hotfix and not self._options.no_remote:
            self._hooks.run("pre-pull", self.name, context)
            self._vcs.pull()
            context.commit = self._vcs.current_commit()
            self._hooks.run("post-pull", self.name, context)
            self._hooks.run("post-tree-update", self.name, context)

        head = self._vcs.current_commit()
        logger.info(
            "Rollout started",
            extra={"environment": self.name, "action": action, "start_commit": start_commit, "head": head},
        )
        return RolloutResult(action=action, state=RolloutState.STARTED, commit=head)

    def hotfix(self) -> RolloutResult:
        return self.start(hotfix=True)

    def abort(self) -> RolloutResult:
        """Put the tree back where ``start`` found it and drop the lock.

        Hook failures on the way are logged but never keep the lock held.
        """

        try:
            lock = self._locks.inspect()
        except MalformedLockRecord:
            if not self._options.force:
                raise
            lock = None

        if lock is None:
            if not self._options.force:
                raise NotLocked("nothing to abort: deployment is not locked")
            self._locks.release(force=True)
            head = self._vcs.current_commit()
            logger.info("Nothing to abort", extra={"environment": self.name})
            return RolloutResult(action="abort", state=RolloutState.UNLOCKED, commit=head)

        if not self._holder.owns(lock) and not self._options.force:
            raise AlreadyLocked(lock)

        target = lock.start_commit or self._vcs.current_commit()
        self._vcs.reset_hard(target)
        try:
            failures = self._restore_hooks(
                self._context("abort", start_commit=target, tag=lock.tag)
            )
        finally:
            self._locks.release(self._holder, force=True)
        logger.info("Rollout aborted", extra={"environment": self.name, "commit": target})
        return RolloutResult(
            action="abort", state=RolloutState.UNLOCKED, commit=target, hook_failures=failures
        )

    def sync(self) -> RolloutResult:
        """Tag, record and run the sync hook; finish automatically on success."""

        lock = self._held_lock("sync", {RolloutState.STARTED})
        self._hooks.sync_hook_path(self.name)
        tag, lock = self._cut_rollout(lock, "sync")
        return self._run_sync_hook(lock, tag, action="sync")

    def manual_sync(self) -> RolloutResult:
        """Tag and record, leaving the actual sync and ``finish`` to the operator."""

        lock = self._held_lock("manual-sync", {RolloutState.STARTED})
        tag, lock = self._cut_rollout(lock, "manual-sync")
        logger.info(
            "Tag cut; sync by hand, then run finish",
            extra={"environment": self.name, "tag": tag.name},
        )
        return RolloutResult(
            action="manual-sync", state=RolloutState.SYNC_PENDING, commit=tag.commit, tag=tag.name
        )

    def finish(self) -> RolloutResult:
        lock = self._held_lock(
            "finish",
            {RolloutState.SYNC_PENDING, RolloutState.SYNC_FAILED, RolloutState.SYNCED},
        )
        return self._finish(lock, action="finish")

    def release(self) -> RolloutResult:
        """Single-target rollout: tag and record without a sync hook."""

        self._require_tag_permission("release")
        lock = self._held_lock("release", {RolloutState.STARTED})
        tag, lock = self._cut_rollout(lock, "release")
        lock.phase = RolloutState.SYNCED.value
        self._locks.update(lock)
        return self._finish(lock, action="release")

    def tag(self, *, make_tag_only: bool = False) -> RolloutResult:
        """Tag HEAD outside the lock lifecycle; ``make_tag_only`` skips the push."""

        self._require_tag_permission("tag")
        lock = self._inspect_lock()
        if lock is not None and not self._holder.owns(lock) and not self._options.force:
            raise AlreadyLocked(lock)

        message = self._message("tag")
        record = self._tags.create_tag(self.name, message, push=not make_tag_only)
        self._deploy_file.write(self._deploy_record(record, "tag"))
        return RolloutResult(
            action="tag",
            state=derive_state(self._inspect_lock()),
            commit=record.commit,
            tag=record.name,
        )

    def revert(
        self,
        *,
        target: str | None = None,
        chooser: Callable[[Sequence[TagRecord]], TagRecord | None] | None = None,
        limit: int | None = None,
    ) -> RolloutResult:
        """Roll the environment back to an earlier rollout tag.

        The selected commit is checked out and then goes through the regular
        sync pipeline, producing a new tag on the same commit.
        """

        self._check_lock_free()
        self._check_policy()
        self._check_clean()
        self._hooks.sync_hook_path(self.name)

        selected = self._select_revert_target(target, chooser, limit)
        start_commit = self._vcs.current_commit()
        context = self._context("revert", start_commit=start_commit)
        self._hooks.run("pre-start", self.name, context)
        lock = self._locks.acquire(
            self._holder,
            "revert",
            environment=self.name,
            start_commit=start_commit,
            force=self._options.force,
        )

        self._vcs.reset_hard(selected.commit)
        context.commit = selected.commit
        failures = self._restore_hooks(context)

        message = self._options.message or f"Revert to {selected.name}"
        tag, lock = self._cut_rollout(
            lock, "revert", message=message, extra={"reverted-to": selected.name}
        )
        return self._run_sync_hook(lock, tag, action="revert", hook_failures=failures)

    # -- read-only actions ------------------------------------------------

    def status(self) -> StatusReport:
        errors: list[str] = []
        try:
            lock = self._locks.inspect()
        except MalformedLockRecord as exc:
            lock = None
            errors.append(str(exc))

        head = self._vcs.current_commit()
        record: DeployRecord | None = None
        try:
            record = self._deploy_file.read()
        except DeployFileNotFound:
            pass
        except MalformedDeployRecord as exc:
            errors.append(str(exc))

        return StatusReport(
            environment=self.name,
            state=derive_state(lock),
            head=head,
            clean=self._vcs.working_tree_clean(),
            lock=lock,
            deploy_record=record,
            deploy_record_current=record is not None and record.commit == head,
            status_text=self._vcs.status_text(),
            errors=errors,
        )

    def show(
        self,
        *,
        include_branches: bool = False,
        long_digest: bool = False,
        cutoff: datetime | None = None,
    ) -> list[TagRecord]:
        return self._tags.list_tags(
            self.name,
            cutoff=cutoff or self._cutoff,
            include_branches=include_branches,
            long_digest=long_digest,
        )

    def show_tag(self) -> TagRecord:
        """Return the tag describing HEAD, preferring the one named by the deploy file."""

        head = self._vcs.current_commit()
        try:
            record = self._deploy_file.read_if_current(head)
        except MalformedDeployRecord as exc:
            logger.warning("Ignoring unreadable deploy file", extra={"error": str(exc)})
            record = None
        if record is not None and record.tag:
            try:
                return self._tags.find(self.name, record.tag)
            except NoMatchingTag:
                logger.warning("Deploy file names a missing tag", extra={"tag": record.tag})

        at_head = self._tags.tags_at_head(self.name)
        if not at_head:
            raise NoMatchingTag(f"HEAD {head[:7]} carries no '{self.name}' rollout tag")
        return at_head[0]

    def log(self, *, limit: int | None = None, cutoff: datetime | None = None) -> list[TagRecord]:
        records = [
            record
            for record in self._tags.list_tags(self.name, cutoff=cutoff or self._cutoff)
            if record.date is not None
        ]
        return records[:limit] if limit is not None else records

    def diff(self, tag: str | None = None) -> str:
        """Diff between a rollout tag (default: the latest) and HEAD."""

        if tag is not None:
            base = self._tags.find(self.name, tag)
        else:
            listed = self.log(limit=1)
            if not listed:
                raise NoMatchingTag(f"no '{self.name}' rollout tags to diff against")
            base = listed[0]
        return self._vcs.diff(base.commit, self._vcs.current_commit())

    # -- internals --------------------------------------------------------

    def _context(
        self,
        action: str,
        *,
        start_commit: str | None = None,
        tag: str | None = None,
    ) -> HookContext:
        return HookContext(
            environment=self.name,
            action=action,
            commit=self._vcs.current_commit(),
            start_commit=start_commit,
            tag=tag,
            deploy_file=self._deploy_file.path,
            dry_run=self._options.dry_run,
        )

    def _inspect_lock(self) -> LockRecord | None:
        try:
            return self._locks.inspect()
        except MalformedLockRecord:
            if self._options.force:
                return None
            raise

    def _check_lock_free(self) -> None:
        lock = self._inspect_lock()
        if lock is not None and not self._options.force:
            raise AlreadyLocked(lock)

    def _check_policy(self) -> None:
        if self._block_file is not None and self._block_file.exists():
            reason = self._block_file.read_text(encoding="utf-8").strip()
            raise BlockedByPolicy(
                f"rollouts are blocked by {self._block_file}" + (f": {reason}" if reason else ""),
                hint="remove the block file once rollouts may resume",
            )
        if self._required_umask is None or self._options.force:
            return
        mask = current_umask()
        if mask & ~self._required_umask:
            raise BlockedByPolicy(
                f"umask {mask:04o} is stricter than the required {self._required_umask:04o}",
                hint=f"run 'umask {self._required_umask:04o}' first, or pass --force",
            )

    def _check_clean(self) -> None:
        if self._options.no_check_clean:
            return
        if not self._vcs.working_tree_clean():
            raise DirtyWorkingTree("working tree has uncommitted changes")

    def _held_lock(self, action: str, allowed: Iterable[RolloutState]) -> LockRecord:
        lock = self._locks.inspect()
        if lock is None:
            raise NotLocked(f"cannot {action}: deployment is not locked")
        if not self._holder.owns(lock) and not self._options.force:
            raise AlreadyLocked(lock)
        state = derive_state(lock)
        if state not in set(allowed):
            raise RolloutStateError(
                f"cannot {action} while the rollout is {state.value}",
                hint=_STATE_HINTS.get(state),
            )
        return lock

    def _require_tag_permission(self, action: str) -> None:
        if not self._environment.can_make_tags:
            raise PermissionDenied(f"environment '{self.name}' is not allowed to {action} tags on its own")

    def _message(self, action: str) -> str:
        if self._options.message:
            return self._options.message
        return f"{self.name} {action} by {self._holder.user}@{self._holder.host}"

    def _deploy_record(
        self, tag: TagRecord, action: str, extra: dict[str, str] | None = None
    ) -> DeployRecord:
        record = DeployRecord(message=tag.message)
        record.set("commit", tag.commit)
        record.set("tag", tag.name)
        record.set("deploy-date", self._clock().isoformat(timespec="seconds"))
        record.set("deployed-from", self._holder.host)
        record.set("deployed-by", self._holder.user)
        record.set("action", action)
        for key, value in (extra or {}).items():
            record.set(key, value)
        return record

    def _cut_rollout(
        self,
        lock: LockRecord,
        action: str,
        *,
        message: str | None = None,
        extra: dict[str, str] | None = None,
    ) -> tuple[TagRecord, LockRecord]:
        context = self._context(action, start_commit=lock.start_commit)
        self._hooks.run("pre-sync", self.name, context)

        tag = self._tags.create_tag(self.name, message or self._message(action), push=True)
        self._deploy_file.write(self._deploy_record(tag, action, extra))

        lock.phase = RolloutState.SYNC_PENDING.value
        lock.tag = tag.name
        self._locks.update(lock)
        return tag, lock

    def _run_sync_hook(
        self,
        lock: LockRecord,
        tag: TagRecord,
        *,
        action: str,
        hook_failures: list[HookExecutionResult] | None = None,
    ) -> RolloutResult:
        context = self._context(action, start_commit=lock.start_commit, tag=tag.name)
        result = self._hooks.run_sync(self.name, context)
        if not result.ok:
            lock.phase = RolloutState.SYNC_FAILED.value
            self._locks.update(lock)
            logger.error(
                "Sync hook failed; lock kept",
                extra={"environment": self.name, "tag": tag.name, "returncode": result.returncode},
            )
            raise SyncFailed(result.hook.path, result.returncode, tag.name)

        lock.phase = RolloutState.SYNCED.value
        self._locks.update(lock)
        return self._finish(lock, action=action, hook_failures=hook_failures)

    def _finish(
        self,
        lock: LockRecord,
        *,
        action: str,
        hook_failures: list[HookExecutionResult] | None = None,
    ) -> RolloutResult:
        context = self._context(action, start_commit=lock.start_commit, tag=lock.tag)
        if not lock.post_sync_done:
            self._hooks.run("post-sync", self.name, context)
            lock.post_sync_done = True
            self._locks.update(lock)

        head = self._vcs.current_commit()
        self._notify(lock, head)
        self._locks.release(self._holder, force=True)
        logger.info(
            "Rollout finished",
            extra={"environment": self.name, "action": action, "tag": lock.tag, "commit": head},
        )
        return RolloutResult(
            action=action,
            state=RolloutState.UNLOCKED,
            commit=head,
            tag=lock.tag,
            hook_failures=list(hook_failures or []),
        )

    def _notify(self, lock: LockRecord, head: str) -> None:
        recipients = list(self._environment.notify)
        if not recipients:
            return
        try:
            record = self._deploy_file.read_if_current(head)
        except MalformedDeployRecord:
            record = None
        self._notifier.notify(
            RolloutNotice(
                environment=self.name,
                action=lock.action,
                tag=lock.tag,
                commit=head,
                operator=f"{lock.user}@{lock.host}",
                message=record.message if record else "",
                recipients=recipients,
                metadata=dict(self._environment.metadata),
            )
        )

    def _restore_hooks(self, context: HookContext) -> list[HookExecutionResult]:
        failures: list[HookExecutionResult] = []
        for phase in ("post-reset", "post-tree-update"):
            outcome = self._hooks.run(phase, self.name, context, tolerate_failures=True)
            failures.extend(outcome.failures)
        if failures:
            logger.warning(
                "Hooks failed while restoring the working tree",
                extra={"environment": self.name, "failed_hooks": [str(item.hook.path) for item in failures]},
            )
        return failures

    def _select_revert_target(
        self,
        target: str | None,
        chooser: Callable[[Sequence[TagRecord]], TagRecord | None] | None,
        limit: int | None,
    ) -> TagRecord:
        if target is not None:
            return self._tags.find(self.name, target)

        candidates = self._tags.revert_candidates(self.name, limit=limit, cutoff=self._cutoff)
        if not candidates:
            raise NoMatchingTag(f"no '{self.name}' rollout tags to revert to")
        if chooser is None:
            raise ConfigurationError(
                "revert needs a target tag", hint="pass --to TAG or run revert interactively"
            )
        selected = chooser(candidates)
        if selected is None:
            raise NoMatchingTag("no tag selected; nothing reverted")
        return selected


_STATE_HINTS = {
    RolloutState.STARTED: "run 'sync' (or 'manual-sync') to cut a tag, or 'abort'",
    RolloutState.SYNC_PENDING: "sync by hand, then run 'finish'",
    RolloutState.SYNC_FAILED: "fix the problem, run the sync hook by hand, then run 'finish'",
    RolloutState.SYNCED: "run 'finish'",
}


def create_engine(
    settings: RolloutSettings | None = None,
    *,
    environment: str | None = None,
    options: RolloutOptions | None = None,
    vcs: VcsAdapter | None = None,
    notifier: Notifier | None = None,
    holder: Holder | None = None,
    deploy_file: Path | None = None,
    clock: Callable[[], datetime] | None = None,
) -> RolloutEngine:
    """Wire a :class:`RolloutEngine` from settings and environment profiles."""

    settings = settings or get_settings()
    options = options or RolloutOptions()
    environment_id = environment or settings.environment
    if not environment_id:
        raise ConfigurationError(
            "no environment selected", hint="pass a PREFIX argument or set ROLLOUT_ENVIRONMENT"
        )

    loader = EnvironmentLoader(settings.resolve(path) for path in settings.environment_paths)
    profile = loader.get(environment_id)

    try:
        cutoff = parse_cutoff(settings.ignore_older_than)
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc

    root = settings.root
    options = replace(options, no_remote=options.no_remote or settings.no_remote)
    vcs = vcs or GitAdapter(root, remote=settings.remote)

    if deploy_file is not None:
        deploy_path = settings.resolve(deploy_file)
    elif settings.deploy_file is not None:
        deploy_path = settings.resolve(settings.deploy_file)
    else:
        deploy_path = default_deploy_file(root)

    return RolloutEngine(
        root,
        profile,
        vcs=vcs,
        locks=LockManager(settings.resolve(settings.lock_dir) / LOCK_FILE_NAME),
        deploy_file=DeployFileStore(deploy_path),
        tags=TagRepository(
            vcs,
            date_format=profile.date_format or settings.date_format,
            no_remote=options.no_remote,
            clock=clock,
        ),
        hooks=HookRunner(root, hook_dir=settings.hook_dir),
        notifier=notifier,
        holder=holder,
        block_file=settings.resolve(settings.block_file),
        required_umask=settings.required_umask,
        cutoff=cutoff,
        options=options,
        clock=clock,
    )


__all__ = [
    "RolloutEngine",
    "RolloutOptions",
    "RolloutResult",
    "RolloutState",
    "StatusReport",
    "create_engine",
    "current_umask",
    "derive_state",
]
