"""git-rollout diagnostics CLI: dump rollout state as JSON for monitoring."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

from git_rollout.config import RolloutSettings
from git_rollout.errors import RolloutError
from git_rollout.storage import DeployFileStore, LockManager, default_deploy_file
from git_rollout.tags import TagRepository, parse_cutoff
from git_rollout.vcs import GitAdapter


def load_settings(args: argparse.Namespace) -> RolloutSettings:
    settings = RolloutSettings()
    root = getattr(args, "root", None)
    if root:
        settings = settings.model_copy(update={"root": Path(root).resolve()})
    return settings


def cmd_lock(args: argparse.Namespace) -> None:
    settings = load_settings(args)
    locks = LockManager(settings.resolve(settings.lock_dir) / "lock")
    try:
        record = locks.inspect()
    except RolloutError as exc:
        print(f"Lock unreadable: {exc}")
        raise SystemExit(1)
    print(json.dumps(record.to_dict() if record else None, indent=2))


def cmd_deploy_file(args: argparse.Namespace) -> None:
    settings = load_settings(args)
    path = settings.resolve(settings.deploy_file) if settings.deploy_file else default_deploy_file(settings.root)
    try:
        record = DeployFileStore(path).read()
    except RolloutError as exc:
        print(f"Deploy file unavailable: {exc}")
        raise SystemExit(1)
    print(json.dumps({"path": str(path), "headers": record.headers, "message": record.message}, indent=2))


def cmd_tags(args: argparse.Namespace) -> None:
    settings = load_settings(args)
    try:
        repository = TagRepository(
            GitAdapter(settings.root, remote=settings.remote),
            date_format=settings.date_format,
            no_remote=True,
        )
        records = repository.list_tags(
            args.prefix,
            cutoff=parse_cutoff(args.ignore_older_than or settings.ignore_older_than),
        )
    except (RolloutError, ValueError) as exc:
        print(f"Tags unavailable: {exc}")
        raise SystemExit(1)

    if args.limit is not None and args.limit > 0:
        records = records[: args.limit]
    payload = [
        {
            "name": record.name,
            "date": record.date.isoformat() if record.date else None,
            "commit": record.commit,
            "head": record.is_head,
            "duplicate_of": record.duplicate_of,
        }
        for record in records
    ]
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="git-rollout diagnostics")
    parser.add_argument("--root", help="Deployment root (default: ROLLOUT_ROOT or .)")
    sub = parser.add_subparsers(dest="cmd")

    p_lock = sub.add_parser("lock", help="Show the current lock record")
    p_lock.set_defaults(func=cmd_lock)

    p_deploy = sub.add_parser("deploy-file", help="Show the deploy file headers and message")
    p_deploy.set_defaults(func=cmd_deploy_file)

    p_tags = sub.add_parser("tags", help="List rollout tags without contacting the remote")
    p_tags.add_argument("prefix", nargs="?")
    p_tags.add_argument("--ignore-older-than")
    p_tags.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the newest N tags",
    )
    p_tags.set_defaults(func=cmd_tags)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
