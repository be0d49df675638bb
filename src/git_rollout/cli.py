"""Command-line entry point for git-rollout."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, Sequence, TextIO

from pydantic import ValidationError

from . import __version__
from .config import RolloutSettings, get_settings
from .engine import RolloutEngine, RolloutOptions, RolloutResult, StatusReport, create_engine
from .errors import RolloutError
from .tags import TagRecord, parse_cutoff

MUTATING_ACTIONS = (
    "start",
    "hotfix",
    "sync",
    "manual-sync",
    "finish",
    "abort",
    "release",
    "tag",
    "revert",
)
READ_ONLY_ACTIONS = ("status", "show", "show-tag", "log", "diff")


def configure_logging(level: str) -> None:
    """Configure root logging for the command line."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _cutoff(value: str) -> datetime:
    try:
        return parse_cutoff(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="git-rollout",
        description="Lock, tag and roll out a git checkout to production.",
    )
    parser.add_argument("action", choices=MUTATING_ACTIONS + READ_ONLY_ACTIONS)
    parser.add_argument("prefix", nargs="?", help="Environment name (tag prefix)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    parser.add_argument("--force", action="store_true", help="Override lock and policy checks")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    parser.add_argument("--no-remote", action="store_true", help="Never fetch, pull or push")
    parser.add_argument(
        "--no-check-clean", action="store_true", help="Skip the clean working tree check"
    )
    parser.add_argument("--dry-run", action="store_true", help="Export DEPLOY_DRY_RUN=1 to hooks")
    parser.add_argument("-m", "--message", help="Annotation for the rollout tag")
    parser.add_argument("--root", type=Path, help="Deployment root (default: ROLLOUT_ROOT or .)")
    parser.add_argument("--deploy-file", type=Path, help="Path of the deploy file")

    listing = parser.add_argument_group("listing")
    listing.add_argument("-l", "--list", action="store_true", help="Show digests and messages")
    listing.add_argument("--long-digest", action="store_true", help="Show full commit hashes")
    listing.add_argument(
        "--include-branches", action="store_true", help="Also list branches and undated tags"
    )
    listing.add_argument(
        "--ignore-older-than",
        type=_cutoff,
        metavar="YYYYMMDD",
        help="Hide tags dated before this day",
    )
    listing.add_argument("--limit", type=int, help="Show at most this many entries")
    listing.add_argument("--json", action="store_true", help="Print status or listings as JSON")

    tagging = parser.add_argument_group("tagging")
    tagging.add_argument("--make-tag", action="store_true", help="With 'tag': create but do not push")
    tagging.add_argument("--to", metavar="TAG", help="With 'revert': tag to revert to")
    tagging.add_argument("--tag", metavar="TAG", help="With 'diff': compare against this tag")
    return parser


def format_tag_line(record: TagRecord, *, verbose: bool = False) -> str:
    marker = "*" if record.is_head else " "
    name = record.name
    if record.duplicate_of:
        name = f"{record.name} -> {record.duplicate_of}"
    line = f"{marker} {name}"
    if verbose:
        summary = record.message.splitlines()[0] if record.message else ""
        line = f"{line}  {record.digest}"
        if summary:
            line = f"{line}  {summary}"
    return line


def format_status(report: StatusReport) -> str:
    lines = [
        f"environment: {report.environment}",
        f"state:       {report.state.value}",
        f"head:        {report.head}",
        f"tree:        {'clean' if report.clean else 'dirty'}",
    ]
    if report.lock is not None:
        lock = report.lock
        lines.append(
            f"lock:        {lock.user}@{lock.host} pid {lock.pid}, '{lock.action}' since {lock.acquired_at.isoformat()}"
        )
        if lock.tag:
            lines.append(f"tag:         {lock.tag}")
    if report.deploy_record is not None:
        label = "current" if report.deploy_record_current else "stale"
        lines.append(f"deploy file: {report.deploy_record.tag or '-'} ({label})")
    for error in report.errors:
        lines.append(f"warning:     {error}")
    return "\n".join(lines)


def format_result(result: RolloutResult) -> str:
    line = f"{result.action}: {result.state.value} at {result.commit[:7]}"
    if result.tag:
        line = f"{line} (tag {result.tag})"
    if result.hook_failures:
        failed = ", ".join(str(item.hook.path) for item in result.hook_failures)
        line = f"{line}; failed hooks: {failed}"
    return line


def choose_interactively(
    candidates: Sequence[TagRecord],
    *,
    input_fn: Callable[[str], str] = input,
    output: TextIO | None = None,
) -> TagRecord | None:
    """Numbered menu of revert candidates; returns ``None`` when cancelled."""

    output = output or sys.stdout
    for index, record in enumerate(candidates, start=1):
        print(f"{index:3d}) {format_tag_line(record, verbose=True)}", file=output)
    while True:
        try:
            answer = input_fn(f"Revert to which rollout? [1-{len(candidates)}, q to cancel]: ")
        except EOFError:
            return None
        answer = answer.strip().lower()
        if answer in {"q", "quit", ""}:
            return None
        if answer.isdigit() and 1 <= int(answer) <= len(candidates):
            return candidates[int(answer) - 1]
        print(f"Please answer a number between 1 and {len(candidates)}.", file=output)


def _tag_payload(record: TagRecord) -> dict[str, object]:
    return {
        "name": record.name,
        "date": record.date.isoformat() if record.date else None,
        "commit": record.commit,
        "digest": record.digest,
        "head": record.is_head,
        "branch": record.is_branch,
        "duplicate_of": record.duplicate_of,
        "message": record.message,
    }


def _run_action(engine: RolloutEngine, args: argparse.Namespace) -> int:
    action = args.action
    if action in MUTATING_ACTIONS:
        if action == "start":
            result = engine.start()
        elif action == "hotfix":
            result = engine.hotfix()
        elif action == "sync":
            result = engine.sync()
        elif action == "manual-sync":
            result = engine.manual_sync()
        elif action == "finish":
            result = engine.finish()
        elif action == "abort":
            result = engine.abort()
        elif action == "release":
            result = engine.release()
        elif action == "tag":
            result = engine.tag(make_tag_only=args.make_tag)
        else:
            result = engine.revert(
                target=args.to,
                chooser=None if args.to else choose_interactively,
                limit=args.limit,
            )
        print(format_result(result))
        return 0

    if action == "status":
        report = engine.status()
        print(json.dumps(report.to_dict(), indent=2) if args.json else format_status(report))
    elif action in {"show", "log"}:
        if action == "show":
            records = engine.show(
                include_branches=args.include_branches,
                long_digest=args.long_digest,
                cutoff=args.ignore_older_than,
            )
            if args.limit is not None:
                records = records[: args.limit]
        else:
            records = engine.log(limit=args.limit, cutoff=args.ignore_older_than)
        if args.json:
            print(json.dumps([_tag_payload(record) for record in records], indent=2))
        else:
            for record in records:
                print(format_tag_line(record, verbose=args.list or action == "log"))
    elif action == "show-tag":
        print(engine.show_tag().name)
    else:
        sys.stdout.write(engine.diff(args.tag))
    return 0


def run(argv: Sequence[str] | None = None, *, settings: RolloutSettings | None = None, **engine_kwargs) -> int:
    """Parse ``argv``, run one action and return the process exit status."""

    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = settings or get_settings()
    except ValidationError as exc:
        print(f"error: invalid configuration: {exc}", file=sys.stderr)
        return 1
    if args.root is not None:
        settings = settings.model_copy(update={"root": args.root.expanduser().resolve()})
    configure_logging("DEBUG" if args.verbose else settings.log_level)

    options = RolloutOptions(
        force=args.force,
        no_check_clean=args.no_check_clean,
        no_remote=args.no_remote,
        dry_run=args.dry_run,
        message=args.message,
    )
    try:
        engine = create_engine(
            settings,
            environment=args.prefix,
            options=options,
            deploy_file=args.deploy_file,
            **engine_kwargs,
        )
        return _run_action(engine, args)
    except RolloutError as exc:
        print(f"error: {exc}", file=sys.stderr)
        if exc.hint:
            print(f"hint: {exc.hint}", file=sys.stderr)
        return 1


def main(argv: list[str] | None = None) -> None:
    """Entry point for the ``git-rollout`` console script."""

    status = run(argv)
    if status:
        raise SystemExit(status)


if __name__ == "__main__":
    main()
