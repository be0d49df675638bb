"""Rollout tags: naming, parsing, listing and revert candidates."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Iterable

from .errors import NoMatchingTag, TagNameCollision
from .vcs.base import TagRef, VcsAdapter

logger = logging.getLogger(__name__)

DEFAULT_DATE_FORMAT = "%Y%m%d-%H%M"
DEFAULT_CUTOFF = datetime(2000, 1, 1)
SENTINEL_BRANCHES = frozenset({"master", "trunk"})
SHORT_DIGEST = 7


@dataclass(frozen=True, slots=True)
class TagRecord:
    """One rollout tag, or a branch when branches are included in a listing."""

    name: str
    prefix: str | None
    date: datetime | None
    commit: str
    message: str = ""
    sequence: int = 1
    is_head: bool = False
    is_branch: bool = False
    duplicate_of: str | None = None
    digest: str = ""

    @property
    def is_duplicate(self) -> bool:
        return self.duplicate_of is not None


def _parse_stamp(stamp: str, date_format: str) -> tuple[datetime, int] | None:
    try:
        return datetime.strptime(stamp, date_format), 1
    except ValueError:
        pass
    stem, sep, suffix = stamp.rpartition("-")
    if not sep or not suffix.isdigit() or int(suffix) < 2:
        return None
    try:
        return datetime.strptime(stem, date_format), int(suffix)
    except ValueError:
        return None


def parse_tag_date(
    name: str, prefix: str, date_format: str = DEFAULT_DATE_FORMAT
) -> tuple[datetime, int] | None:
    """Return ``(date, sequence)`` embedded in ``name``, or ``None`` when undated.

    ``sequence`` is the collision disambiguator, 1 when the name carries none.
    """

    lead = f"{prefix}-"
    if not name.startswith(lead):
        return None
    return _parse_stamp(name[len(lead) :], date_format)


def split_tag_name(
    name: str, date_format: str = DEFAULT_DATE_FORMAT
) -> tuple[str, datetime, int] | None:
    """Infer ``(prefix, date, sequence)`` from a tag name of unknown prefix."""

    for index, char in enumerate(name):
        if char != "-" or index == 0:
            continue
        parsed = _parse_stamp(name[index + 1 :], date_format)
        if parsed is not None:
            return name[:index], parsed[0], parsed[1]
    return None


def parse_cutoff(text: str) -> datetime:
    """Parse a ``--ignore-older-than`` value such as ``20080826`` or ``2008-08-26``."""

    value = text.strip()
    for fmt in ("%Y%m%d", "%Y-%m-%d"):
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise ValueError(f"cannot parse date '{text}'; expected YYYYMMDD or YYYY-MM-DD") from exc
    # Tag names carry local wall-clock time.
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _descending(date: datetime) -> tuple[int, ...]:
    return tuple(-part for part in (*date.timetuple()[:6], date.microsecond))


def rank_key(
    has_date: bool,
    date: datetime | None,
    sequence: int,
    is_sentinel: bool,
    name: str,
) -> tuple:
    """Sort key for listings.

    Dated entries come first, newest first (a higher disambiguator counts as
    newer). Undated entries follow: sentinel branch names first, then the rest
    alphabetically.
    """

    if has_date and date is not None:
        return (0, _descending(date), -sequence, name)
    return (1, 0 if is_sentinel else 1, name)


def record_rank(record: TagRecord) -> tuple:
    return rank_key(
        record.date is not None,
        record.date,
        record.sequence,
        record.name in SENTINEL_BRANCHES,
        record.name,
    )


def canonical_names(records: Iterable[TagRecord]) -> dict[str, str]:
    """Map each commit to the name of its oldest dated tag."""

    oldest: dict[str, TagRecord] = {}
    for record in records:
        if record.date is None:
            continue
        current = oldest.get(record.commit)
        if current is None or (record.date, record.sequence, record.name) < (
            current.date,
            current.sequence,
            current.name,
        ):
            oldest[record.commit] = record
    return {commit: record.name for commit, record in oldest.items()}


class TagRepository:
    """List, parse and create rollout tags through a VCS adapter."""

    def __init__(
        self,
        vcs: VcsAdapter,
        *,
        date_format: str = DEFAULT_DATE_FORMAT,
        no_remote: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._vcs = vcs
        self._date_format = date_format
        self._no_remote = no_remote
        self._clock = clock or datetime.now

    @property
    def date_format(self) -> str:
        return self._date_format

    def format_name(self, prefix: str, when: datetime, date_format: str | None = None) -> str:
        return f"{prefix}-{when.strftime(date_format or self._date_format)}"

    def create_tag(
        self,
        prefix: str,
        message: str,
        *,
        date_format: str | None = None,
        push: bool = False,
    ) -> TagRecord:
        """Create an annotated tag at HEAD, disambiguating the name if needed."""

        date_format = date_format or self._date_format
        push = push and not self._no_remote
        if push:
            self._vcs.fetch_tags()

        head = self._vcs.current_commit()
        base = self.format_name(prefix, self._clock(), date_format)
        taken = {ref.name for ref in self._vcs.list_tags(f"{base}*")}
        name, sequence = self._claim_name(base, taken)

        self._vcs.create_annotated_tag(name, message, head)
        if push:
            self._vcs.push(f"refs/tags/{name}")
        logger.info("Created rollout tag", extra={"tag": name, "commit": head, "pushed": push})

        parsed = parse_tag_date(name, prefix, date_format)
        return TagRecord(
            name=name,
            prefix=prefix,
            date=parsed[0] if parsed else None,
            commit=head,
            message=message,
            sequence=sequence,
            is_head=True,
            digest=head[:SHORT_DIGEST],
        )

    @staticmethod
    def _ensure_free(name: str, taken: set[str]) -> None:
        if name in taken:
            raise TagNameCollision(name)

    def _claim_name(self, base: str, taken: set[str]) -> tuple[str, int]:
        for sequence in itertools.count(1):
            name = base if sequence == 1 else f"{base}-{sequence}"
            try:
                self._ensure_free(name, taken)
            except TagNameCollision as exc:
                logger.debug("Tag name taken; trying next suffix", extra={"tag": exc.name})
                continue
            return name, sequence
        raise AssertionError("unreachable")  # pragma: no cover

    def list_tags(
        self,
        prefix: str | None,
        *,
        cutoff: datetime | None = None,
        include_branches: bool = False,
        long_digest: bool = False,
    ) -> list[TagRecord]:
        """Return the tags of ``prefix`` (all tags when ``None``) in listing order."""

        if not self._no_remote:
            self._vcs.fetch_tags()
        head = self._vcs.current_commit()
        floor = cutoff or DEFAULT_CUTOFF

        dated: list[TagRecord] = []
        undated: list[TagRecord] = []
        pattern = f"{prefix}-*" if prefix else None
        for ref in self._vcs.list_tags(pattern):
            record = self._to_record(ref, prefix, head, long_digest)
            if record.date is not None:
                dated.append(record)
            elif include_branches:
                undated.append(record)

        canonical = canonical_names(dated)
        listed = [
            replace(
                record,
                duplicate_of=canonical[record.commit] if canonical[record.commit] != record.name else None,
            )
            for record in dated
            if record.date >= floor
        ]

        if include_branches:
            for branch in self._vcs.list_branches():
                undated.append(
                    TagRecord(
                        name=branch.name,
                        prefix=None,
                        date=None,
                        commit=branch.commit,
                        is_head=branch.commit == head,
                        is_branch=True,
                        digest=self._digest(branch.commit, long_digest),
                    )
                )

        return sorted(listed + undated, key=record_rank)

    def revert_candidates(
        self,
        prefix: str,
        *,
        limit: int | None = None,
        cutoff: datetime | None = None,
    ) -> list[TagRecord]:
        """Tags to offer in the revert menu, one name per rolled-out commit."""

        candidates: list[TagRecord] = []
        seen: set[str] = set()
        for record in self.list_tags(prefix, cutoff=cutoff):
            if record.date is None or record.commit in seen:
                continue
            seen.add(record.commit)
            candidates.append(record)
            if limit is not None and len(candidates) >= limit:
                break
        return candidates

    def find(self, prefix: str | None, name: str) -> TagRecord:
        """Look up ``name``, which must be a dated tag of ``prefix`` when one is given."""

        if prefix and parse_tag_date(name, prefix, self._date_format) is None:
            raise NoMatchingTag(f"'{name}' is not a '{prefix}' rollout tag")
        head = self._vcs.current_commit()
        for ref in self._vcs.list_tags(name):
            if ref.name == name:
                return self._to_record(ref, prefix, head, long_digest=False)
        raise NoMatchingTag(f"no tag named '{name}'")

    def tags_at_head(self, prefix: str | None) -> list[TagRecord]:
        return [
            record
            for record in self.list_tags(prefix, cutoff=datetime.min)
            if record.is_head and not record.is_branch
        ]

    def _to_record(
        self, ref: TagRef, prefix: str | None, head: str, long_digest: bool
    ) -> TagRecord:
        if prefix:
            parsed = parse_tag_date(ref.name, prefix, self._date_format)
            found_prefix: str | None = prefix
            date, sequence = parsed if parsed else (None, 1)
        else:
            split = split_tag_name(ref.name, self._date_format)
            found_prefix, date, sequence = split if split else (None, None, 1)
        return TagRecord(
            name=ref.name,
            prefix=found_prefix,
            date=date,
            commit=ref.commit,
            message=ref.message,
            sequence=sequence,
            is_head=ref.commit == head,
            digest=self._digest(ref.commit, long_digest),
        )

    @staticmethod
    def _digest(commit: str, long_digest: bool) -> str:
        return commit if long_digest else commit[:SHORT_DIGEST]


__all__ = [
    "DEFAULT_CUTOFF",
    "DEFAULT_DATE_FORMAT",
    "SENTINEL_BRANCHES",
    "TagRecord",
    "TagRepository",
    "canonical_names",
    "parse_cutoff",
    "parse_tag_date",
    "rank_key",
    "record_rank",
    "split_tag_name",
]
