from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from git_rollout.cli import format_tag_line
from git_rollout.errors import NoMatchingTag
from git_rollout.tags import (
    TagRepository,
    parse_cutoff,
    parse_tag_date,
    rank_key,
    split_tag_name,
)
from git_rollout.vcs import InMemoryVcs, TagRef

from conftest import StepClock


def make_vcs(*tags: tuple[str, str], head: str = "c3") -> InMemoryVcs:
    vcs = InMemoryVcs(["c1", "c2", "c3"], head=head)
    for name, commit in tags:
        vcs.tags[name] = TagRef(name=name, commit=commit, message=f"message for {name}")
    return vcs


def test_parse_tag_date() -> None:
    assert parse_tag_date("sheep-20080825-2105", "sheep") == (datetime(2008, 8, 25, 21, 5), 1)
    assert parse_tag_date("sheep-20080825-2105-3", "sheep") == (datetime(2008, 8, 25, 21, 5), 3)
    assert parse_tag_date("sheep-latest", "sheep") is None
    assert parse_tag_date("goat-20080825-2105", "sheep") is None


def test_split_tag_name_with_dashed_prefix() -> None:
    assert split_tag_name("web-eu-20080825-2105") == ("web-eu", datetime(2008, 8, 25, 21, 5), 1)
    assert split_tag_name("v1.2.3") is None


def test_parse_cutoff_formats() -> None:
    assert parse_cutoff("20080826") == datetime(2008, 8, 26)
    assert parse_cutoff("2008-08-26") == datetime(2008, 8, 26)
    assert parse_cutoff("2008-08-26T09:30") == datetime(2008, 8, 26, 9, 30)
    aware = parse_cutoff("2008-08-26T00:00:00+00:00")
    assert aware.tzinfo is None
    assert aware == datetime(2008, 8, 26, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
    with pytest.raises(ValueError):
        parse_cutoff("last tuesday")


def test_rank_key_orders_dated_then_sentinels_then_names() -> None:
    entries = [
        ("feature-x", None, 1, False),
        ("sheep-20080825-2105", datetime(2008, 8, 25, 21, 5), 1, False),
        ("trunk", None, 1, True),
        ("alpha", None, 1, False),
        ("sheep-20080826-0900", datetime(2008, 8, 26, 9, 0), 1, False),
        ("master", None, 1, True),
        ("sheep-20080826-0900-2", datetime(2008, 8, 26, 9, 0), 2, False),
    ]

    ordered = sorted(
        entries,
        key=lambda entry: rank_key(entry[1] is not None, entry[1], entry[2], entry[3], entry[0]),
    )

    assert [entry[0] for entry in ordered] == [
        "sheep-20080826-0900-2",
        "sheep-20080826-0900",
        "sheep-20080825-2105",
        "master",
        "trunk",
        "alpha",
        "feature-x",
    ]


def test_create_then_list_returns_new_tag_first() -> None:
    vcs = make_vcs(("sheep-20080801-1000", "c1"))
    repository = TagRepository(vcs, clock=StepClock())

    created = repository.create_tag("sheep", "ship it")
    listed = repository.list_tags("sheep")

    assert created.name == "sheep-20080825-2105"
    assert listed[0].name == created.name
    assert listed[0].is_head
    assert listed[0].commit == "c3"
    assert not listed[1].is_head


def test_create_tag_disambiguates_same_minute() -> None:
    vcs = make_vcs()
    clock = StepClock(step=timedelta(0))
    repository = TagRepository(vcs, clock=clock)

    names = [repository.create_tag("sheep", f"take {index}").name for index in range(3)]

    assert names == ["sheep-20080825-2105", "sheep-20080825-2105-2", "sheep-20080825-2105-3"]
    listed = repository.list_tags("sheep")
    assert [record.name for record in listed] == list(reversed(names))
    assert listed[-1].duplicate_of is None
    assert all(record.duplicate_of == "sheep-20080825-2105" for record in listed[:-1])


def test_create_tag_pushes_only_when_asked() -> None:
    vcs = make_vcs()
    repository = TagRepository(vcs, clock=StepClock())

    repository.create_tag("sheep", "local only")
    assert not any(call[0] == "push" for call in vcs.calls)

    created = repository.create_tag("sheep", "pushed", push=True)
    assert ("push", f"refs/tags/{created.name}") in vcs.calls
    assert created.name in vcs.remote_tags


def test_no_remote_never_fetches_or_pushes() -> None:
    vcs = make_vcs(("sheep-20080825-2105", "c1"))
    repository = TagRepository(vcs, no_remote=True, clock=StepClock(datetime(2008, 9, 1)))

    repository.list_tags("sheep")
    repository.create_tag("sheep", "offline", push=True)

    assert not any(call[0] in {"fetch_tags", "push"} for call in vcs.calls)


def test_duplicates_point_at_oldest() -> None:
    vcs = make_vcs(("sheep-20080825-2105", "c2"), ("sheep-20080825-2116", "c2"))
    repository = TagRepository(vcs)

    listed = repository.list_tags("sheep")

    assert [record.name for record in listed] == ["sheep-20080825-2116", "sheep-20080825-2105"]
    newer, older = listed
    assert newer.duplicate_of == "sheep-20080825-2105"
    assert older.duplicate_of is None
    assert newer.commit == older.commit
    assert format_tag_line(newer) == "  sheep-20080825-2116 -> sheep-20080825-2105"


def test_cutoff_is_inclusive() -> None:
    vcs = make_vcs(
        ("sheep-20080825-2359", "c1"),
        ("sheep-20080826-0000", "c2"),
        ("sheep-20080827-1200", "c3"),
    )
    repository = TagRepository(vcs)

    listed = repository.list_tags("sheep", cutoff=parse_cutoff("20080826"))

    assert [record.name for record in listed] == ["sheep-20080827-1200", "sheep-20080826-0000"]


def test_head_marker() -> None:
    vcs = make_vcs(("sheep-20080825-2105", "c1"), ("sheep-20080826-0900", "c3"))
    listed = TagRepository(vcs).list_tags("sheep")

    assert [record.is_head for record in listed] == [True, False]
    assert format_tag_line(listed[0]).startswith("* ")


def test_undated_tags_and_branches() -> None:
    vcs = make_vcs(("sheep-20080825-2105", "c1"), ("sheep-latest", "c2"))
    repository = TagRepository(vcs)

    assert [record.name for record in repository.list_tags("sheep")] == ["sheep-20080825-2105"]

    listed = repository.list_tags("sheep", include_branches=True)
    assert [record.name for record in listed] == ["sheep-20080825-2105", "master", "sheep-latest"]
    branch = listed[1]
    assert branch.is_branch
    assert branch.is_head
    assert branch.date is None


def test_digest_length() -> None:
    commit = "0123456789abcdef0123456789abcdef01234567"
    vcs = InMemoryVcs([commit])
    vcs.tags["sheep-20080825-2105"] = TagRef(name="sheep-20080825-2105", commit=commit)
    repository = TagRepository(vcs)

    assert repository.list_tags("sheep")[0].digest == "0123456"
    assert repository.list_tags("sheep", long_digest=True)[0].digest == commit


def test_empty_repository() -> None:
    repository = TagRepository(make_vcs())

    assert repository.list_tags("sheep") == []
    assert repository.revert_candidates("sheep") == []


def test_revert_candidates_offer_one_name_per_commit() -> None:
    vcs = make_vcs(
        ("sheep-20080825-2105", "c1"),
        ("sheep-20080825-2116", "c1"),
        ("sheep-20080826-0900", "c2"),
        ("sheep-20080827-0900", "c3"),
    )
    repository = TagRepository(vcs)

    candidates = repository.revert_candidates("sheep")

    assert [record.name for record in candidates] == [
        "sheep-20080827-0900",
        "sheep-20080826-0900",
        "sheep-20080825-2116",
    ]
    assert [record.name for record in repository.revert_candidates("sheep", limit=2)] == [
        "sheep-20080827-0900",
        "sheep-20080826-0900",
    ]


def test_other_prefixes_are_ignored() -> None:
    vcs = make_vcs(("sheep-20080825-2105", "c1"), ("goat-20080826-0900", "c2"))

    listed = TagRepository(vcs).list_tags("sheep")

    assert [record.name for record in listed] == ["sheep-20080825-2105"]


def test_listing_with_offset_cutoff() -> None:
    vcs = make_vcs(("sheep-20080801-1000", "c1"), ("sheep-20080901-1000", "c2"))
    repository = TagRepository(vcs, no_remote=True)

    listed = repository.list_tags("sheep", cutoff=parse_cutoff("2008-08-15T00:00:00+02:00"))

    assert [record.name for record in listed] == ["sheep-20080901-1000"]


def test_rank_key_handles_extreme_dates() -> None:
    dates = [datetime.min, datetime(2008, 8, 25, 21, 5), datetime.max]

    ordered = sorted(dates, key=lambda date: rank_key(True, date, 1, False, "x"))

    assert ordered == [datetime.max, datetime(2008, 8, 25, 21, 5), datetime.min]
    assert rank_key(True, datetime.min, 1, False, "x") < rank_key(False, None, 1, True, "master")


def test_find_requires_the_environment_prefix() -> None:
    vcs = make_vcs(("sheep-20080825-2105", "c1"), ("goat-20080825-2105", "c2"), ("sheep-latest", "c3"))
    repository = TagRepository(vcs)

    assert repository.find("sheep", "sheep-20080825-2105").commit == "c1"
    for name in ("goat-20080825-2105", "sheep-latest", "sheep-20080826-0900"):
        with pytest.raises(NoMatchingTag):
            repository.find("sheep", name)
