"""Tests for ripple_release.commits."""

from __future__ import annotations

from conftest import make_commit

from ripple_release.commits import classify_commit, determine_highest_bump, parse_commit
from ripple_release.models import BumpKind


class TestParseCommit:
    """Tests for parse_commit()."""

    def test_type_and_scope(self) -> None:
        commit = parse_commit("abc1234def", "feat(api): add endpoint")

        assert commit.type == "feat"
        assert commit.scope == "api"
        assert commit.description == "add endpoint"
        assert commit.is_conventional
        assert not commit.is_breaking
        assert commit.short_hash == "abc1234"

    def test_breaking_marker(self) -> None:
        commit = parse_commit("h", "fix!: stop crashing")

        assert commit.type == "fix"
        assert commit.scope is None
        assert commit.is_breaking

    def test_breaking_footer(self) -> None:
        """A BREAKING CHANGE footer in the body marks the commit breaking."""
        message = "feat: new config\n\nBREAKING CHANGE: old keys removed"

        assert parse_commit("h", message).is_breaking

    def test_breaking_footer_with_hyphen(self) -> None:
        message = "refactor: x\n\nBREAKING-CHANGE: y"

        assert parse_commit("h", message).is_breaking

    def test_type_is_lowercased(self) -> None:
        assert parse_commit("h", "Feat: shout").type == "feat"

    def test_non_conventional(self) -> None:
        commit = parse_commit("h", "Update README\n\nmore words")

        assert not commit.is_conventional
        assert commit.type == ""
        assert commit.description == "Update README"

    def test_missing_space_after_colon_is_not_conventional(self) -> None:
        assert not parse_commit("h", "feat:no space").is_conventional

    def test_explicit_short_hash_and_timestamp(self) -> None:
        commit = parse_commit("abcdef0123", "chore: x", 1700000000, short_hash="abcd")

        assert commit.short_hash == "abcd"
        assert commit.timestamp == 1700000000


class TestClassifyCommit:
    """Tests for classify_commit()."""

    def test_feat_is_minor(self) -> None:
        assert classify_commit(make_commit("feat: a")) is BumpKind.MINOR

    def test_fix_and_perf_are_patch(self) -> None:
        assert classify_commit(make_commit("fix: a")) is BumpKind.PATCH
        assert classify_commit(make_commit("perf: a")) is BumpKind.PATCH

    def test_breaking_is_major_regardless_of_type(self) -> None:
        assert classify_commit(make_commit("chore!: drop node 16")) is BumpKind.MAJOR

    def test_other_types_are_none(self) -> None:
        for message in ("docs: a", "chore: a", "ci: a", "wip: a"):
            assert classify_commit(make_commit(message)) is BumpKind.NONE

    def test_non_conventional_is_none(self) -> None:
        assert classify_commit(make_commit("Merge branch main")) is BumpKind.NONE


class TestDetermineHighestBump:
    """Tests for determine_highest_bump()."""

    def test_empty_is_none(self) -> None:
        assert determine_highest_bump([]) is BumpKind.NONE

    def test_highest_wins(self) -> None:
        commits = [
            make_commit("fix: a"),
            make_commit("feat: b"),
            make_commit("docs: c"),
        ]

        assert determine_highest_bump(commits) is BumpKind.MINOR

    def test_breaking_short_circuits(self) -> None:
        commits = [make_commit("feat!: a"), make_commit("fix: b")]

        assert determine_highest_bump(commits) is BumpKind.MAJOR
