"""Tests for contributor aggregation and hybrid merging."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_sha
from contrib_attribution.analysis.aggregation import (
    build_contributor_aggregates,
    commit_date_range,
    contributor_key,
    is_bot,
    merge_hybrid,
)
from contrib_attribution.git.models import (
    AuthorIdentity,
    AuthorLines,
    BlameAttribution,
    CommitAuthorStats,
    CommitRecord,
    CommitStatsResult,
)


START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def record(index, name, email, days=0, additions=1, deletions=0, login=None):
    return CommitRecord(
        sha=make_sha(index),
        author_name=name,
        author_email=email,
        author_date=START + timedelta(days=days),
        additions=additions,
        deletions=deletions,
        author_login=login,
    )


class TestBotDetection:
    """Test automated account detection."""

    @pytest.mark.parametrize("value", [
        "dependabot[bot]",
        "github-actions",
        "renovate-bot",
        "Release Bot",
        "automated-release@example.com",
    ])
    def test_bots(self, value):
        assert is_bot(value)

    @pytest.mark.parametrize("value", ["Abbott Jones", "robotics@example.com", "Alice Smith", None, ""])
    def test_humans(self, value):
        assert not is_bot(value)


class TestContributorKey:
    """Test grouping keys for remote commits."""

    def test_real_email_wins(self):
        assert contributor_key(record(0, "Alice", "Alice@Example.com", login="alice")) == "alice@example.com"

    def test_noreply_email_falls_back_to_login(self):
        commit = record(0, "Alice", "12345+alice@users.noreply.github.com", login="Alice")
        assert contributor_key(commit) == "login:alice"

    def test_name_when_nothing_else(self):
        assert contributor_key(record(0, "Alice  Smith", "")) == "alice smith"


class TestContributorAggregates:
    """Test build_contributor_aggregates."""

    def test_aggregates_sorted_by_commit_count(self):
        commits = [
            record(0, "Alice", "alice@example.com", days=0, additions=10, deletions=2),
            record(1, "Bob", "bob@example.com", days=1, additions=5),
            record(2, "Alice", "alice@example.com", days=4, additions=3, deletions=1),
        ]

        aggregates, bots = build_contributor_aggregates(commits)

        assert bots == 0
        assert [a.identity.canonical_email for a in aggregates] == ["alice@example.com", "bob@example.com"]
        alice = aggregates[0]
        assert alice.commit_count == 2
        assert (alice.additions, alice.deletions, alice.net_lines) == (13, 3, 10)
        assert alice.active_days == 4
        assert alice.first_commit_date == START
        assert alice.line_ownership is None

    def test_bots_excluded_and_counted(self):
        commits = [
            record(0, "dependabot[bot]", "49699333+dependabot[bot]@users.noreply.github.com", login="dependabot[bot]"),
            record(1, "Alice", "alice@example.com"),
        ]

        aggregates, bots = build_contributor_aggregates(commits)
        with_bots, _ = build_contributor_aggregates(commits, include_bots=True)

        assert bots == 1
        assert [a.identity.canonical_name for a in aggregates] == ["Alice"]
        assert len(with_bots) == 2
        assert any(a.is_bot for a in with_bots)

    def test_noreply_and_real_email_with_same_login(self):
        """Commits through the web UI share the login with noreply-addressed ones."""
        commits = [
            record(0, "Alice", "1+alice@users.noreply.github.com", login="alice"),
            record(1, "Alice", "2+alice@users.noreply.github.com", login="alice", days=2),
        ]

        aggregates, _ = build_contributor_aggregates(commits)

        assert len(aggregates) == 1
        assert aggregates[0].login == "alice"
        assert aggregates[0].identity.alias_emails == frozenset({"1+alice@users.noreply.github.com"})

    def test_account_details_and_merge_committers(self):
        alice_merge = record(2, "Alice", "alice@example.com", days=5).model_copy(update={"parent_count": 2})
        commits = [
            record(0, "Alice", "alice@example.com", login="alice").model_copy(
                update={"author_id": 7, "avatar_url": "https://avatars.example/alice"}
            ),
            record(1, "Bob", "bob@example.com", days=1),
        ]

        aggregates, _ = build_contributor_aggregates(commits, merges=[alice_merge])

        by_name = {a.identity.canonical_name: a for a in aggregates}
        assert (by_name["Alice"].github_id, by_name["Alice"].avatar_url) == (7, "https://avatars.example/alice")
        assert by_name["Alice"].is_merge_committer
        assert by_name["Alice"].commit_count == 1
        assert (by_name["Bob"].github_id, by_name["Bob"].is_merge_committer) == (None, False)

    def test_date_range(self):
        commits = [record(0, "A", "a@x.io", days=3), record(1, "B", "b@x.io", days=1)]

        date_range = commit_date_range(commits)

        assert date_range.start == START + timedelta(days=1)
        assert date_range.end == START + timedelta(days=3)
        assert commit_date_range([]).start is None


class TestMergeHybrid:
    """Test merging line ownership with commit activity."""

    def test_union_keeps_measures_separate(self):
        alice = AuthorIdentity(canonical_name="Alice", canonical_email="alice@example.com")
        bob = AuthorIdentity(canonical_name="Bob", canonical_email="bob@example.com")
        carol = AuthorIdentity(
            canonical_name="Carol", canonical_email="carol@example.com", alias_emails=frozenset({"c@old.io"})
        )
        blame = BlameAttribution(
            authors=[AuthorLines(identity=alice, lines=30), AuthorLines(identity=carol, lines=5)],
            total_lines=35,
            files_processed=2,
        )
        stats = CommitStatsResult(
            authors=[
                CommitAuthorStats(identity=bob, commits=9, additions=90, deletions=10, net_lines=80,
                                  first_commit_date=START, last_commit_date=START + timedelta(days=6)),
                CommitAuthorStats(identity=alice, commits=3, additions=40, deletions=5, net_lines=35,
                                  first_commit_date=START, last_commit_date=START + timedelta(days=2)),
            ],
            total_commits=12,
        )

        merged = merge_hybrid(blame, stats)

        assert [c.identity.canonical_name for c in merged] == ["Alice", "Carol", "Bob"]
        by_name = {c.identity.canonical_name: c for c in merged}
        assert (by_name["Alice"].line_ownership, by_name["Alice"].commit_count) == (30, 3)
        assert by_name["Alice"].additions == 40
        assert by_name["Alice"].active_days == 2
        assert (by_name["Bob"].line_ownership, by_name["Bob"].commit_count) == (0, 9)
        assert (by_name["Carol"].line_ownership, by_name["Carol"].commit_count) == (5, 0)
        assert by_name["Carol"].identity.alias_emails == frozenset({"c@old.io"})
