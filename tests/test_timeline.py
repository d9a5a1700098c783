"""Tests for activity timelines and per-user metrics."""

from datetime import date, datetime, timedelta, timezone

import pytest

from conftest import make_sha
from contrib_attribution.analysis.timeline import (
    DailyMetric,
    PeriodMetric,
    TimeRange,
    aggregate_timeline,
    aggregate_weekly,
    commit_day,
    extract_timeline,
    fill_timeline_gaps,
    period_start,
)
from contrib_attribution.analysis.user_metrics import extract_all_user_metrics, extract_user_metrics
from contrib_attribution.git.models import CommitRecord


ALICE = ("Alice", "alice@example.com")
BOB = ("Bob", "bob@example.com")


def record(index, author, when, additions=1, deletions=0, parents=1, avatar_url=None):
    return CommitRecord(
        sha=make_sha(index),
        author_name=author[0],
        author_email=author[1],
        author_date=when,
        additions=additions,
        deletions=deletions,
        parent_count=parents,
        avatar_url=avatar_url,
    )


def at(year, month, day, hour=12):
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


@pytest.fixture
def commits():
    # 2024-03-01 is a Friday; 2024-03-04 the following Monday
    return [
        record(0, ALICE, at(2024, 3, 1, 9), additions=3, deletions=1, avatar_url="https://avatars.example/alice"),
        record(1, ALICE, at(2024, 3, 1, 15), additions=2),
        record(2, ALICE, at(2024, 3, 4), additions=5, deletions=2),
        record(3, BOB, at(2024, 2, 28)),
    ]


class TestPeriods:
    """Test period boundaries and labels."""

    @pytest.mark.parametrize("time_range,expected", [
        (TimeRange.DAY, date(2024, 3, 1)),
        (TimeRange.WEEK, date(2024, 2, 26)),
        (TimeRange.MONTH, date(2024, 3, 1)),
        (TimeRange.QUARTER, date(2024, 1, 1)),
        (TimeRange.YEAR, date(2024, 1, 1)),
    ])
    def test_period_start(self, time_range, expected):
        assert period_start(date(2024, 3, 1), time_range) == expected

    def test_sunday_belongs_to_previous_monday(self):
        assert period_start(date(2024, 3, 3), TimeRange.WEEK) == date(2024, 2, 26)

    def test_day_in_recorded_timezone(self):
        late_evening = datetime(2024, 3, 1, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        assert commit_day(record(0, ALICE, late_evening)) == date(2024, 3, 1)


class TestExtractTimeline:
    """Test extract_timeline."""

    def test_users_sorted_by_first_commit(self, commits):
        timeline = extract_timeline(commits)

        assert [u.user_id for u in timeline.users] == ["bob@example.com", "alice@example.com"]
        assert timeline.repo_first_commit == at(2024, 2, 28)
        assert timeline.repo_last_commit == at(2024, 3, 4)
        assert (timeline.total_commits, timeline.total_additions, timeline.total_deletions) == (4, 11, 3)
        assert timeline.total_net_lines == 8

    def test_daily_and_weekly_series(self, commits):
        alice = extract_timeline(commits).users[1]

        assert [(d.day, d.commits, d.additions, d.deletions, d.net_lines) for d in alice.daily_metrics] == [
            (date(2024, 3, 1), 2, 5, 1, 4),
            (date(2024, 3, 4), 1, 5, 2, 3),
        ]
        assert [(w.week_start, w.commits, w.net_lines) for w in alice.weekly_metrics] == [
            (date(2024, 2, 26), 2, 4),
            (date(2024, 3, 4), 1, 3),
        ]
        assert alice.weekly_metrics[0].week_label == "Week of Feb 26, 2024"
        assert (alice.first_commit_date, alice.last_commit_date) == (date(2024, 3, 1), date(2024, 3, 4))
        assert alice.email == "alice@example.com"
        assert alice.avatar_url == "https://avatars.example/alice"

    def test_repository_weekly_activity(self, commits):
        weekly = extract_timeline(commits).weekly_activity

        assert [(p.period_start, p.commits, p.top_contributor) for p in weekly] == [
            (date(2024, 2, 26), 3, "Alice"),
            (date(2024, 3, 4), 1, "Alice"),
        ]

    def test_name_only_identity(self):
        timeline = extract_timeline([record(0, ("Build Host", ""), at(2024, 1, 2))])

        assert timeline.users[0].user_id == "build host"
        assert timeline.users[0].email is None

    def test_empty(self):
        timeline = extract_timeline([])

        assert timeline.users == []
        assert timeline.repo_first_commit is None
        assert timeline.total_commits == 0


class TestAggregation:
    """Test period aggregation and gap filling."""

    def daily(self, day, name, commits=1):
        return DailyMetric(day=day, user_id=name.lower(), user_name=name, commits=commits, additions=commits)

    def test_month_and_quarter_across_year_end(self):
        metrics = [self.daily(date(2023, 12, 31), "Alice"), self.daily(date(2024, 1, 2), "Bob", commits=2)]

        months = aggregate_timeline(metrics, TimeRange.MONTH)
        quarters = aggregate_timeline(metrics, TimeRange.QUARTER)

        assert [(p.label, p.commits) for p in months] == [("December 2023", 1), ("January 2024", 2)]
        assert [p.label for p in quarters] == ["Q4 2023", "Q1 2024"]

    def test_top_contributor_tie_goes_to_first_name(self):
        metrics = [self.daily(date(2024, 1, 2), "Zed"), self.daily(date(2024, 1, 3), "Amy")]

        [week] = aggregate_timeline(metrics, TimeRange.WEEK)

        assert week.top_contributor == "Amy"
        assert week.commits == 2

    def test_gaps_filled_with_zero_periods(self):
        timeline = aggregate_timeline(
            [self.daily(date(2024, 1, 1), "Alice"), self.daily(date(2024, 1, 22), "Alice")], TimeRange.WEEK
        )

        filled = fill_timeline_gaps(timeline, date(2024, 1, 3), date(2024, 1, 25), TimeRange.WEEK)

        assert [p.period_start for p in filled] == [
            date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15), date(2024, 1, 22),
        ]
        assert [p.commits for p in filled] == [1, 0, 0, 1]
        assert filled[1].top_contributor is None

    def test_gap_filling_month_rollover(self):
        timeline = [PeriodMetric(period_start=date(2023, 11, 1), label="November 2023", commits=4)]

        filled = fill_timeline_gaps(timeline, date(2023, 11, 15), date(2024, 1, 10), TimeRange.MONTH)

        assert [p.period_start for p in filled] == [date(2023, 11, 1), date(2023, 12, 1), date(2024, 1, 1)]

    def test_empty_timeline_stays_empty(self):
        assert fill_timeline_gaps([], date(2024, 1, 1), date(2024, 2, 1), TimeRange.WEEK) == []

    def test_aggregate_weekly_replaces_previous_rollup(self, commits):
        alice = extract_timeline(commits).users[1]

        again = aggregate_weekly(alice)

        assert again.weekly_metrics == alice.weekly_metrics


class TestUserMetrics:
    """Test extract_user_metrics and extract_all_user_metrics."""

    def test_lifetime_daily_and_weekly(self, commits):
        merge = record(9, ALICE, at(2024, 3, 5), additions=40, parents=2)

        metrics = extract_user_metrics(commits + [merge], "Alice", "Alice@Example.com", "https://a.example/1")

        stats = metrics.lifetime_stats
        assert (stats.commits, stats.additions, stats.deletions, stats.net_lines) == (3, 10, 3, 7)
        assert (stats.first_commit, stats.last_commit) == (date(2024, 3, 1), date(2024, 3, 4))
        assert [(d.day, d.count) for d in metrics.daily_commits] == [(date(2024, 3, 1), 2), (date(2024, 3, 4), 1)]
        assert [d.count for d in metrics.daily_net_lines] == [4, 3]
        assert [(w.week_start, w.commits, w.net_lines) for w in metrics.weekly_stats] == [
            (date(2024, 2, 26), 2, 4),
            (date(2024, 3, 4), 1, 3),
        ]
        assert metrics.avatar_url == "https://a.example/1"

    def test_user_without_commits(self, commits):
        metrics = extract_user_metrics(commits, "Carol", "carol@example.com")

        assert metrics.lifetime_stats.commits == 0
        assert metrics.lifetime_stats.first_commit is None
        assert metrics.daily_commits == []
        assert metrics.weekly_stats == []

    def test_all_users_earliest_first(self, commits):
        users = [("Alice", "alice@example.com", None), ("Carol", "carol@example.com", None), ("Bob", "bob@example.com", None)]

        metrics = extract_all_user_metrics(commits, users)

        assert [m.user_name for m in metrics] == ["Bob", "Alice", "Carol"]
