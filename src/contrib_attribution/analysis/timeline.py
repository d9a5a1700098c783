"""Per-user daily and weekly activity timelines."""

from collections import defaultdict
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional

from pydantic import Field

from ..core.models import ApiModel
from ..git.models import CommitRecord, identity_key


class TimeRange(str, Enum):
    """Bucket size for aggregated timelines."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


class DailyMetric(ApiModel):
    """One user's activity on one calendar day."""
    day: date
    user_id: str
    user_name: str
    commits: int = Field(default=0, ge=0)
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)
    net_lines: int = 0


class WeeklyMetric(ApiModel):
    week_start: date
    week_label: str
    commits: int = Field(default=0, ge=0)
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)
    net_lines: int = 0


class PeriodMetric(ApiModel):
    """Activity of all users within one period."""
    period_start: date
    label: str
    commits: int = Field(default=0, ge=0)
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)
    net_lines: int = 0
    top_contributor: Optional[str] = None


class UserTimeline(ApiModel):
    """A user's daily series plus weekly rollup and lifetime totals."""
    user_id: str
    user_name: str
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    first_commit_date: date
    last_commit_date: date
    daily_metrics: List[DailyMetric] = Field(default_factory=list)
    weekly_metrics: List[WeeklyMetric] = Field(default_factory=list)
    total_commits: int = Field(default=0, ge=0)
    total_additions: int = Field(default=0, ge=0)
    total_deletions: int = Field(default=0, ge=0)
    total_net_lines: int = 0


class RepositoryTimeline(ApiModel):
    """Activity of every user, sorted by first commit, with repository totals."""
    repo_first_commit: Optional[datetime] = None
    repo_last_commit: Optional[datetime] = None
    users: List[UserTimeline] = Field(default_factory=list)
    weekly_activity: List[PeriodMetric] = Field(default_factory=list)
    total_commits: int = Field(default=0, ge=0)
    total_additions: int = Field(default=0, ge=0)
    total_deletions: int = Field(default=0, ge=0)
    total_net_lines: int = 0


def commit_day(commit: CommitRecord) -> date:
    """Calendar day of a commit in the timezone it was recorded with."""
    return commit.author_date.date()


def period_start(day: date, time_range: TimeRange) -> date:
    """First day of the period containing ``day``; weeks start on Monday."""
    if time_range is TimeRange.WEEK:
        return day - timedelta(days=day.weekday())
    if time_range is TimeRange.MONTH:
        return day.replace(day=1)
    if time_range is TimeRange.QUARTER:
        return date(day.year, (day.month - 1) // 3 * 3 + 1, 1)
    if time_range is TimeRange.YEAR:
        return date(day.year, 1, 1)
    return day


def next_period(start: date, time_range: TimeRange) -> date:
    if time_range is TimeRange.DAY:
        return start + timedelta(days=1)
    if time_range is TimeRange.WEEK:
        return start + timedelta(days=7)
    if time_range is TimeRange.YEAR:
        return date(start.year + 1, 1, 1)
    months = 3 if time_range is TimeRange.QUARTER else 1
    month_index = start.month - 1 + months
    return date(start.year + month_index // 12, month_index % 12 + 1, 1)


def period_label(start: date, time_range: TimeRange) -> str:
    if time_range is TimeRange.WEEK:
        return f"Week of {start:%b} {start.day}, {start.year}"
    if time_range is TimeRange.MONTH:
        return f"{start:%B %Y}"
    if time_range is TimeRange.QUARTER:
        return f"Q{(start.month - 1) // 3 + 1} {start.year}"
    if time_range is TimeRange.YEAR:
        return str(start.year)
    return start.isoformat()


def group_by_user_and_day(commits: Iterable[CommitRecord]) -> Dict[str, Dict[date, DailyMetric]]:
    """Daily totals keyed by user (email, else normalized name) and day."""
    users: Dict[str, Dict[date, DailyMetric]] = defaultdict(dict)
    for commit in commits:
        user_id = identity_key(commit.author_name, commit.author_email)
        day = commit_day(commit)
        metric = users[user_id].get(day)
        if metric is None:
            metric = users[user_id][day] = DailyMetric(day=day, user_id=user_id, user_name=commit.author_name)
        metric.commits += 1
        metric.additions += commit.additions
        metric.deletions += commit.deletions
        metric.net_lines += commit.additions - commit.deletions
    return users


def aggregate_weekly(user: UserTimeline) -> UserTimeline:
    """Return ``user`` with its daily series rolled up into Monday-start weeks."""
    weeks: Dict[date, WeeklyMetric] = {}
    for daily in user.daily_metrics:
        start = period_start(daily.day, TimeRange.WEEK)
        week = weeks.get(start)
        if week is None:
            week = weeks[start] = WeeklyMetric(week_start=start, week_label=period_label(start, TimeRange.WEEK))
        week.commits += daily.commits
        week.additions += daily.additions
        week.deletions += daily.deletions
        week.net_lines += daily.net_lines
    return user.model_copy(update={"weekly_metrics": [weeks[start] for start in sorted(weeks)]})


def aggregate_timeline(daily_metrics: Iterable[DailyMetric], time_range: TimeRange) -> List[PeriodMetric]:
    """Sum daily metrics of all users into periods, naming each period's top committer.

    Ties for top committer go to the name that sorts first.
    """
    periods: Dict[date, PeriodMetric] = {}
    commits_by_user: Dict[date, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
    for daily in daily_metrics:
        start = period_start(daily.day, time_range)
        period = periods.get(start)
        if period is None:
            period = periods[start] = PeriodMetric(period_start=start, label=period_label(start, time_range))
        period.commits += daily.commits
        period.additions += daily.additions
        period.deletions += daily.deletions
        period.net_lines += daily.net_lines
        commits_by_user[start][daily.user_name] += daily.commits

    for start, period in periods.items():
        counts = commits_by_user[start]
        if counts:
            period.top_contributor = min(counts, key=lambda name: (-counts[name], name))
    return [periods[start] for start in sorted(periods)]


def fill_timeline_gaps(
    timeline: List[PeriodMetric], start: date, end: date, time_range: TimeRange
) -> List[PeriodMetric]:
    """Insert zero periods so every period between ``start`` and ``end`` is present.

    An empty timeline stays empty.
    """
    if not timeline:
        return []
    existing = {period.period_start: period for period in timeline}
    filled: List[PeriodMetric] = []
    current = period_start(start, time_range)
    while current <= end:
        period = existing.get(current)
        if period is None:
            period = PeriodMetric(period_start=current, label=period_label(current, time_range))
        filled.append(period)
        current = next_period(current, time_range)
    return filled


def extract_timeline(commits: Iterable[CommitRecord]) -> RepositoryTimeline:
    """Build per-user daily and weekly activity from already-filtered commits."""
    commits = list(commits)
    if not commits:
        return RepositoryTimeline()

    avatars: Dict[str, str] = {}
    names: Dict[str, str] = {}
    for commit in sorted(commits, key=lambda c: c.author_date):
        user_id = identity_key(commit.author_name, commit.author_email)
        names[user_id] = commit.author_name
        if commit.avatar_url:
            avatars[user_id] = commit.avatar_url

    users: List[UserTimeline] = []
    all_daily: List[DailyMetric] = []
    for user_id, days in group_by_user_and_day(commits).items():
        daily = [days[day] for day in sorted(days)]
        all_daily.extend(daily)
        users.append(aggregate_weekly(UserTimeline(
            user_id=user_id,
            user_name=names[user_id],
            email=user_id if "@" in user_id else None,
            avatar_url=avatars.get(user_id),
            first_commit_date=daily[0].day,
            last_commit_date=daily[-1].day,
            daily_metrics=daily,
            total_commits=sum(d.commits for d in daily),
            total_additions=sum(d.additions for d in daily),
            total_deletions=sum(d.deletions for d in daily),
            total_net_lines=sum(d.net_lines for d in daily),
        )))
    users.sort(key=lambda u: (u.first_commit_date, u.user_id))

    first = min(commits, key=lambda c: c.author_date).author_date
    last = max(commits, key=lambda c: c.author_date).author_date
    additions = sum(c.additions for c in commits)
    deletions = sum(c.deletions for c in commits)
    return RepositoryTimeline(
        repo_first_commit=first,
        repo_last_commit=last,
        users=users,
        weekly_activity=fill_timeline_gaps(
            aggregate_timeline(all_daily, TimeRange.WEEK),
            min(u.first_commit_date for u in users),
            max(u.last_commit_date for u in users),
            TimeRange.WEEK,
        ),
        total_commits=len(commits),
        total_additions=additions,
        total_deletions=deletions,
        total_net_lines=additions - deletions,
    )
