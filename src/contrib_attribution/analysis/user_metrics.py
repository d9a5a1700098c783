"""Lifetime, daily and weekly contribution metrics for individual users."""

from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import Field

from ..core.models import ApiModel
from ..git.models import CommitRecord, identity_key
from .timeline import TimeRange, group_by_user_and_day, period_start


class DailyCount(ApiModel):
    day: date
    count: int


class WeeklyStat(ApiModel):
    week_start: date
    commits: int = Field(default=0, ge=0)
    net_lines: int = 0


class LifetimeStats(ApiModel):
    """Totals over every non-merge commit of a user; dates are None when there are none."""
    commits: int = Field(default=0, ge=0)
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)
    net_lines: int = 0
    first_commit: Optional[date] = None
    last_commit: Optional[date] = None


class UserContribution(ApiModel):
    """Heatmap-style daily series and weekly bars for one user."""
    user_id: str
    user_name: str
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    lifetime_stats: LifetimeStats = Field(default_factory=LifetimeStats)
    daily_commits: List[DailyCount] = Field(default_factory=list)
    daily_additions: List[DailyCount] = Field(default_factory=list)
    daily_deletions: List[DailyCount] = Field(default_factory=list)
    daily_net_lines: List[DailyCount] = Field(default_factory=list)
    weekly_stats: List[WeeklyStat] = Field(default_factory=list)


def extract_user_metrics(
    commits: Iterable[CommitRecord],
    user_name: str,
    user_email: Optional[str] = None,
    avatar_url: Optional[str] = None,
) -> UserContribution:
    """Metrics for the user identified by email (or by name when there is no email).

    Merge commits are never counted.
    """
    user_id = identity_key(user_name, user_email)
    own = [
        c for c in commits
        if not c.is_merge and identity_key(c.author_name, c.author_email) == user_id
    ]
    contribution = UserContribution(
        user_id=user_id,
        user_name=user_name,
        email=user_email or None,
        avatar_url=avatar_url,
    )
    if not own:
        return contribution

    days = group_by_user_and_day(own)[user_id]
    daily = [days[day] for day in sorted(days)]

    weeks: Dict[date, WeeklyStat] = {}
    for metric in daily:
        start = period_start(metric.day, TimeRange.WEEK)
        week = weeks.setdefault(start, WeeklyStat(week_start=start))
        week.commits += metric.commits
        week.net_lines += metric.net_lines

    contribution.lifetime_stats = LifetimeStats(
        commits=sum(d.commits for d in daily),
        additions=sum(d.additions for d in daily),
        deletions=sum(d.deletions for d in daily),
        net_lines=sum(d.net_lines for d in daily),
        first_commit=daily[0].day,
        last_commit=daily[-1].day,
    )
    contribution.daily_commits = [DailyCount(day=d.day, count=d.commits) for d in daily]
    contribution.daily_additions = [DailyCount(day=d.day, count=d.additions) for d in daily]
    contribution.daily_deletions = [DailyCount(day=d.day, count=d.deletions) for d in daily]
    contribution.daily_net_lines = [DailyCount(day=d.day, count=d.net_lines) for d in daily]
    contribution.weekly_stats = [weeks[start] for start in sorted(weeks)]
    return contribution


def extract_all_user_metrics(
    commits: Iterable[CommitRecord], users: Iterable[Tuple[str, Optional[str], Optional[str]]]
) -> List[UserContribution]:
    """Metrics for each ``(name, email, avatar_url)`` user, earliest contributor first.

    Users without commits sort last.
    """
    commits = list(commits)
    metrics = [extract_user_metrics(commits, name, email, avatar) for name, email, avatar in users]
    metrics.sort(key=lambda m: (m.lifetime_stats.first_commit is None, m.lifetime_stats.first_commit or date.min))
    return metrics
