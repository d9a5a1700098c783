"""Contributor aggregation for legacy and hybrid results."""

import re
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..core.constants import BOT_PATTERNS, BOT_WORD_PATTERN, NOREPLY_EMAIL_DOMAIN, UNKNOWN_AUTHOR_EMAIL
from ..git.models import (
    AuthorIdentity,
    BlameAttribution,
    CommitRecord,
    CommitStatsResult,
    normalize_name,
)
from .models import ContributorAggregate, DateRange


BOT_WORD = re.compile(BOT_WORD_PATTERN)


def is_bot(*values: Optional[str]) -> bool:
    """True if any of the given names, emails or logins looks like an automated account."""
    for value in values:
        if not value:
            continue
        lowered = value.lower()
        if any(pattern in lowered for pattern in BOT_PATTERNS) or BOT_WORD.search(lowered):
            return True
    return False


def contributor_key(commit: CommitRecord) -> str:
    """Grouping key: real email first, then GitHub login, then normalized name.

    GitHub noreply addresses are per-account but differ from the address the
    same person uses locally, so they are not trusted as a key.
    """
    email = commit.author_email
    if email and not email.endswith(NOREPLY_EMAIL_DOMAIN):
        return email
    if commit.author_login:
        return f"login:{commit.author_login.lower()}"
    name = normalize_name(commit.author_name).lower()
    return name or UNKNOWN_AUTHOR_EMAIL


def build_contributor_aggregates(
    commits: Iterable[CommitRecord], include_bots: bool = False, merges: Iterable[CommitRecord] = ()
) -> Tuple[List[ContributorAggregate], int]:
    """Aggregate commits per contributor.

    ``merges`` are merge commits seen while listing; their authors are flagged
    as merge committers even when the merges themselves were excluded.
    Returns the aggregates sorted by commit count (descending) and the number
    of bot accounts left out.
    """
    groups: Dict[str, List[CommitRecord]] = defaultdict(list)
    merge_keys: Set[str] = {contributor_key(m) for m in merges}
    for commit in commits:
        groups[contributor_key(commit)].append(commit)
        if commit.is_merge:
            merge_keys.add(contributor_key(commit))

    aggregates: List[ContributorAggregate] = []
    bots_excluded = 0
    for key, records in groups.items():
        records.sort(key=lambda c: c.author_date)
        latest = records[-1]
        login = next((c.author_login for c in reversed(records) if c.author_login), None)
        account = next((c for c in reversed(records) if c.author_id is not None), None)
        bot = is_bot(latest.author_name, latest.author_email, login)
        if bot and not include_bots:
            bots_excluded += 1
            continue

        emails: Set[str] = {c.author_email for c in records if c.author_email}
        canonical_email = latest.author_email or next(iter(sorted(emails)), "")
        additions = sum(c.additions for c in records)
        deletions = sum(c.deletions for c in records)
        first, last = records[0].author_date, latest.author_date

        aggregates.append(ContributorAggregate(
            identity=AuthorIdentity(
                canonical_name=latest.author_name,
                canonical_email=canonical_email,
                alias_emails=frozenset(emails - {canonical_email}),
            ),
            login=login,
            github_id=account.author_id if account else None,
            avatar_url=account.avatar_url if account else None,
            commit_count=len(records),
            additions=additions,
            deletions=deletions,
            net_lines=additions - deletions,
            first_commit_date=first,
            last_commit_date=last,
            active_days=(last - first).days,
            is_bot=bot,
            is_merge_committer=key in merge_keys,
        ))

    aggregates.sort(key=lambda a: (-a.commit_count, a.identity.key))
    return aggregates, bots_excluded


def commit_date_range(commits: Iterable[CommitRecord]) -> DateRange:
    dates = [c.author_date for c in commits]
    if not dates:
        return DateRange()
    return DateRange(start=min(dates), end=max(dates))


def merge_hybrid(blame: BlameAttribution, stats: CommitStatsResult) -> List[ContributorAggregate]:
    """Union line ownership and commit activity by identity key.

    The two measures are kept in separate fields; nothing is summed across them.
    """
    identities: Dict[str, AuthorIdentity] = {}
    lines: Dict[str, int] = {}
    for entry in blame.authors:
        identities[entry.identity.key] = entry.identity
        lines[entry.identity.key] = entry.lines

    activity = {entry.identity.key: entry for entry in stats.authors}
    for key, entry in activity.items():
        known = identities.get(key)
        if known is None:
            identities[key] = entry.identity
        else:
            identities[key] = known.model_copy(
                update={"alias_emails": known.alias_emails | entry.identity.alias_emails}
            )

    merged: List[ContributorAggregate] = []
    for key, identity in identities.items():
        commits = activity.get(key)
        first = commits.first_commit_date if commits else None
        last = commits.last_commit_date if commits else None
        merged.append(ContributorAggregate(
            identity=identity,
            commit_count=commits.commits if commits else 0,
            additions=commits.additions if commits else 0,
            deletions=commits.deletions if commits else 0,
            net_lines=commits.net_lines if commits else 0,
            line_ownership=lines.get(key, 0),
            first_commit_date=first,
            last_commit_date=last,
            active_days=(last - first).days if first and last else 0,
            is_bot=is_bot(identity.canonical_name, identity.canonical_email),
        ))

    merged.sort(key=lambda a: (-(a.line_ownership or 0), -a.commit_count, a.identity.key))
    return merged
