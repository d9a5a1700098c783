"""Per-author commit statistics from the local commit log."""

import asyncio
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field

from ..core.models import ApiModel
from ..exceptions import EmptyRepositoryError, OnlyMergeCommitsError
from ..logging import get_logger
from ..progress.emitter import ProgressScope
from .mailmap import MailmapResolver
from .models import (
    AuthorIdentity,
    CommitAuthorStats,
    CommitRecord,
    CommitStatsResult,
    FileChange,
    TimelineEntry,
)
from .repository import FIELD_SEP, RECORD_SEP, GitRepository


logger = get_logger(__name__)


class LocalLogQuery(ApiModel):
    """Branch and date window for a local log walk."""
    branch: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    exclude_merges: bool = True
    max_commits: Optional[int] = Field(default=None, gt=0)


def parse_numstat_log(output: str) -> List[CommitRecord]:
    """Parse log output produced with ``repository.LOG_FORMAT`` and ``--numstat``.

    Binary files appear in numstat as ``-`` and contribute zero lines.
    """
    records: List[CommitRecord] = []
    for chunk in output.split(RECORD_SEP):
        if not chunk.strip():
            continue
        header, _, body = chunk.partition("\n")
        fields = header.split(FIELD_SEP)
        if len(fields) < 6:
            logger.warning("Skipping malformed log record", header=header[:80])
            continue
        sha, parents, name, email, date, subject = fields[:6]

        files: List[FileChange] = []
        for line in body.splitlines():
            parts = line.split("\t", 2)
            if len(parts) != 3:
                continue
            added, deleted, path = parts
            files.append(FileChange(
                path=path,
                additions=int(added) if added.isdigit() else 0,
                deletions=int(deleted) if deleted.isdigit() else 0,
            ))
        additions = sum(f.additions for f in files)
        deletions = sum(f.deletions for f in files)

        records.append(CommitRecord(
            sha=sha,
            author_name=name,
            author_email=email,
            author_date=datetime.fromisoformat(date),
            additions=additions,
            deletions=deletions,
            parent_count=len(parents.split()),
            message=subject,
            files=tuple(files),
            stats_hydrated=True,
        ))
    return records


class CommitStatsEngine:
    """Aggregates commit counts, additions and deletions per author without any network access."""

    def __init__(self, progress: Optional[ProgressScope] = None):
        self.progress = progress or ProgressScope(None)

    async def compute_commit_stats(self, repo_path: str, query: Optional[LocalLogQuery] = None) -> CommitStatsResult:
        query = query or LocalLogQuery()
        loop = asyncio.get_running_loop()

        repository = GitRepository(repo_path)
        if not repository.has_commits:
            raise EmptyRepositoryError(f"Repository {repository.name} has no commits")
        repository.resolve_branch(query.branch)

        self.progress.report(0.0, "Reading commit log...")
        output = await loop.run_in_executor(
            None, repository.log_with_numstat, query.branch, query.since, query.until
        )
        records = parse_numstat_log(output)
        self.progress.report(0.5, f"Parsed {len(records)} commits")

        if not records:
            raise EmptyRepositoryError(
                f"Repository {repository.name} has no commits in the requested range",
                details={"branch": query.branch or "HEAD"},
            )

        commits = [r for r in records if not r.is_merge] if query.exclude_merges else records
        merges_excluded = len(records) - len(commits)
        if not commits:
            raise OnlyMergeCommitsError(
                "No non-merge commits found in the specified date range",
                details={"merge_commits": merges_excluded},
            )
        if query.max_commits is not None:
            commits = commits[:query.max_commits]

        # log output is already mailmapped; the resolver only merges aliases by key
        resolver = MailmapResolver(repository, enabled=False)
        result = build_commit_stats(commits, resolver)
        result.merges_excluded = merges_excluded

        self.progress.report(1.0, f"Aggregated {len(commits)} commits from {len(result.authors)} authors")
        logger.info(
            "Commit stats complete",
            repo=repository.name,
            commits=result.total_commits,
            merges_excluded=merges_excluded,
            authors=len(result.authors),
        )
        return result


def build_commit_stats(commits: List[CommitRecord], resolver: MailmapResolver) -> CommitStatsResult:
    """Aggregate per-author totals and a chronological timeline with running totals."""
    resolver.resolve_many((c.author_name, c.author_email) for c in commits)

    stats: Dict[str, CommitAuthorStats] = {}
    timeline: List[TimelineEntry] = []
    for commit in sorted(commits, key=lambda c: c.author_date):
        identity: AuthorIdentity = resolver.resolve(commit.author_name, commit.author_email)
        entry = stats.get(identity.key)
        if entry is None:
            entry = stats[identity.key] = CommitAuthorStats(
                identity=identity, first_commit_date=commit.author_date
            )
        entry.commits += 1
        entry.additions += commit.additions
        entry.deletions += commit.deletions
        entry.net_lines = entry.additions - entry.deletions
        entry.last_commit_date = commit.author_date

        timeline.append(TimelineEntry(
            sha=commit.sha,
            date=commit.author_date,
            author=identity.canonical_name,
            email=identity.canonical_email,
            additions=commit.additions,
            deletions=commit.deletions,
            cumulative_commits=entry.commits,
            cumulative_additions=entry.additions,
            cumulative_deletions=entry.deletions,
        ))

    # Identities may have gained aliases after their first commit was seen
    for key, entry in stats.items():
        entry.identity = resolver.identity_for(key)

    authors = sorted(stats.values(), key=lambda s: (-s.commits, s.identity.key))
    return CommitStatsResult(commits=list(commits), authors=authors, timeline=timeline, total_commits=len(commits))
