"""Commit-level reports attached to legacy results."""

from typing import Iterable

from ..core.constants import MAX_REPORTED_FILE_CHANGES, UNKNOWN_AUTHOR_NAME
from ..git.models import CommitRecord
from .aggregation import is_bot
from .models import (
    AuthorFileChange,
    CommitMessageEntry,
    CommitTimeEntry,
    MergeCommitEntry,
    SupplementaryReports,
)


def author_label(commit: CommitRecord) -> str:
    """GitHub login when known, otherwise the commit author name."""
    return commit.author_login or commit.author_name or UNKNOWN_AUTHOR_NAME


def build_supplementary_reports(
    commits: Iterable[CommitRecord],
    merges: Iterable[CommitRecord] = (),
    include_bots: bool = False,
) -> SupplementaryReports:
    """Build the per-commit reports in the order the commits were listed.

    ``merges`` are the merge commits seen while listing, whether or not they
    were excluded from ``commits``. Files with more than
    ``MAX_REPORTED_FILE_CHANGES`` changed lines are left out of
    ``files_by_author``.
    """
    def keep(commit: CommitRecord) -> bool:
        return include_bots or not is_bot(commit.author_name, commit.author_email, commit.author_login)

    reports = SupplementaryReports()
    for commit in filter(keep, commits):
        author = author_label(commit)
        reports.commit_messages.append(CommitMessageEntry(
            sha=commit.sha, author=author, date=commit.author_date, message=commit.message
        ))
        reports.commit_times.append(CommitTimeEntry(
            sha=commit.sha,
            author=author,
            date=commit.author_date,
            timestamp=int(commit.author_date.timestamp() * 1000),
        ))
        for change in commit.files:
            if change.changes > MAX_REPORTED_FILE_CHANGES:
                continue
            reports.files_by_author.append(AuthorFileChange(
                author=author,
                filename=change.path,
                additions=change.additions,
                deletions=change.deletions,
                changes=change.changes,
            ))

    for commit in filter(keep, merges):
        reports.merges.append(MergeCommitEntry(
            sha=commit.sha,
            author=author_label(commit),
            date=commit.author_date,
            message=commit.message,
            parent_count=commit.parent_count,
        ))
    return reports
