"""Data models for local repository attribution."""

import os
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Tuple

from pydantic import ConfigDict, Field, field_validator, model_validator

from ..core.constants import MAX_BLAME_CONCURRENCY, MIN_BLAME_CONCURRENCY
from ..core.models import AnalysisWarning, ApiModel


def normalize_name(name: Optional[str]) -> str:
    """Collapse runs of whitespace in an author name."""
    return " ".join((name or "").split())


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def identity_key(name: Optional[str], email: Optional[str]) -> str:
    """Key used to merge records of the same person: email first, then name."""
    email = normalize_email(email)
    if email:
        return email
    return normalize_name(name).lower()


def default_blame_concurrency() -> int:
    return max(MIN_BLAME_CONCURRENCY, min(os.cpu_count() or MIN_BLAME_CONCURRENCY, MAX_BLAME_CONCURRENCY))


class FileChange(ApiModel):
    """Lines changed in one file by one commit. Binary files count zero lines."""

    model_config = ConfigDict(frozen=True)

    path: str
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)

    @property
    def changes(self) -> int:
        return self.additions + self.deletions


class CommitRecord(ApiModel):
    """A single commit with its line statistics."""

    model_config = ConfigDict(frozen=True)

    sha: str = Field(pattern=r"^[0-9a-f]{40}$")
    author_name: str
    author_email: str
    author_date: datetime
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)
    parent_count: int = Field(default=1, ge=0)
    message: str = ""
    files: Tuple[FileChange, ...] = ()
    stats_hydrated: bool = False
    author_login: Optional[str] = None
    author_id: Optional[int] = None
    avatar_url: Optional[str] = None

    @field_validator("author_email")
    @classmethod
    def lowercase_email(cls, v):
        return normalize_email(v)

    @field_validator("author_name")
    @classmethod
    def collapse_name(cls, v):
        return normalize_name(v)

    @property
    def is_merge(self) -> bool:
        return self.parent_count >= 2


class AuthorIdentity(ApiModel):
    """Canonical identity produced by mailmap resolution."""

    model_config = ConfigDict(frozen=True)

    canonical_name: str
    canonical_email: str = ""
    alias_emails: FrozenSet[str] = frozenset()

    @property
    def key(self) -> str:
        return identity_key(self.canonical_name, self.canonical_email)


class AuthorLines(ApiModel):
    """Line count owned by one identity."""
    identity: AuthorIdentity
    lines: int = Field(ge=0)


class FileBlameResult(ApiModel):
    """Per-author line ownership of a single file at HEAD."""

    path: str
    total_lines: int = Field(ge=0)
    authors: List[AuthorLines] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_line_sum(self):
        owned = sum(entry.lines for entry in self.authors)
        if owned != self.total_lines:
            raise ValueError(
                f"{self.path}: attributed lines ({owned}) do not match total lines ({self.total_lines})"
            )
        return self

    @property
    def per_author_lines(self) -> Dict[str, int]:
        return {entry.identity.key: entry.lines for entry in self.authors}


class BlameOptions(ApiModel):
    """Options controlling line attribution."""
    max_concurrency: int = Field(default_factory=default_blame_concurrency, gt=0, le=64)
    respect_ignore_revs_file: bool = True
    ignore_whitespace: bool = True
    detect_moves: bool = True
    detect_copies: bool = True
    use_mailmap: bool = True


class BlameAttribution(ApiModel):
    """Repository-wide line ownership."""

    authors: List[AuthorLines] = Field(default_factory=list)
    total_lines: int = Field(default=0, ge=0)
    files_processed: int = Field(default=0, ge=0)
    files: List[FileBlameResult] = Field(default_factory=list)
    warnings: List[AnalysisWarning] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_totals(self):
        if sum(entry.lines for entry in self.authors) != self.total_lines:
            raise ValueError("author line totals do not add up to total_lines")
        return self


class CommitOptions(ApiModel):
    """Options for walking the commit log."""
    exclude_merges: bool = True
    max_commits: Optional[int] = Field(default=None, gt=0)
    include_bots: bool = False
    include_user_metrics: bool = False


class CommitAuthorStats(ApiModel):
    """Commit-log aggregate for one identity."""
    identity: AuthorIdentity
    commits: int = Field(default=0, ge=0)
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)
    net_lines: int = 0
    first_commit_date: Optional[datetime] = None
    last_commit_date: Optional[datetime] = None


class TimelineEntry(ApiModel):
    """One commit in chronological order with the author's running totals."""
    sha: str
    date: datetime
    author: str
    email: str
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)
    cumulative_commits: int = Field(ge=1)
    cumulative_additions: int = Field(ge=0)
    cumulative_deletions: int = Field(ge=0)


class CommitStatsResult(ApiModel):
    """Result of walking the local commit log."""
    commits: List[CommitRecord] = Field(default_factory=list, exclude=True)
    authors: List[CommitAuthorStats] = Field(default_factory=list)
    timeline: List[TimelineEntry] = Field(default_factory=list)
    total_commits: int = Field(default=0, ge=0)
    merges_excluded: int = Field(default=0, ge=0)
    warnings: List[AnalysisWarning] = Field(default_factory=list)
