"""Request and response models for mode dispatch."""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional, Union

from pydantic import ConfigDict, Field, field_validator

from ..core.models import AnalysisWarning, ApiModel
from ..exceptions import InvalidRequestError
from ..git.models import (
    AuthorIdentity,
    AuthorLines,
    BlameOptions,
    CommitAuthorStats,
    CommitOptions,
    FileBlameResult,
    TimelineEntry,
)
from ..github.metadata import RemoteContributor
from .timeline import RepositoryTimeline
from .user_metrics import UserContribution


class AnalysisMode(str, Enum):
    """Supported analysis modes."""
    BLAME = "blame"
    COMMITS = "commits"
    REMOTE_METADATA = "remote-metadata"
    HYBRID = "hybrid"
    LEGACY = "legacy"


MODE_ALIASES: Dict[str, AnalysisMode] = {
    "github-api": AnalysisMode.REMOTE_METADATA,
}

# Fields each mode needs before any work starts
REQUIRED_FIELDS: Dict[AnalysisMode, List[str]] = {
    AnalysisMode.BLAME: ["repo_path"],
    AnalysisMode.COMMITS: ["repo_path"],
    AnalysisMode.REMOTE_METADATA: ["owner", "repo", "token"],
    AnalysisMode.HYBRID: ["repo_path", "owner", "repo", "token"],
    AnalysisMode.LEGACY: ["owner", "repo", "token"],
}

FIELD_LABELS = {
    "repo_path": "repoPath",
    "owner": "owner",
    "repo": "repo",
    "token": "GitHub access token",
}


class GitHubOptions(ApiModel):
    """Remote repository locator and credential."""
    owner: Optional[str] = None
    repo: Optional[str] = None
    token: Optional[str] = Field(default=None, repr=False, exclude=True)


class AnalysisRequest(ApiModel):
    """A validated, immutable analysis request."""

    model_config = ConfigDict(frozen=True)

    mode: AnalysisMode = AnalysisMode.LEGACY
    repo_path: Optional[str] = None
    owner: Optional[str] = None
    repo: Optional[str] = None
    branch: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    blame_options: BlameOptions = Field(default_factory=BlameOptions)
    commit_options: CommitOptions = Field(default_factory=CommitOptions)
    github_options: GitHubOptions = Field(default_factory=GitHubOptions)

    @field_validator("mode", mode="before")
    @classmethod
    def resolve_mode_alias(cls, v):
        if isinstance(v, str):
            return MODE_ALIASES.get(v.lower(), v.lower())
        return v

    @field_validator("since", "until")
    @classmethod
    def assume_utc(cls, v):
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def effective_owner(self) -> Optional[str]:
        return self.owner or self.github_options.owner

    @property
    def effective_repo(self) -> Optional[str]:
        return self.repo or self.github_options.repo

    def validate_for_mode(self, token: Optional[str] = None) -> None:
        """Raise InvalidRequestError if fields the mode requires are missing."""
        available = {
            "repo_path": self.repo_path,
            "owner": self.effective_owner,
            "repo": self.effective_repo,
            "token": token or self.github_options.token,
        }
        missing = [FIELD_LABELS[name] for name in REQUIRED_FIELDS[self.mode] if not available[name]]
        if missing:
            raise InvalidRequestError(
                f"Mode '{self.mode.value}' requires: {', '.join(missing)}",
                details={"mode": self.mode.value, "missing": missing},
            )
        if self.since and self.until and self.since > self.until:
            raise InvalidRequestError(
                "'since' must not be later than 'until'",
                details={"since": self.since.isoformat(), "until": self.until.isoformat()},
            )


class ContributorAggregate(ApiModel):
    """Per-contributor attribution combining commit activity and line ownership."""
    identity: AuthorIdentity
    login: Optional[str] = None
    github_id: Optional[int] = None
    avatar_url: Optional[str] = None
    commit_count: int = Field(default=0, ge=0)
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)
    net_lines: int = 0
    line_ownership: Optional[int] = Field(default=None, ge=0)
    first_commit_date: Optional[datetime] = None
    last_commit_date: Optional[datetime] = None
    active_days: int = Field(default=0, ge=0)
    is_bot: bool = False
    is_merge_committer: bool = False


class DateRange(ApiModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class CommitMessageEntry(ApiModel):
    sha: str
    author: str
    date: datetime
    message: str


class CommitTimeEntry(ApiModel):
    sha: str
    author: str
    date: datetime
    timestamp: int  # epoch milliseconds


class AuthorFileChange(ApiModel):
    author: str
    filename: str
    additions: int
    deletions: int
    changes: int


class MergeCommitEntry(ApiModel):
    sha: str
    author: str
    date: datetime
    message: str
    parent_count: int


class SupplementaryReports(ApiModel):
    """Commit messages, commit times, files touched per author and merge commits."""
    commit_messages: List[CommitMessageEntry] = Field(default_factory=list)
    commit_times: List[CommitTimeEntry] = Field(default_factory=list)
    files_by_author: List[AuthorFileChange] = Field(default_factory=list)
    merges: List[MergeCommitEntry] = Field(default_factory=list)


class AnalysisMetadata(ApiModel):
    """Bookkeeping attached to a legacy analysis."""
    total_commits: int = Field(ge=0)
    analyzed_commits: int = Field(ge=0)
    total_contributors: int = Field(ge=0)
    bots_excluded: int = Field(default=0, ge=0)
    merges_excluded: int = Field(default=0, ge=0)
    pages_fetched: int = Field(default=0, ge=0)
    truncated: bool = False
    date_range: DateRange = Field(default_factory=DateRange)


class BlameResponse(ApiModel):
    mode: Literal["blame"] = "blame"
    repo_path: str
    files_processed: int
    total_lines: int
    authors: List[AuthorLines]
    files: List[FileBlameResult] = Field(default_factory=list)
    warnings: List[AnalysisWarning] = Field(default_factory=list)

    def summary(self) -> str:
        return f"Analysis complete. Attributed {self.total_lines} lines across {self.files_processed} files."


class CommitsResponse(ApiModel):
    mode: Literal["commits"] = "commits"
    repo_path: str
    total_commits: int
    merges_excluded: int = 0
    authors: List[CommitAuthorStats]
    timeline: List[TimelineEntry]
    activity: RepositoryTimeline = Field(default_factory=RepositoryTimeline)
    user_metrics: Optional[List[UserContribution]] = None
    warnings: List[AnalysisWarning] = Field(default_factory=list)

    def summary(self) -> str:
        return f"Analysis complete. Processed {self.total_commits} commits."


class RemoteMetadataResponse(ApiModel):
    mode: Literal["remote-metadata"] = "remote-metadata"
    owner: str
    repo: str
    pull_requests: int
    issues: int
    contributors: List[RemoteContributor]
    pull_requests_by_author: Dict[str, int] = Field(default_factory=dict)
    warnings: List[AnalysisWarning] = Field(default_factory=list)

    def summary(self) -> str:
        return (
            f"Analysis complete. Found {self.pull_requests} pull requests "
            f"and {len(self.contributors)} contributors."
        )


class HybridResponse(ApiModel):
    mode: Literal["hybrid"] = "hybrid"
    repo_path: str
    owner: str
    repo: str
    line_ownership: List[AuthorLines]
    total_lines: int
    files_processed: int
    commit_activity: List[CommitAuthorStats]
    timeline: List[TimelineEntry]
    activity: RepositoryTimeline = Field(default_factory=RepositoryTimeline)
    user_metrics: Optional[List[UserContribution]] = None
    pull_requests: int
    issues: int
    remote_contributors: List[RemoteContributor] = Field(default_factory=list)
    contributors: List[ContributorAggregate] = Field(default_factory=list)
    warnings: List[AnalysisWarning] = Field(default_factory=list)

    def summary(self) -> str:
        commits = sum(a.commits for a in self.commit_activity)
        return (
            f"Analysis complete. Processed {commits} commits and attributed "
            f"{self.total_lines} lines."
        )


class LegacyResponse(ApiModel):
    mode: Literal["legacy"] = "legacy"
    owner: str
    repo: str
    branch: Optional[str] = None
    contributors: List[ContributorAggregate]
    commit_messages: List[CommitMessageEntry] = Field(default_factory=list)
    commit_times: List[CommitTimeEntry] = Field(default_factory=list)
    files_by_author: List[AuthorFileChange] = Field(default_factory=list)
    merges: List[MergeCommitEntry] = Field(default_factory=list)
    activity: RepositoryTimeline = Field(default_factory=RepositoryTimeline)
    user_metrics: Optional[List[UserContribution]] = None
    metadata: AnalysisMetadata
    warnings: List[AnalysisWarning] = Field(default_factory=list)

    def summary(self) -> str:
        return f"Analysis complete. Processed {self.metadata.analyzed_commits} commits."


AnalysisResponse = Union[BlameResponse, CommitsResponse, RemoteMetadataResponse, HybridResponse, LegacyResponse]
