"""Paginated commit listing with merge filtering and stat hydration."""

import asyncio
import math
from datetime import datetime
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import Field

from ..config import PipelineConfig, config
from ..core.constants import (
    HYDRATION_PROGRESS_END,
    LISTING_PROGRESS_END,
    MAX_COMMITS_PER_REQUEST,
    UNKNOWN_AUTHOR_NAME,
)
from ..core.models import AnalysisWarning, ApiModel, WarningCode
from ..exceptions import (
    AttributionError,
    EmptyRepositoryError,
    OnlyMergeCommitsError,
    RateLimitedError,
    RequestCancelledError,
    UpstreamAuthError,
    UpstreamUnavailableError,
)
from ..git.models import CommitRecord, FileChange
from ..logging import get_logger
from ..progress.emitter import ProgressScope
from .client import GitHubClient, Page
from .rate_limit import RateLimitGuard
from .request_queue import RequestQueue


logger = get_logger(__name__)

# Hydration failures that abort the whole fetch rather than degrading it
FATAL_HYDRATION_ERRORS = (RateLimitedError, UpstreamUnavailableError, UpstreamAuthError, RequestCancelledError)


class FetchOptions(ApiModel):
    """Options for a remote commit fetch."""
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    max_commits: int = Field(default=MAX_COMMITS_PER_REQUEST, gt=0)
    exclude_merges: bool = True


class FetchResult(ApiModel):
    """Commits in API order plus bookkeeping about how they were obtained."""
    commits: List[CommitRecord] = Field(default_factory=list)
    warnings: List[AnalysisWarning] = Field(default_factory=list)
    pages_fetched: int = 0
    total_listed: int = 0
    merges_excluded: int = 0
    merges: List[CommitRecord] = Field(default_factory=list)
    hydrated: int = 0
    truncated: bool = False


def file_changes(files: Optional[List[Dict[str, Any]]]) -> Tuple[FileChange, ...]:
    return tuple(
        FileChange(
            path=f.get("filename", ""),
            additions=int(f.get("additions") or 0),
            deletions=int(f.get("deletions") or 0),
        )
        for f in files or []
    )


def commit_from_api(item: Dict[str, Any]) -> CommitRecord:
    """Build a CommitRecord from a commit listing or detail payload."""
    commit = item.get("commit") or {}
    author = commit.get("author") or {}
    committer = commit.get("committer") or {}
    stats = item.get("stats")
    message = (commit.get("message") or "").split("\n", 1)[0]
    account = item.get("author") or {}
    return CommitRecord(
        sha=item["sha"],
        author_name=author.get("name") or UNKNOWN_AUTHOR_NAME,
        author_email=author.get("email") or "",
        author_date=author.get("date") or committer.get("date"),
        additions=(stats or {}).get("additions", 0),
        deletions=(stats or {}).get("deletions", 0),
        parent_count=len(item.get("parents") or []),
        message=message,
        files=file_changes(item.get("files")),
        stats_hydrated=stats is not None,
        author_login=account.get("login"),
        author_id=account.get("id"),
        avatar_url=account.get("avatar_url"),
    )


class CommitFetcher:
    """Fetches a branch's commits through a RequestQueue.

    Listing pages are reassembled by page number, never by completion order.
    Pagination stops on a short page, at ``max_commits`` or at the page
    ceiling; reaching the ceiling is reported as a warning.
    """

    def __init__(
        self,
        client: GitHubClient,
        queue: RequestQueue,
        guard: Optional[RateLimitGuard] = None,
        settings: Optional[PipelineConfig] = None,
        progress: Optional[ProgressScope] = None,
        cancel_event: Optional[asyncio.Event] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.queue = queue
        self.guard = guard
        self.settings = settings or config.pipeline
        self.progress = progress or ProgressScope(None)
        self.cancel_event = cancel_event
        self._sleep = sleep

    async def fetch_commits(
        self, owner: str, repo: str, branch: Optional[str] = None, options: Optional[FetchOptions] = None
    ) -> FetchResult:
        options = options or FetchOptions()
        result = await self._list(owner, repo, branch, options)

        if result.total_listed == 0:
            raise EmptyRepositoryError(
                f"Repository {owner}/{repo} has no commits",
                details={"branch": branch, "since": _iso(options.since), "until": _iso(options.until)},
            )
        if not result.commits:
            raise OnlyMergeCommitsError(
                "No non-merge commits found in the specified date range",
                details={"merge_commits": result.merges_excluded},
            )

        await self._hydrate(owner, repo, result)
        logger.info(
            "Commit fetch complete",
            repo=f"{owner}/{repo}",
            commits=len(result.commits),
            pages=result.pages_fetched,
            merges_excluded=result.merges_excluded,
            hydrated=result.hydrated,
            warnings=[w.code.value for w in result.warnings],
        )
        return result

    async def _list(self, owner: str, repo: str, branch: Optional[str], options: FetchOptions) -> FetchResult:
        per_page = self.settings.commits_per_page
        max_pages = self.settings.max_pages
        listing = self.progress.child(0.0, LISTING_PROGRESS_END / HYDRATION_PROGRESS_END)

        result = FetchResult()
        last_page: Optional[int] = None
        page = 1
        done = False

        while not done:
            if page > max_pages:
                result.warnings.append(AnalysisWarning(
                    code=WarningCode.PAGE_LIMIT_REACHED,
                    message=f"Stopped after {max_pages} pages; older commits were not analyzed",
                    details={"max_pages": max_pages, "commits": len(result.commits)},
                ))
                logger.warning("Reached page limit", repo=f"{owner}/{repo}", max_pages=max_pages)
                listing.report(1.0, "Reached page limit, finalizing...")
                break
            self._check_cancelled()

            window_end = self._window_end(page, last_page, max_pages, options.max_commits - len(result.commits))
            if self.guard is not None:
                self.guard.invalidate()

            fetches = [
                self.queue.add(partial(self._fetch_page, owner, repo, branch, p, per_page, options))
                for p in range(page, window_end + 1)
            ]
            pages: Dict[int, Page] = dict(zip(range(page, window_end + 1), await asyncio.gather(*fetches)))

            for number in sorted(pages):
                items, reported_last = pages[number]
                if reported_last is not None:
                    last_page = reported_last
                result.pages_fetched += 1
                result.total_listed += len(items)

                for index, item in enumerate(items):
                    record = commit_from_api(item)
                    if record.is_merge:
                        result.merges.append(record)
                        if options.exclude_merges:
                            result.merges_excluded += 1
                            continue
                    result.commits.append(record)
                    if len(result.commits) >= options.max_commits:
                        result.truncated = index < len(items) - 1 or len(items) == per_page
                        done = True
                        break

                total = last_page or number + 1
                listing.report(
                    number / total,
                    f"Fetching commits page {number}...",
                    current_page=number,
                    total_pages=last_page,
                    processed_commits=len(result.commits),
                )
                if done or len(items) < per_page or (last_page is not None and number >= last_page):
                    done = True
                    break

            page = window_end + 1
            if not done and self.settings.page_delay_ms:
                await self._sleep(self.settings.page_delay_ms / 1000)

        return result

    def _window_end(self, page: int, last_page: Optional[int], max_pages: int, still_needed: int) -> int:
        """Last page to request in this round; later pages are only parallelized once the total is known."""
        if page == 1 or last_page is None:
            return page
        needed_pages = max(1, math.ceil(still_needed / self.settings.commits_per_page))
        return min(page + min(self.queue.max_concurrent, needed_pages) - 1, last_page, max_pages)

    async def _fetch_page(
        self, owner: str, repo: str, branch: Optional[str], page: int, per_page: int, options: FetchOptions
    ) -> Page:
        logger.debug("Fetching commit page", repo=f"{owner}/{repo}", page=page)
        return await self.client.list_commits(
            owner, repo, branch, page=page, per_page=per_page, since=options.since, until=options.until
        )

    async def _hydrate(self, owner: str, repo: str, result: FetchResult) -> None:
        hydration = self.progress.child(LISTING_PROGRESS_END / HYDRATION_PROGRESS_END, 1.0)
        needing = [i for i, c in enumerate(result.commits) if not c.stats_hydrated]
        if not needing:
            return

        threshold = self.settings.hydration_skip_threshold
        if threshold is not None and len(needing) > threshold:
            result.warnings.append(AnalysisWarning(
                code=WarningCode.PARTIAL_HYDRATION,
                message=(
                    f"{len(needing)} commits need line statistics, more than the hydration threshold "
                    f"of {threshold}; additions and deletions are reported as zero"
                ),
                details={"needing": len(needing), "threshold": threshold, "hydrated": 0},
            ))
            return

        targets = needing[:self.settings.max_hydration_calls]
        skipped = len(needing) - len(targets)
        failed = 0
        batch_size = self.settings.hydration_batch_size

        for start in range(0, len(targets), batch_size):
            self._check_cancelled()
            if self.guard is not None:
                self.guard.invalidate()

            batch = targets[start:start + batch_size]
            outcomes = await asyncio.gather(
                *(self.queue.add(partial(self._hydrate_one, owner, repo, result.commits[i])) for i in batch),
                return_exceptions=True,
            )
            for i, outcome in zip(batch, outcomes):
                if isinstance(outcome, FATAL_HYDRATION_ERRORS):
                    raise outcome
                if isinstance(outcome, AttributionError):
                    logger.warning("Could not hydrate commit", sha=result.commits[i].sha, error=outcome.message)
                    failed += 1
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    result.commits[i] = outcome
                    result.hydrated += 1

            done_count = start + len(batch)
            hydration.report(
                done_count / len(targets),
                f"Fetching detailed stats ({done_count}/{len(targets)})...",
                processed_commits=done_count,
            )
            if done_count < len(targets) and self.settings.batch_delay_ms:
                await self._sleep(self.settings.batch_delay_ms / 1000)

        if skipped or failed:
            result.warnings.append(AnalysisWarning(
                code=WarningCode.PARTIAL_HYDRATION,
                message=(
                    f"Line statistics are incomplete: {result.hydrated} of {len(needing)} commits hydrated; "
                    f"the rest are reported with zero additions and deletions"
                ),
                details={
                    "needing": len(needing),
                    "hydrated": result.hydrated,
                    "skipped": skipped,
                    "failed": failed,
                    "max_hydration_calls": self.settings.max_hydration_calls,
                },
            ))

    async def _hydrate_one(self, owner: str, repo: str, commit: CommitRecord) -> CommitRecord:
        detail = await self.client.get_commit(owner, repo, commit.sha) or {}
        stats = detail.get("stats") or {}
        return commit.model_copy(update={
            "additions": int(stats.get("additions", 0)),
            "deletions": int(stats.get("deletions", 0)),
            "files": file_changes(detail.get("files")),
            "stats_hydrated": True,
        })

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise RequestCancelledError("Commit fetch cancelled")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
