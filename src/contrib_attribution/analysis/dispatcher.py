"""Mode dispatch: runs the engines a request needs and merges their results."""

import asyncio
import uuid
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from ..config import PipelineConfig, config
from ..exceptions import AttributionError, RequestCancelledError
from ..git.blame import BlameEngine
from ..git.commits import CommitStatsEngine, LocalLogQuery
from ..git.models import BlameOptions, CommitRecord
from ..github.client import GitHubClient
from ..github.commits import CommitFetcher, FetchOptions
from ..github.metadata import RemoteMetadataFetcher
from ..github.rate_limit import RateLimitGuard
from ..github.request_queue import RequestQueue
from ..logging import get_logger, request_context
from ..progress.emitter import ProgressEmitter, ProgressScope
from .aggregation import build_contributor_aggregates, commit_date_range, is_bot, merge_hybrid
from .models import (
    AnalysisMetadata,
    AnalysisMode,
    AnalysisRequest,
    AnalysisResponse,
    BlameResponse,
    CommitsResponse,
    HybridResponse,
    LegacyResponse,
    RemoteMetadataResponse,
)
from .reports import build_supplementary_reports
from .timeline import RepositoryTimeline, extract_timeline
from .user_metrics import UserContribution, extract_all_user_metrics


logger = get_logger(__name__)

ClientFactory = Callable[[Optional[str]], GitHubClient]
RemoteSession = Tuple[GitHubClient, RateLimitGuard, RequestQueue]


class DispatcherState(str, Enum):
    """Lifecycle of a single dispatch."""
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def default_client_factory(token: Optional[str]) -> GitHubClient:
    return GitHubClient(token)


class ModeDispatcher:
    """Runs one analysis request.

    Each instance owns the request-scoped queue, rate-limit guard and progress
    emitter, so concurrent requests never share state. Every sub-computation a
    mode needs is mandatory: the first failure fails the request and cancels
    its siblings.
    """

    def __init__(
        self,
        settings: Optional[PipelineConfig] = None,
        emitter: Optional[ProgressEmitter] = None,
        client_factory: Optional[ClientFactory] = None,
        allow_rate_limit_wait: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or config.pipeline
        self.emitter = emitter or ProgressEmitter()
        self.client_factory = client_factory or default_client_factory
        self.allow_rate_limit_wait = allow_rate_limit_wait
        self.state = DispatcherState.IDLE
        self.cancel_event = asyncio.Event()
        self.queue: Optional[RequestQueue] = None
        self._sleep = sleep
        self._handlers: Dict[AnalysisMode, Callable[[AnalysisRequest, Optional[str]], Awaitable[AnalysisResponse]]] = {
            AnalysisMode.BLAME: self._run_blame,
            AnalysisMode.COMMITS: self._run_commits,
            AnalysisMode.REMOTE_METADATA: self._run_remote_metadata,
            AnalysisMode.HYBRID: self._run_hybrid,
            AnalysisMode.LEGACY: self._run_legacy,
        }

    def cancel(self) -> None:
        """Stop submitting remote calls; calls already in flight finish and are discarded."""
        self.cancel_event.set()
        if self.queue is not None:
            self.queue.close()

    async def dispatch(self, request: AnalysisRequest, token: Optional[str] = None) -> AnalysisResponse:
        if self.state is not DispatcherState.IDLE:
            raise RuntimeError("A ModeDispatcher handles exactly one request")

        token = request.github_options.token or token
        try:
            request.validate_for_mode(token)
        except AttributionError as e:
            self._fail(e.message, e.code)
            raise

        self.state = DispatcherState.RUNNING
        with request_context(analysis_id=uuid.uuid4().hex[:12], mode=request.mode.value):
            logger.info(
                "Analysis started",
                repo_path=request.repo_path,
                repo=f"{request.effective_owner}/{request.effective_repo}" if request.effective_owner else None,
                branch=request.branch,
            )

            try:
                response = await self._handlers[request.mode](request, token)
            except AttributionError as e:
                logger.warning("Analysis failed", code=e.code, error=e.message)
                self._fail(e.message, e.code)
                raise
            except asyncio.CancelledError:
                self._fail("Analysis cancelled", RequestCancelledError.code)
                raise
            except Exception as e:
                logger.error("Analysis failed unexpectedly", error=str(e), exc_info=True)
                self._fail("Analysis failed unexpectedly", "INTERNAL_ERROR")
                raise

            self.state = DispatcherState.SUCCEEDED
            logger.info("Analysis succeeded", warnings=len(response.warnings))

        self.emitter.complete(response.summary(), result=response.to_wire())
        return response

    def _fail(self, message: str, code: str) -> None:
        self.state = DispatcherState.FAILED
        self.emitter.error(message, code=code)

    @asynccontextmanager
    async def _remote(self, token: Optional[str]) -> AsyncIterator[RemoteSession]:
        client = self.client_factory(token)
        guard = RateLimitGuard(
            client,
            safety_margin=self.settings.rate_limit_safety_margin,
            max_wait_seconds=self.settings.max_rate_limit_wait_seconds,
            sleep=self._sleep,
        )
        self.queue = RequestQueue(self.settings.max_concurrent_requests, guard, allow_wait=self.allow_rate_limit_wait)
        if self.cancel_event.is_set():
            self.queue.close()
        try:
            yield client, guard, self.queue
        finally:
            await client.aclose()

    async def _run_concurrently(self, *coros: Awaitable[Any]) -> Tuple[Any, ...]:
        """Await all coroutines; on the first failure cancel the rest and re-raise."""
        tasks = [asyncio.ensure_future(c) for c in coros]
        try:
            return tuple(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    def _blame_engine(self, start: float, end: float) -> BlameEngine:
        return BlameEngine(ProgressScope(self.emitter, start, end), self.cancel_event)

    def _blame_options(self, request: AnalysisRequest) -> BlameOptions:
        options = request.blame_options
        cap = self.settings.blame_max_concurrency
        if cap is not None and options.max_concurrency > cap:
            options = options.model_copy(update={"max_concurrency": cap})
        return options

    def _activity(
        self, request: AnalysisRequest, commits: List[CommitRecord]
    ) -> Tuple[RepositoryTimeline, Optional[List[UserContribution]]]:
        """Per-user activity timeline, plus per-user metrics when the request asks for them."""
        timeline = extract_timeline(commits)
        if not request.commit_options.include_user_metrics:
            return timeline, None
        users = [(u.user_name, u.email, u.avatar_url) for u in timeline.users]
        return timeline, extract_all_user_metrics(commits, users)

    def _log_query(self, request: AnalysisRequest) -> LocalLogQuery:
        return LocalLogQuery(
            branch=request.branch,
            since=request.since,
            until=request.until,
            exclude_merges=request.commit_options.exclude_merges,
            max_commits=request.commit_options.max_commits,
        )

    async def _run_blame(self, request: AnalysisRequest, token: Optional[str]) -> BlameResponse:
        attribution = await self._blame_engine(0, 95).compute_attribution(
            request.repo_path, self._blame_options(request), request.branch
        )
        return BlameResponse(
            repo_path=request.repo_path,
            files_processed=attribution.files_processed,
            total_lines=attribution.total_lines,
            authors=attribution.authors,
            files=attribution.files,
            warnings=attribution.warnings,
        )

    async def _run_commits(self, request: AnalysisRequest, token: Optional[str]) -> CommitsResponse:
        engine = CommitStatsEngine(ProgressScope(self.emitter, 0, 95))
        stats = await engine.compute_commit_stats(request.repo_path, self._log_query(request))
        activity, user_metrics = self._activity(request, stats.commits)
        return CommitsResponse(
            repo_path=request.repo_path,
            total_commits=stats.total_commits,
            merges_excluded=stats.merges_excluded,
            authors=stats.authors,
            timeline=stats.timeline,
            activity=activity,
            user_metrics=user_metrics,
            warnings=stats.warnings,
        )

    async def _run_remote_metadata(self, request: AnalysisRequest, token: Optional[str]) -> RemoteMetadataResponse:
        owner, repo = request.effective_owner, request.effective_repo
        async with self._remote(token) as (client, _guard, queue):
            fetcher = RemoteMetadataFetcher(
                client, queue, self.settings, ProgressScope(self.emitter, 0, 95), self.cancel_event
            )
            metadata = await fetcher.fetch(owner, repo)
        return RemoteMetadataResponse(
            owner=owner,
            repo=repo,
            pull_requests=metadata.pull_requests,
            issues=metadata.issues,
            contributors=metadata.contributors,
            pull_requests_by_author=metadata.pull_requests_by_author,
            warnings=metadata.warnings,
        )

    async def _run_hybrid(self, request: AnalysisRequest, token: Optional[str]) -> HybridResponse:
        owner, repo = request.effective_owner, request.effective_repo
        async with self._remote(token) as (client, _guard, queue):
            metadata_fetcher = RemoteMetadataFetcher(
                client, queue, self.settings, ProgressScope(self.emitter, 5, 40), self.cancel_event
            )
            commit_engine = CommitStatsEngine(ProgressScope(self.emitter, 5, 40))
            attribution, stats, metadata = await self._run_concurrently(
                self._blame_engine(5, 90).compute_attribution(
                    request.repo_path, self._blame_options(request), request.branch
                ),
                commit_engine.compute_commit_stats(request.repo_path, self._log_query(request)),
                metadata_fetcher.fetch(owner, repo),
            )

        self.emitter.progress(95, "Merging results...")
        activity, user_metrics = self._activity(request, stats.commits)
        return HybridResponse(
            repo_path=request.repo_path,
            owner=owner,
            repo=repo,
            line_ownership=attribution.authors,
            total_lines=attribution.total_lines,
            files_processed=attribution.files_processed,
            commit_activity=stats.authors,
            timeline=stats.timeline,
            activity=activity,
            user_metrics=user_metrics,
            pull_requests=metadata.pull_requests,
            issues=metadata.issues,
            remote_contributors=metadata.contributors,
            contributors=merge_hybrid(attribution, stats),
            warnings=attribution.warnings + stats.warnings + metadata.warnings,
        )

    async def _run_legacy(self, request: AnalysisRequest, token: Optional[str]) -> LegacyResponse:
        owner, repo = request.effective_owner, request.effective_repo
        options = FetchOptions(
            since=request.since,
            until=request.until,
            max_commits=request.commit_options.max_commits or self.settings.max_commits,
            exclude_merges=request.commit_options.exclude_merges,
        )
        async with self._remote(token) as (client, guard, queue):
            fetcher = CommitFetcher(
                client,
                queue,
                guard,
                self.settings,
                ProgressScope(self.emitter, 0, 95),
                self.cancel_event,
                sleep=self._sleep,
            )
            fetched = await fetcher.fetch_commits(owner, repo, request.branch, options)

        include_bots = request.commit_options.include_bots
        contributors, bots_excluded = build_contributor_aggregates(
            fetched.commits, include_bots=include_bots, merges=fetched.merges
        )
        reports = build_supplementary_reports(fetched.commits, fetched.merges, include_bots=include_bots)
        counted = [
            c for c in fetched.commits
            if include_bots or not is_bot(c.author_name, c.author_email, c.author_login)
        ]
        activity, user_metrics = self._activity(request, counted)
        metadata = AnalysisMetadata(
            total_commits=fetched.total_listed,
            analyzed_commits=len(fetched.commits),
            total_contributors=len(contributors),
            bots_excluded=bots_excluded,
            merges_excluded=fetched.merges_excluded,
            pages_fetched=fetched.pages_fetched,
            truncated=fetched.truncated,
            date_range=commit_date_range(fetched.commits),
        )
        return LegacyResponse(
            owner=owner,
            repo=repo,
            branch=request.branch,
            contributors=contributors,
            commit_messages=reports.commit_messages,
            commit_times=reports.commit_times,
            files_by_author=reports.files_by_author,
            merges=reports.merges,
            activity=activity,
            user_metrics=user_metrics,
            metadata=metadata,
            warnings=fetched.warnings,
        )
