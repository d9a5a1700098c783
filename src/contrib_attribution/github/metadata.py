"""Pull request, issue and contributor listings."""

import asyncio
from collections import Counter
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import Field

from ..config import PipelineConfig, config
from ..core.constants import METADATA_PER_PAGE
from ..core.models import AnalysisWarning, ApiModel, WarningCode
from ..exceptions import RequestCancelledError
from ..logging import get_logger
from ..progress.emitter import ProgressScope
from .client import GitHubClient, Page
from .request_queue import RequestQueue


logger = get_logger(__name__)

Lister = Callable[[str, str, int, int], Awaitable[Page]]


class RemoteContributor(ApiModel):
    login: str
    contributions: int = Field(default=0, ge=0)


class RemoteMetadata(ApiModel):
    """Counts and contributor list reported by the hosting API."""
    pull_requests: int = Field(default=0, ge=0)
    issues: int = Field(default=0, ge=0)
    contributors: List[RemoteContributor] = Field(default_factory=list)
    pull_requests_by_author: Dict[str, int] = Field(default_factory=dict)
    warnings: List[AnalysisWarning] = Field(default_factory=list)


class RemoteMetadataFetcher:
    """Lists pull requests, issues and contributors concurrently through the request queue.

    Each listing stops at ``METADATA_MAX_PAGES``; a listing cut off there is
    reported as a ``PAGE_LIMIT_REACHED`` warning so undercounts are visible.
    """

    def __init__(
        self,
        client: GitHubClient,
        queue: RequestQueue,
        settings: Optional[PipelineConfig] = None,
        progress: Optional[ProgressScope] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.client = client
        self.queue = queue
        self.settings = settings or config.pipeline
        self.progress = progress or ProgressScope(None)
        self.cancel_event = cancel_event

    async def fetch(self, owner: str, repo: str) -> RemoteMetadata:
        self.progress.report(0.0, "Fetching pull requests, issues and contributors...")
        listings = {
            "pull requests": self.client.list_pulls,
            "issues": self.client.list_issues,
            "contributors": self.client.list_contributors,
        }
        collected = await asyncio.gather(*(self._collect(lister, owner, repo) for lister in listings.values()))
        (pulls, _), (issues, _), (contributors, _) = collected

        warnings = [
            self._page_limit_warning(name, owner, repo, len(items))
            for name, (items, truncated) in zip(listings, collected)
            if truncated
        ]

        # The issues listing also returns pull requests
        issues = [issue for issue in issues if "pull_request" not in issue]
        by_author = Counter((pr.get("user") or {}).get("login") or "unknown" for pr in pulls)

        metadata = RemoteMetadata(
            pull_requests=len(pulls),
            issues=len(issues),
            contributors=[
                RemoteContributor(login=c.get("login") or "unknown", contributions=c.get("contributions", 0))
                for c in contributors
            ],
            pull_requests_by_author=dict(by_author),
            warnings=warnings,
        )
        self.progress.report(
            1.0,
            f"Found {metadata.pull_requests} pull requests, {metadata.issues} issues "
            f"and {len(metadata.contributors)} contributors",
        )
        return metadata

    async def _collect(self, lister: Lister, owner: str, repo: str) -> Tuple[List[Dict[str, Any]], bool]:
        """Page through one listing; the flag is True when the page ceiling cut it short."""
        items: List[Dict[str, Any]] = []
        for page in range(1, self.settings.metadata_max_pages + 1):
            if self.cancel_event is not None and self.cancel_event.is_set():
                raise RequestCancelledError("Metadata fetch cancelled")
            batch, last_page = await self.queue.add(partial(lister, owner, repo, page, METADATA_PER_PAGE))
            items.extend(batch)
            if len(batch) < METADATA_PER_PAGE or (last_page is not None and page >= last_page):
                return items, False
        return items, True

    def _page_limit_warning(self, listing: str, owner: str, repo: str, collected: int) -> AnalysisWarning:
        max_pages = self.settings.metadata_max_pages
        logger.warning("Metadata listing truncated", repo=f"{owner}/{repo}", listing=listing, max_pages=max_pages)
        return AnalysisWarning(
            code=WarningCode.PAGE_LIMIT_REACHED,
            message=f"Stopped listing {listing} after {max_pages} pages; the count is a lower bound",
            details={"listing": listing, "max_pages": max_pages, "collected": collected},
        )
