"""Async client for the GitHub REST API."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from ..config import config
from ..core.constants import (
    DEFAULT_RETRY_BACKOFF_BASE,
    DEFAULT_RETRY_BACKOFF_MAX,
    GITHUB_API_VERSION,
)
from ..exceptions import (
    EmptyRepositoryError,
    InvalidRequestError,
    RateLimitedError,
    RepositoryNotFoundError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamUnavailableError,
)
from ..logging import get_logger


logger = get_logger(__name__)

ResponseHook = Callable[[httpx.Headers], None]
Page = Tuple[List[Dict[str, Any]], Optional[int]]


def last_page_from_links(response: httpx.Response) -> Optional[int]:
    """Read the last page number from a ``Link: <...>; rel="last"`` header."""
    last = response.links.get("last")
    if not last or "url" not in last:
        return None
    page = httpx.URL(last["url"]).params.get("page")
    return int(page) if page and page.isdigit() else None


def reset_time_from_headers(headers: httpx.Headers) -> Optional[datetime]:
    reset = headers.get("x-ratelimit-reset")
    if reset and reset.isdigit():
        return datetime.fromtimestamp(int(reset), tz=timezone.utc)
    return None


class GitHubClient:
    """Thin wrapper over ``httpx.AsyncClient`` that maps API failures onto pipeline errors.

    Network errors and 5xx responses are retried with exponential backoff and
    then raised as UpstreamUnavailableError. Every response's headers are
    passed to registered hooks so rate-limit observers stay current.
    """

    def __init__(
        self,
        token: Optional[str],
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
            "User-Agent": config.github.user_agent,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.max_retries = config.github.max_retries if max_retries is None else max_retries
        self._sleep = sleep
        self._hooks: List[ResponseHook] = []
        self._client = httpx.AsyncClient(
            base_url=base_url or config.github.api_url,
            headers=headers,
            timeout=timeout or config.github.timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def add_response_hook(self, hook: ResponseHook) -> None:
        self._hooks.append(hook)

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """GET ``path`` with retries; returns the successful response."""
        params = {k: v for k, v in (params or {}).items() if v is not None}
        attempt = 0
        while True:
            try:
                response = await self._client.get(path, params=params)
            except httpx.TimeoutException as e:
                error: UpstreamError = UpstreamUnavailableError.from_exception(
                    f"Request to GitHub timed out: {path}", e, {"status_code": 408}
                )
            except httpx.TransportError as e:
                error = UpstreamUnavailableError.from_exception(f"Could not reach GitHub: {e}", e)
            else:
                for hook in self._hooks:
                    hook(response.headers)
                if response.status_code < 400:
                    return response
                error = self._error_for(response, path)

            if not isinstance(error, UpstreamUnavailableError) or attempt >= self.max_retries:
                raise error
            delay = min(DEFAULT_RETRY_BACKOFF_BASE ** attempt, DEFAULT_RETRY_BACKOFF_MAX)
            attempt += 1
            logger.warning("Retrying GitHub request", path=path, attempt=attempt, delay=delay, error=error.message)
            await self._sleep(delay)

    def _error_for(self, response: httpx.Response, path: str) -> Exception:
        status = response.status_code
        try:
            body = response.json()
            api_message = body.get("message", "") if isinstance(body, dict) else ""
        except ValueError:
            api_message = response.text[:200]
        details = {"status_code": status, "path": path}
        if api_message:
            details["github_message"] = api_message

        if status == 401:
            return UpstreamAuthError("GitHub authentication failed. Check the access token.", details)
        if status in (403, 429) and (
            "rate limit" in api_message.lower() or response.headers.get("x-ratelimit-remaining") == "0"
        ):
            reset_at = reset_time_from_headers(response.headers)
            when = f" after {reset_at.isoformat()}" if reset_at else " later"
            return RateLimitedError(
                f"GitHub API rate limit exceeded. Please retry{when}.",
                reset_at=reset_at,
                remaining=0,
                details=details,
            )
        if status == 404:
            return RepositoryNotFoundError("Repository or branch not found", details)
        if status == 409:
            return EmptyRepositoryError("Repository is empty", details)
        if status == 422:
            return InvalidRequestError(f"GitHub rejected the request: {api_message or 'validation failed'}", details)
        if status >= 500:
            return UpstreamUnavailableError(f"GitHub API unavailable (HTTP {status})", details)
        return UpstreamError(f"GitHub API error (HTTP {status}): {api_message}", details)

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = await self.get(path, params)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def get_page(self, path: str, params: Optional[Dict[str, Any]] = None) -> Page:
        """Fetch one page of a list endpoint, returning its items and the last page number if known."""
        response = await self.get(path, params)
        if response.status_code == 204 or not response.content:
            return [], None
        items = response.json()
        if not isinstance(items, list):
            raise UpstreamError(f"Expected a list from {path}", {"path": path})
        return items, last_page_from_links(response)

    async def get_rate_limit(self) -> Dict[str, Any]:
        return await self.get_json("/rate_limit")

    async def list_commits(
        self,
        owner: str,
        repo: str,
        branch: Optional[str],
        page: int,
        per_page: int,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> Page:
        params = {
            "sha": branch,
            "per_page": per_page,
            "page": page,
            "since": since.isoformat() if since else None,
            "until": until.isoformat() if until else None,
        }
        return await self.get_page(f"/repos/{owner}/{repo}/commits", params)

    async def get_commit(self, owner: str, repo: str, sha: str) -> Dict[str, Any]:
        return await self.get_json(f"/repos/{owner}/{repo}/commits/{sha}")

    async def list_pulls(self, owner: str, repo: str, page: int, per_page: int) -> Page:
        return await self.get_page(
            f"/repos/{owner}/{repo}/pulls", {"state": "all", "per_page": per_page, "page": page}
        )

    async def list_issues(self, owner: str, repo: str, page: int, per_page: int) -> Page:
        return await self.get_page(
            f"/repos/{owner}/{repo}/issues", {"state": "all", "per_page": per_page, "page": page}
        )

    async def list_contributors(self, owner: str, repo: str, page: int, per_page: int) -> Page:
        return await self.get_page(
            f"/repos/{owner}/{repo}/contributors", {"per_page": per_page, "page": page}
        )
