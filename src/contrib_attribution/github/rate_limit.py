"""Remote quota probing and wait decisions."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

import httpx
from pydantic import Field

from ..core.constants import (
    MAX_RATE_LIMIT_WAIT_SECONDS,
    RATE_LIMIT_SAFETY_MARGIN,
    UNKNOWN_RATE_LIMIT_REMAINING,
)
from ..core.models import ApiModel
from ..exceptions import RateLimitedError, UpstreamError
from ..logging import get_logger
from .client import GitHubClient, reset_time_from_headers


logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RateLimitState(ApiModel):
    """Snapshot of the remaining quota."""
    remaining: int = Field(ge=0)
    limit: Optional[int] = None
    reset_at: datetime
    should_wait: bool = False

    @classmethod
    def build(
        cls, remaining: int, reset_at: datetime, safety_margin: int, limit: Optional[int] = None
    ) -> "RateLimitState":
        remaining = max(0, remaining)
        return cls(remaining=remaining, limit=limit, reset_at=reset_at, should_wait=remaining < safety_margin)


class RateLimitGuard:
    """Decides whether remote calls may proceed given the current quota.

    The snapshot is shared by every task of one request. ``invalidate()`` marks
    it stale so the next ``current()`` re-queries the quota endpoint, which the
    API does not count against the quota. Response headers observed between
    checks keep the snapshot current.
    """

    def __init__(
        self,
        client: GitHubClient,
        safety_margin: int = RATE_LIMIT_SAFETY_MARGIN,
        max_wait_seconds: float = MAX_RATE_LIMIT_WAIT_SECONDS,
        clock: Clock = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.safety_margin = safety_margin
        self.max_wait_seconds = max_wait_seconds
        self._clock = clock
        self._sleep = sleep
        self._state: Optional[RateLimitState] = None
        self._fresh = False
        client.add_response_hook(self.observe)

    @property
    def state(self) -> Optional[RateLimitState]:
        return self._state

    async def check(self) -> RateLimitState:
        """Probe the quota endpoint and return a fresh snapshot."""
        try:
            data = await self.client.get_rate_limit() or {}
            core = data.get("resources", {}).get("core") or data.get("rate") or {}
            state = RateLimitState.build(
                remaining=int(core.get("remaining", UNKNOWN_RATE_LIMIT_REMAINING)),
                limit=core.get("limit"),
                reset_at=datetime.fromtimestamp(int(core.get("reset", 0)), tz=timezone.utc)
                if core.get("reset") else self._clock() + timedelta(hours=1),
                safety_margin=self.safety_margin,
            )
        except (UpstreamError, ValueError, TypeError) as e:
            logger.warning("Rate limit check failed, assuming quota is available", error=str(e))
            state = RateLimitState.build(
                remaining=UNKNOWN_RATE_LIMIT_REMAINING,
                reset_at=self._clock() + timedelta(hours=1),
                safety_margin=self.safety_margin,
            )
        self._state = state
        self._fresh = True
        return state

    async def current(self) -> RateLimitState:
        """Snapshot for the current batch, probing only when stale."""
        if self._state is None or not self._fresh:
            return await self.check()
        return self._state

    def invalidate(self) -> None:
        self._fresh = False

    def observe(self, headers: httpx.Headers) -> None:
        remaining = headers.get("x-ratelimit-remaining")
        reset_at = reset_time_from_headers(headers)
        if remaining is None or not remaining.isdigit() or reset_at is None:
            return
        limit = headers.get("x-ratelimit-limit")
        self._state = RateLimitState.build(
            remaining=int(remaining),
            reset_at=reset_at,
            safety_margin=self.safety_margin,
            limit=int(limit) if limit and limit.isdigit() else None,
        )

    def wait_seconds(self, state: RateLimitState) -> float:
        """Seconds until ``min(reset_at, now + max_wait)``."""
        now = self._clock()
        until = min(state.reset_at, now + timedelta(seconds=self.max_wait_seconds))
        return max(0.0, (until - now).total_seconds())

    async def enforce(self, allow_wait: bool = True) -> RateLimitState:
        """Return the current state if calls may proceed, otherwise wait or raise RateLimitedError."""
        state = await self.current()
        if not state.should_wait:
            return state

        if allow_wait:
            delay = self.wait_seconds(state)
            logger.warning(
                "Approaching rate limit, waiting",
                remaining=state.remaining,
                reset_at=state.reset_at.isoformat(),
                delay_seconds=delay,
            )
            await self._sleep(delay)
            state = await self.check()
            if not state.should_wait:
                return state

        raise self._limited(state)

    def _limited(self, state: RateLimitState) -> RateLimitedError:
        return RateLimitedError(
            f"Approaching GitHub API rate limit ({state.remaining} requests remaining). "
            f"Please retry after {state.reset_at.strftime('%Y-%m-%d %H:%M:%S')} UTC.",
            reset_at=state.reset_at,
            remaining=state.remaining,
        )
