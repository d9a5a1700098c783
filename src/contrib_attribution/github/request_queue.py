"""Bounded-concurrency runner for remote calls."""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from ..core.constants import DEFAULT_MAX_CONCURRENT_REQUESTS
from ..exceptions import RequestCancelledError
from ..logging import get_logger
from .rate_limit import RateLimitGuard


logger = get_logger(__name__)

T = TypeVar("T")


class RequestQueue:
    """Runs at most ``max_concurrent`` tasks at once, admitting them in submission order.

    A task's exception is raised only to the caller that submitted it. Remote
    tasks pass through the rate-limit guard one at a time before running.
    After ``close()`` no further task starts; tasks already running finish.
    """

    def __init__(
        self,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT_REQUESTS,
        guard: Optional[RateLimitGuard] = None,
        allow_wait: bool = True,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.guard = guard
        self.allow_wait = allow_wait
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._guard_lock = asyncio.Lock()
        self._pending = 0
        self._active = 0
        self._closed = False

    @property
    def pending(self) -> int:
        return self._pending

    @property
    def active(self) -> int:
        return self._active

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop admitting tasks."""
        if not self._closed:
            logger.info("Request queue closed", pending=self._pending, active=self._active)
        self._closed = True

    async def add(self, task: Callable[[], Awaitable[T]], remote: bool = True) -> T:
        self._raise_if_closed()
        self._pending += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._pending -= 1

        try:
            self._raise_if_closed()
            if remote and self.guard is not None:
                async with self._guard_lock:
                    await self.guard.enforce(allow_wait=self.allow_wait)
                self._raise_if_closed()

            self._active += 1
            try:
                return await task()
            finally:
                self._active -= 1
        finally:
            self._semaphore.release()

    def _raise_if_closed(self) -> None:
        if self._closed:
            raise RequestCancelledError("Request was cancelled before the task started")
