"""Server-sent event framing for progress streams."""

import asyncio
import json
import time
from typing import AsyncIterator, Optional

from ..core.constants import KEEP_ALIVE_INTERVAL_SECONDS
from .emitter import ProgressEmitter, ProgressEvent


SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: ProgressEvent) -> str:
    """Render one event as a ``data:`` frame."""
    payload = event.model_dump(mode="json", by_alias=True, exclude_none=True)
    return f"data: {json.dumps(payload, separators=(',', ':'))}\n\n"


def format_keep_alive(now_ms: Optional[int] = None) -> str:
    """Render a keep-alive comment frame stamped with epoch milliseconds."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f": keep-alive {now_ms}\n\n"


class SSEStream:
    """Subscribes to an emitter and yields SSE frames until a terminal event.

    The subscription is taken when the stream is constructed so events emitted
    before iteration starts are buffered rather than lost.
    """

    def __init__(self, emitter: ProgressEmitter, keep_alive_interval: float = KEEP_ALIVE_INTERVAL_SECONDS):
        self.keep_alive_interval = keep_alive_interval
        self._queue: "asyncio.Queue[ProgressEvent]" = asyncio.Queue()
        self._unsubscribe = emitter.subscribe(self._queue.put_nowait)

    async def frames(self) -> AsyncIterator[str]:
        """Yield event frames, plus a keep-alive every interval regardless of event traffic."""
        loop = asyncio.get_running_loop()
        last_ping = loop.time()
        try:
            while True:
                until_ping = self.keep_alive_interval - (loop.time() - last_ping)
                if until_ping <= 0:
                    yield format_keep_alive()
                    last_ping = loop.time()
                    continue
                try:
                    event = await asyncio.wait_for(self._queue.get(), timeout=until_ping)
                except asyncio.TimeoutError:
                    continue
                yield format_sse(event)
                if event.is_terminal:
                    break
        finally:
            self.close()

    def close(self) -> None:
        self._unsubscribe()
