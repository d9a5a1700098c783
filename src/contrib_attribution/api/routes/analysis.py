"""Analysis API routes: one-shot JSON and server-sent progress streams."""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from ...analysis.models import AnalysisRequest
from ...config import config
from ...logging import get_logger
from ...progress.sse import SSE_HEADERS, SSEStream
from ..dependencies import DispatcherFactory, get_access_token, get_dispatcher_factory


router = APIRouter(prefix="/analyze", tags=["analysis"])
logger = get_logger(__name__)


@router.post("")
async def analyze(
    request: AnalysisRequest,
    token: Optional[str] = Depends(get_access_token),
    dispatcher_factory: DispatcherFactory = Depends(get_dispatcher_factory),
):
    """Run an analysis and return the mode-specific result."""
    dispatcher = dispatcher_factory()
    return await dispatcher.dispatch(request, token)


@router.post("/stream")
async def analyze_stream(
    request: AnalysisRequest,
    token: Optional[str] = Depends(get_access_token),
    dispatcher_factory: DispatcherFactory = Depends(get_dispatcher_factory),
) -> StreamingResponse:
    """Run an analysis, streaming progress events and a terminal complete or error event.

    Request validation errors are returned as a regular JSON error before the
    stream opens. Once streaming, rate limits are not waited out; they end the
    stream with an error event instead.
    """
    request.validate_for_mode(request.github_options.token or token)

    dispatcher = dispatcher_factory(allow_rate_limit_wait=False)
    stream = SSEStream(dispatcher.emitter, config.pipeline.keep_alive_interval_seconds)
    task = asyncio.create_task(dispatcher.dispatch(request, token))
    task.add_done_callback(_log_outcome)

    async def frames():
        try:
            async for frame in stream.frames():
                yield frame
        finally:
            if not task.done():
                logger.info("Stream consumer disconnected, cancelling analysis", mode=request.mode.value)
                dispatcher.cancel()

    return StreamingResponse(frames(), media_type="text/event-stream", headers=SSE_HEADERS)


def _log_outcome(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.info("Streamed analysis ended with error", error=str(error), error_type=type(error).__name__)
