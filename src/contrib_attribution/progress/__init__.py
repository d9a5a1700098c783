"""Progress events and their text/event-stream transport."""

from .emitter import EventType, ProgressEmitter, ProgressEvent, ProgressScope
from .sse import SSEStream, format_keep_alive, format_sse

__all__ = [
    "EventType",
    "ProgressEmitter",
    "ProgressEvent",
    "ProgressScope",
    "SSEStream",
    "format_keep_alive",
    "format_sse",
]
