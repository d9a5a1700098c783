"""Request-scoped progress channel."""

from enum import Enum
from typing import Any, Callable, Dict, Optional

from pydantic import Field

from ..core.models import ApiModel
from ..logging import get_logger


logger = get_logger(__name__)


class EventType(str, Enum):
    """Kinds of progress events."""
    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"


class ProgressEvent(ApiModel):
    """A single progress update sent to the subscriber."""
    type: EventType
    percent: int = Field(ge=0, le=100)
    message: str
    current_page: Optional[int] = None
    total_pages: Optional[int] = None
    processed_commits: Optional[int] = None
    code: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return self.type is not EventType.PROGRESS


Listener = Callable[[ProgressEvent], None]


class ProgressEmitter:
    """Single-writer, single-subscriber progress broadcaster.

    Percent values are clamped to 0-100 and never move backwards, including on
    the terminal event: an ``error`` keeps the last percent reached. Once a
    ``complete`` or ``error`` event has been emitted the emitter is frozen and
    every later emit is dropped.
    """

    def __init__(self) -> None:
        self._listener: Optional[Listener] = None
        self._percent = 0
        self._closed = False
        self.last_event: Optional[ProgressEvent] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def percent(self) -> int:
        return self._percent

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Attach the one active subscriber and return its unsubscribe callback."""
        if self._listener is not None:
            raise RuntimeError("Progress emitter already has an active subscriber")
        self._listener = listener

        def unsubscribe() -> None:
            if self._listener is listener:
                self._listener = None

        return unsubscribe

    def progress(self, percent: float, message: str, **details: Any) -> Optional[ProgressEvent]:
        if self._closed:
            return None
        self._percent = max(self._percent, _clamp(percent))
        event = ProgressEvent(type=EventType.PROGRESS, percent=self._percent, message=message, **details)
        return self._emit(event)

    def complete(self, message: str, result: Optional[Dict[str, Any]] = None) -> Optional[ProgressEvent]:
        if self._closed:
            return None
        self._closed = True
        self._percent = 100
        return self._emit(ProgressEvent(type=EventType.COMPLETE, percent=100, message=message, result=result))

    def error(self, message: str, code: Optional[str] = None) -> Optional[ProgressEvent]:
        if self._closed:
            return None
        self._closed = True
        return self._emit(ProgressEvent(type=EventType.ERROR, percent=self._percent, message=message, code=code))

    def _emit(self, event: ProgressEvent) -> ProgressEvent:
        self.last_event = event
        if self._listener is not None:
            try:
                self._listener(event)
            except Exception as e:
                logger.error("Progress listener failed", error=str(e), event_type=event.type.value)
        return event


def _clamp(percent: float) -> int:
    return int(max(0, min(100, round(percent))))


class ProgressScope:
    """Maps a sub-computation's 0..1 progress onto a slice of the overall percent range."""

    def __init__(self, emitter: Optional[ProgressEmitter], start: float = 0, end: float = 100):
        self.emitter = emitter
        self.start = start
        self.end = end

    def report(self, fraction: float, message: str, **details: Any) -> None:
        if self.emitter is None:
            return
        fraction = max(0.0, min(1.0, fraction))
        self.emitter.progress(self.start + (self.end - self.start) * fraction, message, **details)

    def child(self, start_fraction: float, end_fraction: float) -> "ProgressScope":
        """Sub-scope covering part of this scope's range."""
        span = self.end - self.start
        return ProgressScope(self.emitter, self.start + span * start_fraction, self.start + span * end_fraction)
