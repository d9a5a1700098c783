"""Structured logging for the attribution pipeline.

Every log line emitted while a request is in flight carries the request id
bound by the API middleware, and the analysis id and mode bound by the
dispatcher. Credentials that end up in an event are masked before rendering.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator, List

import structlog
from structlog.types import EventDict, FilteringBoundLogger, Processor, WrappedLogger

from .config import config


SECRET_KEYS = frozenset({"token", "access_token", "authorization", "github_token"})
CONTEXT_KEYS = ("request_id", "analysis_id", "mode")
MASK = "***"


def mask_secrets(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace credential values with a fixed mask."""
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = MASK
    return event_dict


def order_context_keys(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Put request context right after the event so related lines read alike in the console."""
    context = {key: event_dict.pop(key) for key in CONTEXT_KEYS if key in event_dict}
    event = event_dict.pop("event", None)
    ordered = {"event": event} if event is not None else {}
    ordered.update(context)
    ordered.update(event_dict)
    return ordered


def build_processors(log_format: str) -> List[Processor]:
    """Processor chain for the given renderer ("json" or "console")."""
    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        mask_secrets,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if log_format == "json":
        processors.extend([
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=False),
        ])
    else:
        processors.extend([
            order_context_keys,
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty(), sort_keys=False),
        ])
    return processors


def configure_logging() -> FilteringBoundLogger:
    """Configure structured logging for the application."""

    level = getattr(logging, config.app.log_level.upper(), logging.INFO)

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    structlog.configure(
        processors=build_processors(config.app.log_format),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger()


def get_logger(name: str) -> FilteringBoundLogger:
    """Get a logger instance for the given name."""
    return structlog.get_logger(name)


@contextmanager
def request_context(**values) -> Iterator[None]:
    """Bind values to every log line inside the block, restoring the outer ones on exit."""
    with structlog.contextvars.bound_contextvars(**values):
        yield


# Initialize logging
logger = configure_logging()
