"""API dependencies and dependency injection."""

from typing import Callable, Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..analysis.dispatcher import ModeDispatcher
from ..config import config


# Security
security = HTTPBearer(auto_error=False)

DispatcherFactory = Callable[..., ModeDispatcher]


async def get_access_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[str]:
    """GitHub token from the Authorization header, falling back to the configured one.

    A token inside ``githubOptions`` takes precedence over both; the
    dispatcher applies that rule.
    """
    if credentials and credentials.credentials:
        return credentials.credentials
    return config.github.token


def get_dispatcher_factory() -> DispatcherFactory:
    """Factory producing one request-scoped dispatcher per call."""
    return ModeDispatcher
