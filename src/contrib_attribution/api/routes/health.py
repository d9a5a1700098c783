"""Health check API routes."""

from fastapi import APIRouter
import git

from ... import __version__
from ...config import config
from ..models import HealthCheck


router = APIRouter(prefix="/health", tags=["health"])


@router.get("/", response_model=HealthCheck)
async def health_check() -> HealthCheck:
    """Report whether the local git binary and a GitHub token are available."""
    services = {"api": "healthy"}
    status = "healthy"

    try:
        version = git.Git().version_info
        services["git"] = "healthy: " + ".".join(str(part) for part in version)
    except git.GitCommandNotFound:
        services["git"] = "unavailable"
        status = "degraded"

    services["github_token"] = "configured" if config.github.token else "not configured"
    return HealthCheck(status=status, version=__version__, services=services)
