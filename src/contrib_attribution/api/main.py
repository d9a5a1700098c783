"""Main FastAPI application for the attribution pipeline."""

import json
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder

from .. import __version__
from ..config import config
from ..exceptions import AttributionError, InvalidRequestError, RateLimitedError
from ..logging import get_logger, request_context
from .models import ErrorResponse
from .routes import analysis_router, health_router


logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info(
        "Starting Contribution Attribution API",
        version=__version__,
        environment=config.app.environment,
        github_token_configured=bool(config.github.token),
    )
    yield
    logger.info("Shutting down Contribution Attribution API")


# Create FastAPI application
app = FastAPI(
    title="Contribution Attribution API",
    description="Per-contributor commit statistics and line-level code ownership",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.app.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Tag the request's log lines with a request id and log its outcome.

    A caller-supplied ``X-Request-ID`` is reused; the id is echoed back on the
    response either way.
    """
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
    start = time.perf_counter()
    with request_context(request_id=request_id):
        response = await call_next(request)
        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


# Custom JSON encoder for datetime objects
class CustomJSONResponse(JSONResponse):
    """Custom JSON response with datetime serialization support."""

    def render(self, content) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            indent=None,
            separators=(",", ":"),
            default=self._json_serializer
        ).encode("utf-8")

    def _json_serializer(self, obj):
        """Custom JSON serializer for non-serializable objects."""
        if isinstance(obj, datetime):
            return obj.isoformat()
        raise TypeError(f"Object of type {obj.__class__.__name__} is not JSON serializable")


def error_response(status_code: int, error: str, code: str, message: str, details=None, headers=None):
    body = ErrorResponse(error=error, code=code, message=message, details=details or None)
    return CustomJSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)


# Exception handlers
@app.exception_handler(AttributionError)
async def attribution_exception_handler(request: Request, exc: AttributionError):
    """Render pipeline errors with their own status code and error code."""
    logger.info(
        "Request failed",
        path=request.url.path,
        code=exc.code,
        status_code=exc.status_code,
        error=exc.message,
    )
    headers = None
    if isinstance(exc, RateLimitedError) and exc.reset_at is not None:
        seconds = max(0, int((exc.reset_at - datetime.now(exc.reset_at.tzinfo)).total_seconds()))
        headers = {"Retry-After": str(seconds)}
    return error_response(
        exc.status_code, exc.__class__.__name__, exc.code, exc.message, exc.details, headers
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are reported as invalid requests."""
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        InvalidRequestError.__name__,
        InvalidRequestError.code,
        "Invalid request body",
        {"errors": errors},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions."""
    return error_response(
        exc.status_code, exc.__class__.__name__, "HTTP_ERROR", str(exc.detail), {"status_code": exc.status_code}
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        exception_type=exc.__class__.__name__,
        error=str(exc),
    )
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "InternalServerError",
        "INTERNAL_ERROR",
        "An internal server error occurred",
        {"exception_type": exc.__class__.__name__},
    )


# Include routers
app.include_router(health_router, prefix="/api/v1")
app.include_router(analysis_router, prefix="/api/v1")


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Contribution Attribution API",
        "version": __version__,
        "environment": config.app.environment,
        "modes": ["blame", "commits", "remote-metadata", "hybrid", "legacy"],
        "docs_url": "/docs",
        "endpoints": {
            "analyze": "/api/v1/analyze",
            "stream": "/api/v1/analyze/stream",
            "health": "/api/v1/health/",
        },
    }


def main() -> None:
    import uvicorn

    uvicorn.run(
        "contrib_attribution.api.main:app",
        host=config.app.api_host,
        port=config.app.api_port,
        reload=config.app.debug,
        log_level=config.app.log_level.lower()
    )


if __name__ == "__main__":
    main()
