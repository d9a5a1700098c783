"""Configuration management for the contribution attribution pipeline."""

from typing import List, Optional
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from urllib.parse import urlparse

from .exceptions import ConfigurationError
from .core import constants


class GitHubConfig(BaseSettings):
    """Remote hosting API settings."""

    token: Optional[str] = Field(default=None, alias="GITHUB_TOKEN")
    api_url: str = Field(default=constants.DEFAULT_GITHUB_API_URL, alias="GITHUB_API_URL")
    timeout_seconds: int = Field(default=constants.DEFAULT_API_TIMEOUT, alias="GITHUB_TIMEOUT_SECONDS", gt=0, le=300)
    user_agent: str = Field(default=constants.DEFAULT_USER_AGENT, alias="GITHUB_USER_AGENT")
    max_retries: int = Field(default=constants.DEFAULT_MAX_RETRIES, alias="GITHUB_MAX_RETRIES", ge=0, le=10)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False
    )

    @field_validator('api_url')
    @classmethod
    def validate_api_url(cls, v):
        """Validate the API base URL."""
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(f"GitHub API URL must be an http(s) URL, got {v!r}")
        return v.rstrip("/")


class PipelineConfig(BaseSettings):
    """Fetching, hydration, blame and streaming limits."""

    # Request queue and rate limiting
    max_concurrent_requests: int = Field(
        default=constants.DEFAULT_MAX_CONCURRENT_REQUESTS, alias="MAX_CONCURRENT_REQUESTS", gt=0, le=50
    )
    rate_limit_safety_margin: int = Field(
        default=constants.RATE_LIMIT_SAFETY_MARGIN, alias="RATE_LIMIT_SAFETY_MARGIN", ge=0
    )
    max_rate_limit_wait_seconds: int = Field(
        default=constants.MAX_RATE_LIMIT_WAIT_SECONDS, alias="MAX_RATE_LIMIT_WAIT_SECONDS", ge=0, le=3600
    )

    # Pagination
    commits_per_page: int = Field(default=constants.COMMITS_PER_PAGE, alias="COMMITS_PER_PAGE", gt=0, le=100)
    max_pages: int = Field(default=constants.MAX_PAGES, alias="MAX_PAGES", gt=0)
    max_commits: int = Field(default=constants.MAX_COMMITS_PER_REQUEST, alias="MAX_COMMITS", gt=0)
    page_delay_ms: int = Field(default=constants.PAGE_DELAY_MS, alias="PAGE_DELAY_MS", ge=0)

    # Hydration
    hydration_batch_size: int = Field(default=constants.HYDRATION_BATCH_SIZE, alias="HYDRATION_BATCH_SIZE", gt=0)
    max_hydration_calls: int = Field(default=constants.MAX_HYDRATION_CALLS, alias="MAX_HYDRATION_CALLS", ge=0)
    hydration_skip_threshold: Optional[int] = Field(default=None, alias="HYDRATION_SKIP_THRESHOLD", ge=0)
    batch_delay_ms: int = Field(default=constants.BATCH_DELAY_MS, alias="BATCH_DELAY_MS", ge=0)

    # Metadata, blame, streaming
    metadata_max_pages: int = Field(default=constants.METADATA_MAX_PAGES, alias="METADATA_MAX_PAGES", gt=0)
    blame_max_concurrency: Optional[int] = Field(default=None, alias="BLAME_MAX_CONCURRENCY", gt=0, le=64)
    keep_alive_interval_seconds: float = Field(
        default=constants.KEEP_ALIVE_INTERVAL_SECONDS, alias="KEEP_ALIVE_INTERVAL_SECONDS", gt=0
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    @model_validator(mode='after')
    def validate_limits(self):
        """Validate that the limits are compatible with each other and with the API quota."""
        if self.max_hydration_calls and self.hydration_batch_size > self.max_hydration_calls:
            raise ConfigurationError(
                "HYDRATION_BATCH_SIZE cannot exceed MAX_HYDRATION_CALLS"
            )
        if self.rate_limit_safety_margin >= constants.GITHUB_HOURLY_QUOTA:
            raise ConfigurationError(
                f"RATE_LIMIT_SAFETY_MARGIN must be below the hourly quota of {constants.GITHUB_HOURLY_QUOTA}"
            )
        return self


class AppConfig(BaseSettings):
    """Application configuration settings."""

    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # Logging
    log_level: str = Field(default=constants.DEFAULT_LOG_LEVEL, alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], alias="CORS_ORIGINS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False
    )

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v):
        """Only json and console renderers are supported."""
        if v not in ("json", "console"):
            raise ConfigurationError(f"LOG_FORMAT must be 'json' or 'console', got {v!r}")
        return v


class Config:
    """Main configuration class."""

    def __init__(self) -> None:
        self.app = AppConfig()
        self.github = GitHubConfig()
        self.pipeline = PipelineConfig()

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment and .env file."""
        return cls()


# Global configuration instance
config = Config.load()
