"""System-wide constants and configuration values."""

from typing import Final, Tuple

# Remote API Constants
DEFAULT_GITHUB_API_URL: Final[str] = "https://api.github.com"
DEFAULT_USER_AGENT: Final[str] = "contrib-attribution/1.0"
GITHUB_API_VERSION: Final[str] = "2022-11-28"
DEFAULT_API_TIMEOUT: Final[int] = 30  # seconds

# Retry Constants
DEFAULT_MAX_RETRIES: Final[int] = 2
DEFAULT_RETRY_BACKOFF_BASE: Final[float] = 2.0
DEFAULT_RETRY_BACKOFF_MAX: Final[float] = 60.0

# Rate Limit Constants
GITHUB_HOURLY_QUOTA: Final[int] = 5000  # authenticated core requests per hour
RATE_LIMIT_SAFETY_MARGIN: Final[int] = 50
MAX_RATE_LIMIT_WAIT_SECONDS: Final[int] = 60
UNKNOWN_RATE_LIMIT_REMAINING: Final[int] = GITHUB_HOURLY_QUOTA

# Request Queue Constants
DEFAULT_MAX_CONCURRENT_REQUESTS: Final[int] = 5

# Commit Fetching Constants
COMMITS_PER_PAGE: Final[int] = 100
MAX_PAGES: Final[int] = 100
MAX_COMMITS_PER_REQUEST: Final[int] = 5000
PAGE_DELAY_MS: Final[int] = 100

# Hydration Constants
HYDRATION_BATCH_SIZE: Final[int] = 10
MAX_HYDRATION_CALLS: Final[int] = 1000
BATCH_DELAY_MS: Final[int] = 150

# Metadata Constants
METADATA_PER_PAGE: Final[int] = 100
METADATA_MAX_PAGES: Final[int] = 10

# Blame Constants
IGNORE_REVS_FILE: Final[str] = ".git-blame-ignore-revs"
MIN_BLAME_CONCURRENCY: Final[int] = 2
MAX_BLAME_CONCURRENCY: Final[int] = 8
EMPTY_TREE_SHA: Final[str] = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"
MAILMAP_BATCH_SIZE: Final[int] = 200

# Streaming Constants
KEEP_ALIVE_INTERVAL_SECONDS: Final[float] = 15.0

# Progress Ranges (percent)
LISTING_PROGRESS_END: Final[int] = 85
HYDRATION_PROGRESS_END: Final[int] = 99

# Contributor Analysis Constants
UNKNOWN_AUTHOR_NAME: Final[str] = "Unknown"
UNKNOWN_AUTHOR_EMAIL: Final[str] = "unknown@unknown"
NOREPLY_EMAIL_DOMAIN: Final[str] = "users.noreply.github.com"
BOT_WORD_PATTERN: Final[str] = r"\bbot\b"
BOT_PATTERNS: Final[Tuple[str, ...]] = (
    "[bot]",
    "automated",
    "github-actions",
    "dependabot",
    "renovate",
)

# Report Constants
MAX_REPORTED_FILE_CHANGES: Final[int] = 10000  # larger per-file diffs are treated as generated or binary

# Logging Constants
DEFAULT_LOG_LEVEL: Final[str] = "INFO"
