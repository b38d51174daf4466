"""HTTP fetch layer with unbounded retries and jittered backoff.

This module provides the session-scoped fetch operations crawlers build on:
- Retry on any failure with exponential backoff (1s doubling to 30s)
- Jittered politeness delays between requests
- Auth header providers with invalidation between retries
- Header redaction for logging
- Metrics collection for observability
"""

from src.fetch.auth import CachedBearerToken
from src.fetch.client import ResilientFetcher, classify_status, parse_html
from src.fetch.config import FetchConfig
from src.fetch.constants import (
    DEFAULT_DELAY_INTERVAL_MS,
    DEFAULT_INITIAL_DELAY_SECONDS,
    DEFAULT_MAX_DELAY_SECONDS,
    RETRIES_COUNTER,
)
from src.fetch.delay import JitteredDelay
from src.fetch.metrics import FetchMetrics
from src.fetch.models import (
    FetchError,
    FetchErrorClass,
    FetchFailedError,
    FetchRequest,
    FetchResult,
    RetryPhase,
    RetryPolicy,
    RetryState,
)
from src.fetch.redact import redact_headers, redact_url_credentials


__all__ = [
    # Client
    "ResilientFetcher",
    "classify_status",
    "parse_html",
    # Delay
    "JitteredDelay",
    # Auth
    "CachedBearerToken",
    # Config
    "FetchConfig",
    # Models
    "FetchRequest",
    "FetchResult",
    "FetchError",
    "FetchErrorClass",
    "FetchFailedError",
    "RetryPolicy",
    "RetryPhase",
    "RetryState",
    # Constants
    "DEFAULT_DELAY_INTERVAL_MS",
    "DEFAULT_INITIAL_DELAY_SECONDS",
    "DEFAULT_MAX_DELAY_SECONDS",
    "RETRIES_COUNTER",
    # Metrics
    "FetchMetrics",
    # Redaction
    "redact_headers",
    "redact_url_credentials",
]
