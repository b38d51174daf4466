"""Data models for the HTTP fetch layer."""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field

from src.errors import CrawlError
from src.fetch.constants import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_INITIAL_DELAY_SECONDS,
    DEFAULT_MAX_DELAY_SECONDS,
    HTTP_STATUS_OK_MAX,
    HTTP_STATUS_OK_MIN,
)


class FetchErrorClass(str, Enum):
    """Classification of a failed fetch attempt.

    - NETWORK_TIMEOUT: Request timed out
    - CONNECTION_ERROR: Could not establish connection
    - HTTP_4XX: 4xx client error (except 429)
    - HTTP_5XX: 5xx server error
    - RATE_LIMITED: 429 Too Many Requests
    - UNKNOWN: Unclassified error
    """

    NETWORK_TIMEOUT = "NETWORK_TIMEOUT"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    HTTP_4XX = "HTTP_4XX"
    HTTP_5XX = "HTTP_5XX"
    RATE_LIMITED = "RATE_LIMITED"
    UNKNOWN = "UNKNOWN"


class FetchError(BaseModel):
    """Typed record of one failed fetch attempt."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    error_class: FetchErrorClass = Field(description="Classification of the error")
    message: Annotated[str, Field(min_length=1, description="Human-readable message")]
    status_code: int | None = Field(
        default=None, description="HTTP status code if available"
    )


class FetchRequest(BaseModel):
    """A single logical request.

    The URL may be relative, in which case it is resolved against the
    fetcher's base address.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    method: Annotated[str, Field(min_length=1)] = "GET"
    url: Annotated[str, Field(min_length=1, description="Absolute or relative URL")]
    headers: dict[str, str] = Field(default_factory=dict)
    params: dict[str, str | int] = Field(default_factory=dict)
    content: bytes | None = None
    json_body: Any = Field(default=None, alias="json")

    @classmethod
    def get(cls, url: str, headers: dict[str, str] | None = None) -> "FetchRequest":
        """Build a GET request."""
        return cls(url=url, headers=headers or {})


class FetchResult(BaseModel):
    """Successful payload of a logical fetch."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    status_code: int = Field(ge=100, le=599, description="HTTP status code")
    final_url: Annotated[
        str, Field(min_length=1, description="Final URL after redirects")
    ]
    headers: dict[str, str] = Field(
        default_factory=dict, description="Response headers"
    )
    body_bytes: bytes = Field(default=b"", description="Response body")
    encoding: str | None = Field(
        default=None, description="Declared or caller-supplied charset"
    )
    attempts: int = Field(default=1, ge=1, description="Attempts taken")

    @property
    def is_success(self) -> bool:
        """Check if the status is 2xx."""
        return HTTP_STATUS_OK_MIN <= self.status_code < HTTP_STATUS_OK_MAX

    @property
    def body_size(self) -> int:
        """Get the size of the response body in bytes."""
        return len(self.body_bytes)

    @property
    def text(self) -> str:
        """Decode the body with the declared encoding (UTF-8 fallback)."""
        return self.body_bytes.decode(self.encoding or "utf-8", errors="replace")

    def decode_json(self) -> Any:
        """Decode the body as JSON."""
        return json.loads(self.text)


class RetryPolicy(BaseModel):
    """Configuration for retry behavior.

    Backoff starts at ``initial_delay_seconds`` and is multiplied after
    every failed attempt of the same logical fetch, capped at
    ``max_delay_seconds``. ``max_attempts=None`` retries forever: a fetch
    either succeeds or keeps retrying, it never silently drops an item.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    initial_delay_seconds: Annotated[float, Field(gt=0.0, le=300.0)] = (
        DEFAULT_INITIAL_DELAY_SECONDS
    )
    max_delay_seconds: Annotated[float, Field(gt=0.0, le=3600.0)] = (
        DEFAULT_MAX_DELAY_SECONDS
    )
    multiplier: Annotated[float, Field(ge=1.0, le=10.0)] = DEFAULT_BACKOFF_MULTIPLIER
    max_attempts: Annotated[int, Field(ge=1)] | None = None
    non_retryable_statuses: frozenset[int] = Field(default_factory=frozenset)

    def allows_retry(self, error: FetchError, attempts: int) -> bool:
        """Determine if another attempt may follow.

        Args:
            error: The error of the attempt that just failed.
            attempts: Attempts made so far (1-indexed).

        Returns:
            True if the fetch should be retried.
        """
        if self.max_attempts is not None and attempts >= self.max_attempts:
            return False
        return error.status_code not in self.non_retryable_statuses

    def new_state(self) -> "RetryState":
        """Create fresh retry state for a new logical fetch."""
        return RetryState(backoff_seconds=self.initial_delay_seconds)


class RetryPhase(str, Enum):
    """Lifecycle of one logical fetch."""

    ATTEMPTING = "ATTEMPTING"
    BACKOFF = "BACKOFF"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


@dataclass
class RetryState:
    """Mutable per-fetch retry state.

    Owned by the single flow performing the fetch; never shared.
    """

    backoff_seconds: float
    attempts: int = 0
    phase: RetryPhase = RetryPhase.ATTEMPTING
    last_error: FetchError | None = None

    def begin_attempt(self) -> None:
        self.phase = RetryPhase.ATTEMPTING
        self.attempts += 1

    def succeed(self) -> None:
        self.phase = RetryPhase.SUCCEEDED

    def fail(self, error: FetchError) -> None:
        self.phase = RetryPhase.FAILED
        self.last_error = error

    def back_off(self, error: FetchError, policy: RetryPolicy) -> float:
        """Enter BACKOFF and return the base delay for the coming wait.

        The stored backoff is advanced for the next failure, so the Nth
        retry waits ``min(initial * multiplier**(N-1), max)``.
        """
        self.phase = RetryPhase.BACKOFF
        self.last_error = error
        delay = self.backoff_seconds
        self.backoff_seconds = min(
            self.backoff_seconds * policy.multiplier, policy.max_delay_seconds
        )
        return delay


class FetchFailedError(CrawlError):
    """Raised when a logical fetch ends without success.

    Only happens when the error was marked non-retryable or the policy's
    attempt ceiling was reached.
    """

    def __init__(self, url: str, error: FetchError, attempts: int) -> None:
        """Initialize the fetch failure.

        Args:
            url: URL of the failed request.
            error: Error of the final attempt.
            attempts: Number of attempts made.
        """
        super().__init__(
            f"Fetch of {url} failed after {attempts} attempt(s): {error.message}",
            details={
                "url": url,
                "error_class": error.error_class.value,
                "status_code": error.status_code,
                "attempts": attempts,
            },
        )
        self.url = url
        self.error = error
        self.attempts = attempts
