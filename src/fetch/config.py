"""Configuration models for the HTTP fetch layer."""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.fetch.constants import (
    DEFAULT_DELAY_INTERVAL_MS,
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_USER_AGENT,
)
from src.fetch.models import RetryPolicy
from src.fetch.redact import is_sensitive_header


class FetchConfig(BaseModel):
    """Configuration for one crawl session's fetch layer.

    Central configuration for base address, default headers, timeouts,
    politeness delay and retry policy.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_url: str = Field(
        default="", description="Base address relative URLs are resolved against"
    )
    user_agent: Annotated[str, Field(min_length=1, max_length=500)] = (
        DEFAULT_USER_AGENT
    )
    default_headers: dict[str, str] = Field(
        default_factory=dict, description="Headers sent with every request"
    )
    timeout_seconds: Annotated[float, Field(ge=1.0, le=300.0)] = (
        DEFAULT_TIMEOUT_SECONDS
    )
    delay_interval_ms: Annotated[int, Field(ge=0, le=600_000)] = (
        DEFAULT_DELAY_INTERVAL_MS
    )
    follow_redirects: bool = True
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)

    @field_validator("default_headers")
    @classmethod
    def validate_no_credential_headers(cls, v: dict[str, str]) -> dict[str, str]:
        """Ensure credentials are not stored in static config."""
        for key in v:
            if is_sensitive_header(key):
                msg = (
                    f"Header '{key}' must not be stored in config; "
                    "supply it through settings or an auth provider"
                )
                raise ValueError(msg)
        return v

    @property
    def delay_interval_seconds(self) -> float:
        """Politeness delay in seconds."""
        return self.delay_interval_ms / 1000.0

    def build_headers(self) -> dict[str, str]:
        """Session-wide headers.

        Returns:
            User-Agent plus configured default headers.
        """
        headers = {"User-Agent": self.user_agent, "Accept": "*/*"}
        headers.update(self.default_headers)
        return headers
