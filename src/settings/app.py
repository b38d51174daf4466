"""Application settings powered by Pydantic BaseSettings."""

import structlog
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.errors import SettingsError
from src.fetch.config import FetchConfig
from src.fetch.constants import (
    DEFAULT_DELAY_INTERVAL_MS,
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_USER_AGENT,
)
from src.fetch.models import RetryPolicy
from src.pagination.fanout import DEFAULT_MAX_WORKERS


logger = structlog.get_logger()


class AppSettings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, env_file=".env", env_file_encoding="utf-8"
    )

    base_url: str = Field(default="", validation_alias="CRAWL_BASE_URL")
    delay_interval_ms: int = Field(
        default=DEFAULT_DELAY_INTERVAL_MS,
        ge=0,
        validation_alias="CRAWL_DELAY_INTERVAL_MS",
    )
    timeout_seconds: float = Field(
        default=DEFAULT_TIMEOUT_SECONDS, validation_alias="CRAWL_TIMEOUT_SECONDS"
    )
    user_agent: str = Field(
        default=DEFAULT_USER_AGENT, validation_alias="CRAWL_USER_AGENT"
    )
    auth_token: str | None = Field(default=None, validation_alias="CRAWL_AUTH_TOKEN")
    session_cookie: str | None = Field(
        default=None, validation_alias="CRAWL_SESSION_COOKIE"
    )
    max_workers: int = Field(
        default=DEFAULT_MAX_WORKERS, ge=1, validation_alias="CRAWL_MAX_WORKERS"
    )
    max_attempts: int | None = Field(
        default=None, ge=1, validation_alias="CRAWL_MAX_ATTEMPTS"
    )

    def fetch_config(self) -> FetchConfig:
        """Build the fetch layer configuration from these settings."""
        return FetchConfig(
            base_url=self.base_url,
            user_agent=self.user_agent,
            timeout_seconds=self.timeout_seconds,
            delay_interval_ms=self.delay_interval_ms,
            retry_policy=RetryPolicy(max_attempts=self.max_attempts),
        )

    def auth_headers(self) -> dict[str, str]:
        """Return credential headers for the session (may be empty)."""
        headers: dict[str, str] = {}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        if self.session_cookie:
            headers["Cookie"] = self.session_cookie
        return headers


def get_settings() -> AppSettings:
    """Load settings from the environment.

    Raises:
        SettingsError: If a CRAWL_* value fails validation.
    """
    try:
        return AppSettings()
    except ValidationError as e:
        errors = [
            {"loc": ".".join(str(loc) for loc in err["loc"]), "msg": err["msg"]}
            for err in e.errors()
        ]
        logger.error(
            "settings_validation_failed",
            component="settings",
            validation_error_count=len(errors),
            errors=errors,
        )
        raise SettingsError(errors) from e
