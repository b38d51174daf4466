"""Auth header providers for crawl sessions."""

import threading
from collections.abc import Callable

import structlog


logger = structlog.get_logger()


class CachedBearerToken:
    """Lazily loaded bearer token that can be invalidated between retries.

    Some listing APIs hand out short-lived tokens (for example via a
    cookie on an HTML page) and answer 401 once they expire. Pass
    ``headers`` as the fetcher's header provider and ``invalidate`` as its
    retry hook so the next attempt loads a fresh token.
    """

    def __init__(self, loader: Callable[[], str], scheme: str = "Bearer") -> None:
        """Initialize the token cache.

        Args:
            loader: Callable returning a fresh token.
            scheme: Authorization scheme prefix.
        """
        self._loader = loader
        self._scheme = scheme
        self._token: str | None = None
        self._lock = threading.Lock()
        self._log = logger.bind(component="fetch", subcomponent="auth")

    @property
    def token(self) -> str:
        """Current token, loading one if needed."""
        with self._lock:
            if self._token is None:
                self._token = self._loader()
                self._log.info("auth_token_loaded")
            return self._token

    def headers(self) -> dict[str, str]:
        """Authorization header for the next attempt."""
        return {"Authorization": f"{self._scheme} {self.token}"}

    def invalidate(self) -> None:
        """Drop the cached token so the next attempt reloads it."""
        with self._lock:
            if self._token is not None:
                self._log.info("auth_token_invalidated")
            self._token = None
