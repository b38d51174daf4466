"""Resilient HTTP client with jittered exponential backoff."""

import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from types import TracebackType
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin

import httpx
import structlog
from bs4 import BeautifulSoup

from src.errors import CrawlCancelledError
from src.fetch.config import FetchConfig
from src.fetch.constants import (
    HTTP_STATUS_BAD_REQUEST,
    HTTP_STATUS_OK_MAX,
    HTTP_STATUS_OK_MIN,
    HTTP_STATUS_SERVER_ERROR_MIN,
    HTTP_STATUS_TOO_MANY_REQUESTS,
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
    RetryState,
)
from src.fetch.redact import redact_headers, redact_url_credentials


if TYPE_CHECKING:
    from src.progress.sink import ProgressSink


logger = structlog.get_logger()

HeaderProvider = Callable[[], Mapping[str, str]]
RetryHook = Callable[[], None]


def parse_html(body: bytes, encoding: str | None = None) -> BeautifulSoup:
    """Parse an HTML payload into a queryable document.

    Args:
        body: Raw response bytes.
        encoding: Charset to decode with; sniffed when None.

    Returns:
        BeautifulSoup tree built with the lxml parser.
    """
    return BeautifulSoup(body, "lxml", from_encoding=encoding)


class ResilientFetcher:
    """HTTP client for one crawl session.

    Every logical fetch is retried until it succeeds: any exception or
    non-2xx status triggers a jittered wait and another attempt, with the
    backoff doubling from 1s up to a 30s cap. There is no attempt ceiling
    unless ``RetryPolicy.max_attempts`` is set or ``is_retryable`` rejects
    an error, in which case ``FetchFailedError`` is raised.

    The fetcher owns its ``httpx.Client``; use it as a context manager so
    connections are released when the session ends.
    """

    def __init__(  # noqa: PLR0913
        self,
        config: FetchConfig | None = None,
        *,
        auth_headers: Mapping[str, str] | None = None,
        header_provider: HeaderProvider | None = None,
        on_retry: RetryHook | None = None,
        is_retryable: Callable[[FetchError], bool] | None = None,
        progress: "ProgressSink | None" = None,
        delay: JitteredDelay | None = None,
        cancel_event: threading.Event | None = None,
        transport: httpx.BaseTransport | None = None,
        session_id: str = "",
    ) -> None:
        """Initialize the fetcher.

        Args:
            config: Fetch configuration (defaults if not provided).
            auth_headers: Static credential headers (token, cookie) for the session.
            header_provider: Called before every attempt for dynamic headers.
            on_retry: Called before every retry wait (e.g. token invalidation).
            is_retryable: Predicate marking errors retryable (default: all).
            progress: Sink whose "retries" counter is incremented on retry.
            delay: Jittered delay used for backoff and politeness waits.
            cancel_event: Event checked cooperatively before each attempt.
            transport: Optional httpx transport (tests, proxies).
            session_id: Identifier bound to every log line.
        """
        self._config = config or FetchConfig()
        self._header_provider = header_provider
        self._on_retry = on_retry
        self._is_retryable = is_retryable or (lambda _error: True)
        self._cancel_event = cancel_event
        self._delay = delay or JitteredDelay(
            self._config.delay_interval_seconds, cancel_event=cancel_event
        )
        self._metrics = FetchMetrics.get_instance()
        self.progress = progress

        headers = self._config.build_headers()
        if auth_headers:
            headers.update(auth_headers)
        self._client = httpx.Client(
            headers=headers,
            timeout=self._config.timeout_seconds,
            follow_redirects=self._config.follow_redirects,
            transport=transport,
        )
        self._log = logger.bind(component="fetch", session_id=session_id)

    def __enter__(self) -> "ResilientFetcher":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        """Release the underlying connections."""
        self._client.close()

    @property
    def config(self) -> FetchConfig:
        """Get the session configuration."""
        return self._config

    @property
    def delay(self) -> JitteredDelay:
        """Jittered delay shared by backoff and page-to-page waits."""
        return self._delay

    @property
    def cancel_event(self) -> threading.Event | None:
        """Cancellation event of the session, if any."""
        return self._cancel_event

    @contextmanager
    def reporting_to(self, progress: "ProgressSink | None") -> Iterator[None]:
        """Temporarily count retries on another progress sink."""
        previous = self.progress
        self.progress = progress
        try:
            yield
        finally:
            self.progress = previous

    def resolve_url(self, url: str) -> str:
        """Resolve a URL against the session's base address."""
        if not self._config.base_url:
            return url
        return urljoin(self._config.base_url, url)

    def check_cancelled(self, where: str) -> None:
        """Raise if cancellation was requested.

        Raises:
            CrawlCancelledError: If the cancel event is set.
        """
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise CrawlCancelledError(where)

    def fetch(
        self,
        request: FetchRequest,
        cleanup_before_retry: RetryHook | None = None,
        encoding: str | None = None,
    ) -> FetchResult:
        """Perform one logical fetch, retrying until it succeeds.

        Args:
            request: The request to perform.
            cleanup_before_retry: Called before each retry of this fetch.
            encoding: Charset override for the payload.

        Returns:
            FetchResult of the successful attempt.

        Raises:
            FetchFailedError: If an error is non-retryable or the attempt
                ceiling is reached.
            CrawlCancelledError: If the session is cancelled.
        """
        policy = self._config.retry_policy
        state = policy.new_state()
        url = self.resolve_url(request.url)
        log = self._log.bind(
            method=request.method, url=redact_url_credentials(url)
        )
        start_time_ns = time.perf_counter_ns()

        while True:
            self.check_cancelled("fetch")
            state.begin_attempt()
            result, error = self._execute_single(request, url, state, encoding, log)

            if error is None and result is not None:
                state.succeed()
                duration_ms = (time.perf_counter_ns() - start_time_ns) / 1_000_000
                self._metrics.record_duration(duration_ms)
                log.debug(
                    "fetch_complete",
                    status_code=result.status_code,
                    bytes=result.body_size,
                    attempts=state.attempts,
                    duration_ms=round(duration_ms, 2),
                )
                return result

            if not self._is_retryable(error) or not policy.allows_retry(
                error, state.attempts
            ):
                state.fail(error)
                self._metrics.record_failure(error.error_class)
                log.error(
                    "fetch_failed",
                    attempts=state.attempts,
                    error_class=error.error_class.value,
                    status_code=error.status_code,
                    message=error.message,
                )
                raise FetchFailedError(url, error, state.attempts)

            self._prepare_retry(state, error, cleanup_before_retry, log)

    def _prepare_retry(
        self,
        state: RetryState,
        error: FetchError,
        cleanup_before_retry: RetryHook | None,
        log: structlog.stdlib.BoundLogger,
    ) -> None:
        """Run retry hooks, count the retry and wait out the backoff."""
        if cleanup_before_retry is not None:
            cleanup_before_retry()
        if self._on_retry is not None:
            self._on_retry()
        if self.progress is not None:
            self.progress.increment(RETRIES_COUNTER)
        self._metrics.record_retry()

        backoff_seconds = state.back_off(error, self._config.retry_policy)
        log.warning(
            "fetch_retry",
            attempt=state.attempts,
            backoff_seconds=backoff_seconds,
            error_class=error.error_class.value,
            status_code=error.status_code,
        )
        self._delay.wait(backoff_seconds)

    def _execute_single(
        self,
        request: FetchRequest,
        url: str,
        state: RetryState,
        encoding: str | None,
        log: structlog.stdlib.BoundLogger,
    ) -> tuple[FetchResult | None, FetchError | None]:
        """Execute one attempt.

        Returns:
            Either a result or an error, never both.
        """
        headers = dict(request.headers)
        try:
            # A failing token loader counts as a failed attempt
            if self._header_provider is not None:
                headers.update(self._header_provider())
            log.debug(
                "fetch_attempt",
                attempt=state.attempts,
                headers=redact_headers(headers),
            )
            response = self._client.request(
                request.method,
                url,
                headers=headers,
                params=request.params or None,
                content=request.content,
                json=request.json_body,
            )
        except httpx.TimeoutException as e:
            return None, FetchError(
                error_class=FetchErrorClass.NETWORK_TIMEOUT,
                message=f"Request timed out: {e}",
            )
        except httpx.ConnectError as e:
            return None, FetchError(
                error_class=FetchErrorClass.CONNECTION_ERROR,
                message=f"Connection failed: {e}",
            )
        except Exception as e:  # noqa: BLE001
            return None, FetchError(
                error_class=FetchErrorClass.UNKNOWN,
                message=f"Unexpected error: {type(e).__name__}: {e}",
            )

        body = response.content
        self._metrics.record_request(response.status_code, len(body))

        http_error = classify_status(response.status_code)
        if http_error is not None:
            return None, http_error

        return FetchResult(
            status_code=response.status_code,
            final_url=str(response.url),
            headers=dict(response.headers),
            body_bytes=body,
            encoding=encoding or response.charset_encoding,
            attempts=state.attempts,
        ), None

    def get(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        encoding: str | None = None,
        cleanup_before_retry: RetryHook | None = None,
    ) -> FetchResult:
        """GET a URL with retries."""
        return self.fetch(
            FetchRequest.get(url, headers),
            cleanup_before_retry=cleanup_before_retry,
            encoding=encoding,
        )

    def get_document(self, url: str, encoding: str | None = None) -> BeautifulSoup:
        """GET a URL and parse it as HTML.

        Args:
            url: Absolute or base-relative URL.
            encoding: Charset override for pages that misdeclare theirs.

        Returns:
            Parsed document.
        """
        result = self.get(url, encoding=encoding)
        return parse_html(result.body_bytes, result.encoding)

    def get_json(self, url: str, headers: dict[str, str] | None = None) -> Any:
        """GET a URL and decode the JSON payload."""
        return self.get(url, headers=headers).decode_json()

    def post_json(
        self, url: str, data: Any, headers: dict[str, str] | None = None
    ) -> FetchResult:
        """POST a JSON body with retries."""
        return self.fetch(
            FetchRequest(method="POST", url=url, headers=headers or {}, json=data)
        )

    def post_form(
        self,
        url: str,
        data: Mapping[str, str],
        headers: dict[str, str] | None = None,
    ) -> FetchResult:
        """POST an urlencoded form with retries."""
        form_headers = {"Content-Type": "application/x-www-form-urlencoded"}
        form_headers.update(headers or {})
        body = str(httpx.QueryParams(dict(data))).encode("ascii")
        return self.fetch(
            FetchRequest(method="POST", url=url, headers=form_headers, content=body)
        )


def classify_status(status_code: int) -> FetchError | None:
    """Classify an HTTP status code.

    Args:
        status_code: HTTP status code.

    Returns:
        FetchError for any non-2xx status, None otherwise.
    """
    if HTTP_STATUS_OK_MIN <= status_code < HTTP_STATUS_OK_MAX:
        return None

    if status_code == HTTP_STATUS_TOO_MANY_REQUESTS:
        return FetchError(
            error_class=FetchErrorClass.RATE_LIMITED,
            message="Rate limited (429 Too Many Requests)",
            status_code=status_code,
        )

    if HTTP_STATUS_BAD_REQUEST <= status_code < HTTP_STATUS_SERVER_ERROR_MIN:
        return FetchError(
            error_class=FetchErrorClass.HTTP_4XX,
            message=f"Client error ({status_code})",
            status_code=status_code,
        )

    if status_code >= HTTP_STATUS_SERVER_ERROR_MIN:
        return FetchError(
            error_class=FetchErrorClass.HTTP_5XX,
            message=f"Server error ({status_code})",
            status_code=status_code,
        )

    return FetchError(
        error_class=FetchErrorClass.UNKNOWN,
        message=f"Unexpected status ({status_code})",
        status_code=status_code,
    )
