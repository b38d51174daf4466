"""Unit tests for ResilientFetcher retry behaviour."""

import io
import json
import threading
from collections.abc import Generator
from urllib.parse import parse_qs

import httpx
import pytest

from src.errors import CrawlCancelledError
from src.fetch.auth import CachedBearerToken
from src.fetch.client import classify_status
from src.fetch.config import FetchConfig
from src.fetch.metrics import FetchMetrics
from src.fetch.models import FetchErrorClass, FetchFailedError, RetryPolicy
from src.progress.sink import ProgressSink
from tests.helpers.http import Handler, make_fetcher


@pytest.fixture(autouse=True)
def reset_metrics() -> Generator[None]:
    """Reset singleton before and after each test."""
    FetchMetrics.reset()
    yield
    FetchMetrics.reset()


def failing_then_ok(failures: int, status: int = 503) -> tuple[list[int], Handler]:
    """Handler that fails ``failures`` times before answering 200."""
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        if len(calls) <= failures:
            return httpx.Response(status)
        return httpx.Response(200, text="ok")

    return calls, handler


class TestSuccessfulFetch:
    """Tests for fetches that succeed on the first attempt."""

    def test_returns_payload(self) -> None:
        """Test that a 2xx response is returned as a FetchResult."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="hello")

        with make_fetcher(handler) as fetcher:
            result = fetcher.get("https://example.com/a")

        assert result.status_code == 200
        assert result.text == "hello"
        assert result.attempts == 1
        assert result.is_success is True
        assert result.final_url == "https://example.com/a"

    def test_no_wait_on_success(self) -> None:
        """Test that a successful fetch never backs off."""
        waits: list[float] = []

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(204)

        with make_fetcher(handler, waits) as fetcher:
            fetcher.get("https://example.com/a")

        assert waits == []

    def test_relative_url_resolved_against_base(self) -> None:
        """Test that relative URLs use the configured base address."""
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200)

        config = FetchConfig(base_url="https://example.com/api/")
        with make_fetcher(handler, config=config) as fetcher:
            fetcher.get("items?page=3")
            fetcher.get("https://other.example.org/x")

        assert seen == [
            "https://example.com/api/items?page=3",
            "https://other.example.org/x",
        ]

    def test_session_headers_sent(self) -> None:
        """Test that user agent, default and auth headers reach the server."""
        seen: list[httpx.Headers] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers)
            return httpx.Response(200)

        config = FetchConfig(user_agent="crawler/2.0", default_headers={"X-Site": "a"})
        with make_fetcher(
            handler, config=config, auth_headers={"Cookie": "session=s1"}
        ) as fetcher:
            fetcher.get("https://example.com/a", headers={"Referer": "r"})

        headers = seen[0]
        assert headers["User-Agent"] == "crawler/2.0"
        assert headers["X-Site"] == "a"
        assert headers["Cookie"] == "session=s1"
        assert headers["Referer"] == "r"

    def test_encoding_override(self) -> None:
        """Test that a caller-supplied charset wins over the declared one."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                content="<p>café</p>".encode("cp1252"),
                headers={"Content-Type": "text/html; charset=utf-8"},
            )

        with make_fetcher(handler) as fetcher:
            result = fetcher.get("https://example.com/a", encoding="cp1252")
            document = fetcher.get_document("https://example.com/a", "cp1252")

        assert result.encoding == "cp1252"
        assert result.text == "<p>café</p>"
        paragraph = document.select_one("p")
        assert paragraph is not None
        assert paragraph.get_text() == "café"


class TestRetryLoop:
    """Tests for unbounded retries with capped exponential backoff."""

    def test_retries_until_success(self) -> None:
        """Test that 503s are retried and the attempt count is reported."""
        calls, handler = failing_then_ok(3)

        with make_fetcher(handler) as fetcher:
            result = fetcher.get("https://example.com/a")

        assert len(calls) == 4
        assert result.attempts == 4
        assert result.text == "ok"

    def test_backoff_doubles_and_caps_at_30s(self) -> None:
        """Test that the Nth retry waits min(2**(N-1), 30) seconds."""
        waits: list[float] = []
        _, handler = failing_then_ok(7)

        with make_fetcher(handler, waits) as fetcher:
            fetcher.get("https://example.com/a")

        assert waits == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]

    def test_backoff_resets_per_logical_fetch(self) -> None:
        """Test that a new fetch starts again from the initial delay."""
        waits: list[float] = []
        statuses = iter([503, 503, 200, 503, 200])

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(next(statuses))

        with make_fetcher(handler, waits) as fetcher:
            fetcher.get("https://example.com/a")
            fetcher.get("https://example.com/b")

        assert waits == [1.0, 2.0, 1.0]

    @pytest.mark.parametrize("status", [404, 429, 500])
    def test_any_non_2xx_is_retried(self, status: int) -> None:
        """Test that client errors are retried like server errors."""
        calls, handler = failing_then_ok(1, status=status)

        with make_fetcher(handler) as fetcher:
            fetcher.get("https://example.com/a")

        assert len(calls) == 2

    @pytest.mark.parametrize(
        "exc",
        [
            httpx.ConnectError("refused"),
            httpx.ReadTimeout("timed out"),
            RuntimeError("boom"),
        ],
    )
    def test_exceptions_are_retried(self, exc: Exception) -> None:
        """Test that transport exceptions trigger a retry."""
        calls: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            if len(calls) == 1:
                raise exc
            return httpx.Response(200)

        with make_fetcher(handler) as fetcher:
            result = fetcher.get("https://example.com/a")

        assert result.attempts == 2

    def test_retries_counted_on_progress(self) -> None:
        """Test that each retry increments the "retries" counter."""
        _, handler = failing_then_ok(2)
        progress = ProgressSink("Pages", stream=io.StringIO())

        with make_fetcher(handler, progress=progress) as fetcher:
            fetcher.get("https://example.com/a")

        assert progress.counts == {"retries": 2}
        assert progress.count == 0

    def test_reporting_to_is_temporary(self) -> None:
        """Test that reporting_to restores the previous sink."""
        _, handler = failing_then_ok(1)
        progress = ProgressSink("Pages", stream=io.StringIO())

        with make_fetcher(handler) as fetcher:
            with fetcher.reporting_to(progress):
                fetcher.get("https://example.com/a")
            assert fetcher.progress is None

        assert progress.counts == {"retries": 1}

    def test_hooks_run_before_each_retry(self) -> None:
        """Test that the per-call and session hooks run once per retry."""
        order: list[str] = []
        _, handler = failing_then_ok(2)

        with make_fetcher(
            handler,
            on_retry=lambda: order.append("session"),
        ) as fetcher:
            fetcher.get(
                "https://example.com/a",
                cleanup_before_retry=lambda: order.append("cleanup"),
            )

        assert order == ["cleanup", "session", "cleanup", "session"]

    def test_metrics_recorded(self) -> None:
        """Test that attempts, retries and bytes are counted."""
        _, handler = failing_then_ok(1)

        with make_fetcher(handler) as fetcher:
            fetcher.get("https://example.com/a")

        metrics = FetchMetrics.get_instance()
        assert metrics.http_requests_total == {503: 1, 200: 1}
        assert metrics.http_retry_total == 1
        assert metrics.http_bytes_total == 2
        assert metrics.http_fetch_count == 1


class TestGivingUp:
    """Tests for the opt-in terminal failure paths."""

    def test_non_retryable_predicate(self) -> None:
        """Test that a rejected error raises without waiting."""
        waits: list[float] = []
        calls, handler = failing_then_ok(5, status=404)

        with make_fetcher(
            handler,
            waits,
            is_retryable=lambda error: error.status_code != 404,
        ) as fetcher:
            with pytest.raises(FetchFailedError) as exc_info:
                fetcher.get("https://example.com/missing")

        assert len(calls) == 1
        assert waits == []
        assert exc_info.value.attempts == 1
        assert exc_info.value.error.error_class == FetchErrorClass.HTTP_4XX
        assert exc_info.value.details["status_code"] == 404

    def test_non_retryable_status_in_policy(self) -> None:
        """Test that policy-listed statuses fail immediately."""
        calls, handler = failing_then_ok(5, status=410)
        config = FetchConfig(
            retry_policy=RetryPolicy(non_retryable_statuses=frozenset({410}))
        )

        with make_fetcher(handler, config=config) as fetcher:
            with pytest.raises(FetchFailedError):
                fetcher.get("https://example.com/gone")

        assert len(calls) == 1

    def test_max_attempts_ceiling(self) -> None:
        """Test that a configured ceiling stops the loop."""
        waits: list[float] = []
        calls, handler = failing_then_ok(100)
        config = FetchConfig(retry_policy=RetryPolicy(max_attempts=3))

        with make_fetcher(handler, waits, config=config) as fetcher:
            with pytest.raises(FetchFailedError) as exc_info:
                fetcher.get("https://example.com/a")

        assert len(calls) == 3
        assert waits == [1.0, 2.0]
        assert exc_info.value.attempts == 3
        assert FetchMetrics.get_instance().http_failures_total == {"HTTP_5XX": 1}

    def test_cancelled_session_does_not_fetch(self) -> None:
        """Test that a set cancel event stops the fetch before any attempt."""
        calls, handler = failing_then_ok(0)
        event = threading.Event()
        event.set()

        with make_fetcher(handler, cancel_event=event) as fetcher:
            with pytest.raises(CrawlCancelledError):
                fetcher.get("https://example.com/a")

        assert calls == []


class TestAuthRefresh:
    """Tests for dynamic auth headers refreshed between retries."""

    def test_token_reloaded_after_401(self) -> None:
        """Test that an expired token is invalidated and reloaded."""
        tokens = iter(["expired", "fresh"])
        token = CachedBearerToken(lambda: next(tokens))
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            auth = request.headers["Authorization"]
            seen.append(auth)
            return httpx.Response(200 if auth == "Bearer fresh" else 401)

        with make_fetcher(
            handler, header_provider=token.headers, on_retry=token.invalidate
        ) as fetcher:
            result = fetcher.get("https://example.com/api/items")

        assert seen == ["Bearer expired", "Bearer fresh"]
        assert result.attempts == 2

    def test_token_loader_failure_is_retried(self) -> None:
        """Test that a failing token loader costs one attempt, not the fetch."""
        loads: list[int] = []

        def loader() -> str:
            loads.append(1)
            if len(loads) == 1:
                raise httpx.ConnectError("token endpoint unreachable")
            return "fresh"

        token = CachedBearerToken(loader)
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["Authorization"])
            return httpx.Response(200)

        waits: list[float] = []
        with make_fetcher(handler, waits, header_provider=token.headers) as fetcher:
            result = fetcher.get("https://example.com/api/items")

        assert seen == ["Bearer fresh"]
        assert result.attempts == 2
        assert len(waits) == 1
        assert FetchMetrics.get_instance().http_retry_total == 1


class TestConvenienceMethods:
    """Tests for JSON and form helpers."""

    def test_get_json(self) -> None:
        """Test that JSON payloads are decoded."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"items": [1, 2]})

        with make_fetcher(handler) as fetcher:
            assert fetcher.get_json("https://example.com/feed") == {"items": [1, 2]}

    def test_post_json(self) -> None:
        """Test that the JSON body is sent with POST."""
        bodies: list[tuple[str, object]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append((request.method, json.loads(request.content)))
            return httpx.Response(201)

        with make_fetcher(handler) as fetcher:
            result = fetcher.post_json("https://example.com/search", {"q": "x"})

        assert result.status_code == 201
        assert bodies == [("POST", {"q": "x"})]

    def test_post_form(self) -> None:
        """Test that form data is urlencoded."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        with make_fetcher(handler) as fetcher:
            fetcher.post_form("https://example.com/login", {"user": "a b", "id": "7"})

        request = seen[0]
        assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert parse_qs(request.content.decode()) == {"user": ["a b"], "id": ["7"]}


class TestClassifyStatus:
    """Tests for status classification."""

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (200, None),
            (299, None),
            (302, FetchErrorClass.UNKNOWN),
            (404, FetchErrorClass.HTTP_4XX),
            (429, FetchErrorClass.RATE_LIMITED),
            (503, FetchErrorClass.HTTP_5XX),
        ],
    )
    def test_classification(
        self, status: int, expected: FetchErrorClass | None
    ) -> None:
        """Test that statuses map to the right error classes."""
        error = classify_status(status)

        if expected is None:
            assert error is None
        else:
            assert error is not None
            assert error.error_class == expected
            assert error.status_code == status
