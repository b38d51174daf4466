"""Integration tests crawling a local HTTP server end to end."""

import io
import threading
from collections.abc import Generator
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import parse_qs, urlparse

import pytest
from bs4 import BeautifulSoup

from src.fetch.client import ResilientFetcher
from src.fetch.config import FetchConfig
from src.fetch.delay import JitteredDelay
from src.fetch.metrics import FetchMetrics
from src.pagination.extract import select_hrefs
from src.pagination.fanout import submit_all
from src.pagination.last_page import LastPageFinder
from src.pagination.source import HtmlPageSource
from src.pagination.walker import PageWalker
from src.progress.sink import ProgressSink
from tests.helpers.http import item_hrefs, listing_page


LAST_PAGE = 13


def get_server_url(server: HTTPServer, path: str = "/") -> str:
    """Get the URL of a path on the test server."""
    host, port = server.server_address[0], server.server_address[1]
    if isinstance(host, bytes):
        host = host.decode("utf-8")
    return f"http://{host}:{port}{path}"


class FlakyListingHandler(BaseHTTPRequestHandler):
    """Serves a 13-page listing, failing every page's first request with 503."""

    # Class-level state shared across requests
    seen_pages: set[int] = set()
    lock = threading.Lock()

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        """Suppress log messages during tests."""

    def do_GET(self) -> None:  # noqa: N802
        """Serve /list?page=N and /item/... detail pages."""
        url = urlparse(self.path)
        if url.path.startswith("/item/"):
            self._send(200, f"<html><h1>{url.path}</h1></html>")
            return

        page = int(parse_qs(url.query).get("page", ["1"])[0])
        with FlakyListingHandler.lock:
            first_visit = page not in FlakyListingHandler.seen_pages
            FlakyListingHandler.seen_pages.add(page)
        if first_visit:
            self._send(503, "busy")
            return

        if page > LAST_PAGE:
            self._send(200, listing_page([]))
            return
        next_href = f"/list?page={page + 1}" if page < LAST_PAGE else None
        self._send(200, listing_page(item_hrefs(page), next_href=next_href))

    def _send(self, status: int, body: str) -> None:
        payload = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)


@pytest.fixture(autouse=True)
def reset_state() -> Generator[None]:
    """Reset metrics and server state before and after each test."""
    FetchMetrics.reset()
    FlakyListingHandler.seen_pages = set()
    yield
    FetchMetrics.reset()


@pytest.fixture
def listing_server() -> Generator[HTTPServer]:
    """Start a local HTTP server with a flaky paginated listing."""
    server = HTTPServer(("127.0.0.1", 0), FlakyListingHandler)
    thread = threading.Thread(target=server.serve_forever)
    thread.daemon = True
    thread.start()
    yield server
    server.shutdown()


@pytest.fixture
def fetcher(listing_server: HTTPServer) -> Generator[ResilientFetcher]:
    """Fetcher against the local server that never actually sleeps."""
    config = FetchConfig(base_url=get_server_url(listing_server), timeout_seconds=5)
    with ResilientFetcher(config, delay=JitteredDelay(sleep=lambda _: None)) as f:
        yield f


class TestProbeThenIterate:
    """Find the page count, then walk the known range."""

    def test_finds_last_page_despite_503s(self, fetcher: ResilientFetcher) -> None:
        """Every probe is retried until the server answers."""
        progress = ProgressSink("Probing", stream=io.StringIO())
        finder = LastPageFinder(progress=progress)

        with fetcher.reporting_to(progress):
            last_page = finder.find_last_page(
                HtmlPageSource(fetcher, "/list?page={}", "li.item a")
            )

        assert last_page == LAST_PAGE
        assert progress.count == 6
        assert finder.last_window is not None
        assert progress.counts["retries"] == finder.last_window.probes

    def test_walk_range_after_probe(self, fetcher: ResilientFetcher) -> None:
        """Walking 1..last visits each page once after its retry."""
        source = HtmlPageSource(fetcher, "/list?page={}", "li.item a")
        last_page = LastPageFinder().find_last_page(source)
        hrefs: list[str] = []

        def on_page(document: BeautifulSoup) -> None:
            hrefs.extend(select_hrefs(document, "li.item a"))

        visited = PageWalker(fetcher).walk_range(source.url_for, on_page, last_page)

        assert visited == LAST_PAGE
        assert len(hrefs) == LAST_PAGE * 3


class TestWalkAndFanOut:
    """Walk next links and fetch item pages concurrently."""

    def test_walk_items_then_fetch_details(self, fetcher: ResilientFetcher) -> None:
        """Item links collected by the walk are all fetched."""
        hrefs: list[str] = []
        stream = io.StringIO()

        pages = PageWalker(fetcher, progress_stream=stream).walk_items(
            "/list?page={}",
            "li.item a",
            "a.next",
            hrefs.append,
            progress_title="Pages",
        )

        def fetch_title(href: str) -> str:
            heading = fetcher.get_document(href).select_one("h1")
            return heading.get_text() if heading is not None else ""

        with ProgressSink("Items", total=len(hrefs), stream=stream) as progress:
            titles = submit_all(
                hrefs,
                fetch_title,
                max_workers=4,
                progress=progress,
            )

        assert pages == LAST_PAGE
        assert sorted(titles) == sorted(hrefs)
        assert "Pages: 13 in " in stream.getvalue()
        assert "Items: 39 in " in stream.getvalue()
        assert FetchMetrics.get_instance().http_retry_total == LAST_PAGE
