"""Sequential traversal of paginated listings."""

from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from functools import partial
from typing import TextIO
from urllib.parse import urljoin

import structlog
from bs4 import BeautifulSoup

from src.fetch.client import ResilientFetcher, parse_html
from src.fetch.delay import JitteredDelay
from src.fetch.redact import redact_url_credentials
from src.pagination.extract import has_match, select_hrefs, select_int
from src.pagination.source import format_page_url
from src.progress.sink import ProgressSink


logger = structlog.get_logger()

PageHandler = Callable[[BeautifulSoup], None]


@dataclass
class PageCursor:
    """Position of a walk.

    Indexed walks start at 1 and advance by exactly one page; link walks
    ignore the index and carry only the URL of the next page.
    """

    index: int = 1
    url: str | None = None
    total: int | None = None

    def advance(self) -> None:
        self.index += 1


class PageWalker:
    """Walks the pages of a listing one at a time.

    Every page is fetched through the session's ResilientFetcher (so
    transient failures are retried there), handed to a caller-supplied
    handler, and followed by a jittered politeness delay. Handler errors
    propagate and abort the walk.
    """

    def __init__(
        self,
        fetcher: ResilientFetcher,
        delay: JitteredDelay | None = None,
        encoding: str | None = None,
        progress_stream: TextIO | None = None,
    ) -> None:
        """Initialize the walker.

        Args:
            fetcher: Session fetcher.
            delay: Delay between pages (defaults to the fetcher's).
            encoding: Charset override for every page.
            progress_stream: Stream for progress lines (default: stderr).
        """
        self._fetcher = fetcher
        self._delay = delay or fetcher.delay
        self._encoding = encoding
        self._progress_stream = progress_stream
        self._log = logger.bind(component="pagination")

    def walk(
        self,
        url_for: Callable[[int], str],
        on_page: PageHandler,
        has_next: Callable[[BeautifulSoup], bool],
        get_total: Callable[[BeautifulSoup], int] | None = None,
        progress_title: str | None = None,
    ) -> int:
        """Walk indexed pages until ``has_next`` says stop.

        Args:
            url_for: Builds the URL of page ``index`` (1-based).
            on_page: Handler for each parsed page.
            has_next: Whether another page follows the given one.
            get_total: Reads the declared page count from a page; updates
                the progress total.
            progress_title: Title of the progress line (None: no line).

        Returns:
            Number of pages visited.
        """
        cursor = PageCursor()
        with self._progress(progress_title) as progress:
            while True:
                self._fetcher.check_cancelled("walk")
                document, _ = self._fetch_page(url_for(cursor.index))

                if get_total is not None:
                    cursor.total = get_total(document)
                    if progress is not None:
                        progress.set_total(cursor.total)

                on_page(document)
                if progress is not None:
                    progress.increment()
                self._log.debug("walk_page", page=cursor.index, total=cursor.total)

                if not has_next(document):
                    break

                self._delay.wait()
                cursor.advance()

        self._log.info("walk_complete", pages=cursor.index)
        return cursor.index

    def walk_range(
        self,
        url_for: Callable[[int], str],
        on_page: PageHandler,
        last_page: int,
        progress_title: str | None = None,
    ) -> int:
        """Walk pages ``1..last_page`` (e.g. after LastPageFinder).

        Returns:
            Number of pages visited.
        """
        visited = 0
        with self._progress(progress_title, total=last_page) as progress:
            for index in range(1, last_page + 1):
                self._fetcher.check_cancelled("walk")
                if index > 1:
                    self._delay.wait()
                document, _ = self._fetch_page(url_for(index))
                on_page(document)
                visited += 1
                if progress is not None:
                    progress.increment()

        self._log.info("walk_complete", pages=visited, last_page=last_page)
        return visited

    def walk_links(
        self,
        start_url: str,
        on_page: PageHandler,
        next_link: Callable[[BeautifulSoup], str | None],
        progress_title: str | None = None,
    ) -> int:
        """Follow "next" links from ``start_url`` until none is present.

        Args:
            start_url: URL of the first page.
            on_page: Handler for each parsed page.
            next_link: Extracts the next page's (possibly relative) URL,
                or None on the last page.
            progress_title: Title of the progress line (None: no line).

        Returns:
            Number of pages visited.
        """
        cursor = PageCursor(url=start_url)
        visited = 0
        with self._progress(progress_title) as progress:
            while cursor.url is not None:
                self._fetcher.check_cancelled("walk")
                document, final_url = self._fetch_page(cursor.url)
                on_page(document)
                visited += 1
                if progress is not None:
                    progress.increment()

                link = next_link(document)
                if not link:
                    cursor.url = None
                    break

                cursor.url = urljoin(final_url, link)
                self._log.debug(
                    "walk_next_link", url=redact_url_credentials(cursor.url)
                )
                self._delay.wait()

        self._log.info("walk_complete", pages=visited)
        return visited

    def walk_items(  # noqa: PLR0913
        self,
        url_template: str,
        item_selector: str,
        next_selector: str,
        on_item: Callable[[str], None],
        last_page_selector: str | None = None,
        filter_items: Callable[[list[str]], Iterable[str]] | None = None,
        progress_title: str | None = None,
    ) -> int:
        """Walk a listing and hand every item link to ``on_item``.

        Args:
            url_template: Page URL template (``{}`` or ``{page}``).
            item_selector: CSS selector of item links (their ``href`` is used).
            next_selector: CSS selector present while a next page exists.
            on_item: Handler for each item href.
            last_page_selector: CSS selector of the declared last page number.
            filter_items: Optional transformation of each page's hrefs.
            progress_title: Title of the progress line (None: no line).

        Returns:
            Number of pages visited.
        """

        def handle_page(document: BeautifulSoup) -> None:
            hrefs: Iterable[str] = select_hrefs(document, item_selector)
            if filter_items is not None:
                hrefs = filter_items(list(hrefs))
            for href in hrefs:
                on_item(href)

        get_total: Callable[[BeautifulSoup], int] | None = None
        if last_page_selector is not None:
            get_total = partial(select_int, selector=last_page_selector)

        return self.walk(
            lambda index: format_page_url(url_template, index),
            handle_page,
            lambda document: has_match(document, next_selector),
            get_total=get_total,
            progress_title=progress_title,
        )

    def _fetch_page(self, url: str) -> tuple[BeautifulSoup, str]:
        result = self._fetcher.get(url, encoding=self._encoding)
        return parse_html(result.body_bytes, result.encoding), result.final_url

    @contextmanager
    def _progress(
        self, title: str | None, total: int = 0
    ) -> Iterator[ProgressSink | None]:
        if title is None:
            yield None
            return
        with (
            ProgressSink(title, total=total, stream=self._progress_stream) as sink,
            self._fetcher.reporting_to(sink),
        ):
            yield sink
