"""Discovery of the last non-empty page of an unbounded listing."""

import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from src.errors import CrawlCancelledError
from src.pagination.source import PageSource


if TYPE_CHECKING:
    from src.progress.sink import ProgressSink


logger = structlog.get_logger()

ProbeCallback = Callable[[int, Sequence[Any]], None]


@dataclass
class SearchWindow:
    """Bracket around the last non-empty page.

    ``lower`` is the last page known to have items (non-decreasing);
    ``upper`` is the first page known to be empty, 0 until one is found.
    Once bracketed, ``lower < upper`` holds and the search is done when
    the midpoint collapses onto ``lower``.
    """

    lower: int = 1
    upper: int = 0
    probes: int = 0

    @property
    def bracketed(self) -> bool:
        return self.upper > 0

    @property
    def midpoint(self) -> int:
        return (self.lower + self.upper) // 2

    @property
    def converged(self) -> bool:
        return self.bracketed and self.midpoint == self.lower


class LastPageFinder:
    """Finds the last page of a listing that does not publish its size.

    Doubles the probed page until one comes back empty, then binary
    searches the bracket. That costs about ``2 * log2(n)`` probes and
    needs no declared page count.
    """

    def __init__(
        self,
        progress: "ProgressSink | None" = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        """Initialize the finder.

        Args:
            progress: Sink incremented for every non-empty probe.
            cancel_event: Event checked before every probe.
        """
        self._progress = progress
        self._cancel_event = cancel_event
        self.last_window: SearchWindow | None = None

    def find_last_page(
        self,
        source: PageSource,
        on_probe_success: ProbeCallback | None = None,
    ) -> int:
        """Find the index of the last non-empty page.

        Args:
            source: The listing to probe.
            on_probe_success: Called with ``(index, items)`` for every
                probe that found items, so callers can keep them.

        Returns:
            Index of the last non-empty page, or 0 if page 1 is empty.
        """
        window = SearchWindow()
        self.last_window = window
        log = logger.bind(component="pagination", url=source.url_for(1))

        # Expand: double until a page comes back empty
        while True:
            items = self._probe(source, window, window.lower)
            if not items:
                if window.lower == 1:
                    window.lower, window.upper = 0, 1
                    log.info("last_page_found", last_page=0, probes=window.probes)
                    return 0
                window.upper = window.lower
                window.lower //= 2
                break
            self._record(window.lower, items, on_probe_success)
            window.lower *= 2

        # Contract: binary search between lower (non-empty) and upper (empty)
        while not window.converged:
            page = window.midpoint
            items = self._probe(source, window, page)
            if not items:
                window.upper = page
            else:
                self._record(page, items, on_probe_success)
                window.lower = page

        log.info("last_page_found", last_page=window.lower, probes=window.probes)
        return window.lower

    def _probe(
        self, source: PageSource, window: SearchWindow, index: int
    ) -> Sequence[Any]:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise CrawlCancelledError("probe")
        window.probes += 1
        items = source.items_at(index)
        logger.debug(
            "page_probed",
            component="pagination",
            page=index,
            items=len(items),
            lower=window.lower,
            upper=window.upper,
        )
        return items

    def _record(
        self,
        index: int,
        items: Sequence[Any],
        on_probe_success: ProbeCallback | None,
    ) -> None:
        if on_probe_success is not None:
            on_probe_success(index, items)
        if self._progress is not None:
            self._progress.increment()


def find_last_page(
    source: PageSource,
    on_probe_success: ProbeCallback | None = None,
    progress: "ProgressSink | None" = None,
) -> int:
    """Find the last non-empty page of ``source``.

    See LastPageFinder.find_last_page.
    """
    return LastPageFinder(progress=progress).find_last_page(source, on_probe_success)
