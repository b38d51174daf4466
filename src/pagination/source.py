"""Page sources: how to address and probe the pages of one listing."""

from collections.abc import Callable, Sequence
from typing import Any, Protocol, runtime_checkable

from bs4 import Tag

from src.errors import ExtractionError
from src.fetch.client import ResilientFetcher


def format_page_url(template: str, index: int) -> str:
    """Fill a page URL template.

    Templates may use a positional field (``{}`` or ``{0}``) or ``{page}``.
    """
    return template.format(index, page=index)


@runtime_checkable
class PageSource(Protocol):
    """Protocol for an indexed, paginated resource.

    Pages are numbered from 1. A page past the end has no items.
    """

    def url_for(self, index: int) -> str:
        """URL of page ``index``."""
        ...

    def items_at(self, index: int) -> Sequence[Any]:
        """Fetch page ``index`` and return its items (empty past the end)."""
        ...

    def item_count_at(self, index: int) -> int:
        """Number of items on page ``index``."""
        ...


class HtmlPageSource:
    """Listing whose items are HTML nodes matching a CSS selector."""

    def __init__(
        self,
        fetcher: ResilientFetcher,
        url_template: str,
        item_selector: str,
        is_past_end: Callable[[list[Tag]], bool] | None = None,
        encoding: str | None = None,
    ) -> None:
        """Initialize the source.

        Args:
            fetcher: Session fetcher.
            url_template: Page URL template (``{}`` or ``{page}``).
            item_selector: CSS selector for the items of a page.
            is_past_end: Optional predicate treating a non-empty page as past
                the end (e.g. its last item is a known sentinel).
            encoding: Charset override for the pages.
        """
        self._fetcher = fetcher
        self._url_template = url_template
        self._item_selector = item_selector
        self._is_past_end = is_past_end
        self._encoding = encoding

    def url_for(self, index: int) -> str:
        return format_page_url(self._url_template, index)

    def items_at(self, index: int) -> list[Tag]:
        document = self._fetcher.get_document(self.url_for(index), self._encoding)
        items = document.select(self._item_selector)
        if items and self._is_past_end is not None and self._is_past_end(items):
            return []
        return items

    def item_count_at(self, index: int) -> int:
        return len(self.items_at(index))


class JsonPageSource:
    """Listing served as JSON, with the items under a fixed path."""

    def __init__(
        self,
        fetcher: ResilientFetcher,
        url_template: str,
        items_path: Sequence[str | int],
        item_filter: Callable[[Any], bool] | None = None,
    ) -> None:
        """Initialize the source.

        Args:
            fetcher: Session fetcher.
            url_template: Page URL template (``{}`` or ``{page}``).
            items_path: Keys/indices leading to the item list in the payload.
            item_filter: Optional predicate keeping only valid items.
        """
        self._fetcher = fetcher
        self._url_template = url_template
        self._items_path = tuple(items_path)
        self._item_filter = item_filter

    def url_for(self, index: int) -> str:
        return format_page_url(self._url_template, index)

    def items_at(self, index: int) -> list[Any]:
        url = self.url_for(index)
        node: Any = self._fetcher.get_json(url)
        for key in self._items_path:
            try:
                node = node[key]
            except (KeyError, IndexError, TypeError) as e:
                msg = f"Path {list(self._items_path)} not found in payload"
                raise ExtractionError(msg, url=url) from e

        # A null list marks a page past the end
        if node is None:
            return []
        if not isinstance(node, list):
            kind = type(node).__name__
            msg = f"Expected a list at {list(self._items_path)}, got {kind}"
            raise ExtractionError(msg, url=url)
        if self._item_filter is not None:
            return [item for item in node if self._item_filter(item)]
        return node

    def item_count_at(self, index: int) -> int:
        return len(self.items_at(index))


class CallablePageSource:
    """Adapts plain callables to the PageSource protocol."""

    def __init__(
        self,
        url_for: Callable[[int], str],
        probe: Callable[[str], Sequence[Any]],
    ) -> None:
        """Initialize the source.

        Args:
            url_for: Builds the URL of a page index.
            probe: Fetches a URL and returns its items.
        """
        self._url_for = url_for
        self._probe = probe

    def url_for(self, index: int) -> str:
        return self._url_for(index)

    def items_at(self, index: int) -> Sequence[Any]:
        return self._probe(self.url_for(index))

    def item_count_at(self, index: int) -> int:
        return len(self.items_at(index))
