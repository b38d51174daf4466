"""Pagination engine: page walks, last-page discovery and fan-out.

Two ways to cover a listing:
- PageWalker.walk / walk_links / walk_items for listings that say whether
  a next page exists
- LastPageFinder to discover the page count of listings that do not
  publish it, then PageWalker.walk_range over ``1..last_page``
"""

from src.pagination.extract import has_match, select_hrefs, select_int
from src.pagination.fanout import DEFAULT_MAX_WORKERS, submit_all
from src.pagination.last_page import LastPageFinder, SearchWindow, find_last_page
from src.pagination.source import (
    CallablePageSource,
    HtmlPageSource,
    JsonPageSource,
    PageSource,
    format_page_url,
)
from src.pagination.walker import PageCursor, PageWalker


__all__ = [
    # Walking
    "PageWalker",
    "PageCursor",
    # Last page discovery
    "LastPageFinder",
    "SearchWindow",
    "find_last_page",
    # Sources
    "PageSource",
    "HtmlPageSource",
    "JsonPageSource",
    "CallablePageSource",
    "format_page_url",
    # Fan-out
    "submit_all",
    "DEFAULT_MAX_WORKERS",
    # Extraction helpers
    "has_match",
    "select_hrefs",
    "select_int",
]
