"""Small selector helpers over parsed documents."""

from bs4 import BeautifulSoup, Tag

from src.errors import ExtractionError


def has_match(document: BeautifulSoup | Tag, selector: str) -> bool:
    """Check whether a selector matches at least one node."""
    return document.select_one(selector) is not None


def select_hrefs(document: BeautifulSoup | Tag, selector: str) -> list[str]:
    """Collect the ``href`` of every node a selector matches.

    Nodes without an ``href`` are skipped.
    """
    hrefs: list[str] = []
    for node in document.select(selector):
        href = node.get("href")
        if isinstance(href, str):
            hrefs.append(href)
    return hrefs


def select_int(document: BeautifulSoup | Tag, selector: str) -> int:
    """Read the text of the first matching node as an integer.

    Raises:
        ExtractionError: If nothing matches or the text is not a number.
    """
    node = document.select_one(selector)
    if node is None:
        msg = f"No node matches '{selector}'"
        raise ExtractionError(msg, selector=selector)

    text = node.get_text(strip=True)
    try:
        return int(text)
    except ValueError as e:
        msg = f"Node matching '{selector}' is not an integer: {text!r}"
        raise ExtractionError(msg, selector=selector) from e
