"""Iteration helpers reporting through a ProgressSink."""

from collections.abc import Collection, Iterator
from typing import TextIO, TypeVar

from src.progress.sink import ProgressSink


T = TypeVar("T")


def with_progress(
    items: Collection[T],
    title: str,
    show_rate: bool = True,
    stream: TextIO | None = None,
) -> Iterator[T]:
    """Yield each item, incrementing a progress line after it is handled.

    The total is the collection size. The line is disposed (and the
    summary printed) when iteration finishes or the generator is closed.
    """
    sink = ProgressSink(title, total=len(items), show_rate=show_rate, stream=stream)
    with sink as progress:
        for item in items:
            yield item
            progress.increment()
