"""Bounded-concurrency submission of extracted records."""

from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING, TypeVar

import structlog


if TYPE_CHECKING:
    from src.progress.sink import ProgressSink


logger = structlog.get_logger()

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_MAX_WORKERS = 8


def submit_all(
    items: Iterable[T],
    submit: Callable[[T], R],
    max_workers: int = DEFAULT_MAX_WORKERS,
    progress: "ProgressSink | None" = None,
) -> list[R]:
    """Run ``submit`` for every item on a bounded thread pool.

    Results come back in completion order, not submission order. The
    first submission error cancels the submissions that have not started
    yet and is re-raised.

    Args:
        items: Records to submit.
        submit: Called once per record, from a worker thread.
        max_workers: Maximum concurrent submissions.
        progress: Sink incremented as each submission completes.

    Returns:
        Submission results in completion order.
    """
    if max_workers < 1:
        msg = f"max_workers must be >= 1, got {max_workers}"
        raise ValueError(msg)

    log = logger.bind(component="fanout", max_workers=max_workers)
    results: list[R] = []

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures: list[Future[R]] = [executor.submit(submit, item) for item in items]
        try:
            for future in as_completed(futures):
                results.append(future.result())
                if progress is not None:
                    progress.increment()
        except Exception as e:
            for pending in futures:
                pending.cancel()
            log.error(
                "submission_failed",
                error=str(e),
                error_type=type(e).__name__,
                completed=len(results),
                total=len(futures),
            )
            raise

    log.info("submissions_complete", total=len(results))
    return results
