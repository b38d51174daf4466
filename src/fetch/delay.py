"""Randomized politeness delays."""

import random
import threading
import time
from collections.abc import Callable

from src.errors import CrawlCancelledError
from src.fetch.constants import (
    DEFAULT_DELAY_INTERVAL_MS,
    JITTER_LOWER_FACTOR,
    JITTER_UPPER_FACTOR,
)


class JitteredDelay:
    """Sleeps for a random duration around a base interval.

    The wait is uniform in ``[0.5 * base, 1.5 * base]`` so concurrent
    crawlers do not fall into lock-step request bursts. Sleeping only
    suspends the calling thread.
    """

    def __init__(
        self,
        interval_seconds: float = DEFAULT_DELAY_INTERVAL_MS / 1000.0,
        rng: random.Random | None = None,
        sleep: Callable[[float], None] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        """Initialize the delay.

        Args:
            interval_seconds: Default base interval for ``wait()``.
            rng: Random source (module-level generator if not provided).
            sleep: Sleep function used when no cancel event is set.
            cancel_event: Optional event that interrupts waits cooperatively.
        """
        if interval_seconds < 0:
            msg = f"interval_seconds must be >= 0, got {interval_seconds}"
            raise ValueError(msg)
        self._interval = interval_seconds
        self._rng = rng or random.Random()  # noqa: S311
        self._sleep = sleep or time.sleep
        self._cancel_event = cancel_event

    @property
    def interval_seconds(self) -> float:
        """Get the default base interval."""
        return self._interval

    def duration(self, base_seconds: float | None = None) -> float:
        """Pick a jittered duration for a base interval.

        Args:
            base_seconds: Base interval (defaults to the configured one).

        Returns:
            Seconds in ``[0.5 * base, 1.5 * base]``.
        """
        base = self._interval if base_seconds is None else base_seconds
        return self._rng.uniform(base * JITTER_LOWER_FACTOR, base * JITTER_UPPER_FACTOR)

    def wait(self, base_seconds: float | None = None) -> float:
        """Sleep for a jittered duration.

        Args:
            base_seconds: Base interval (defaults to the configured one).

        Returns:
            The number of seconds slept.

        Raises:
            CrawlCancelledError: If cancellation is requested before or
                during the wait.
        """
        seconds = self.duration(base_seconds)
        if self._cancel_event is None:
            self._sleep(seconds)
            return seconds

        if self._cancel_event.is_set() or self._cancel_event.wait(seconds):
            raise CrawlCancelledError("delay")
        return seconds
