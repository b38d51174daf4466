"""Console progress line with a background refresh thread."""

import sys
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from types import TracebackType
from typing import TextIO


# Refresh period of the status line (seconds)
UPDATE_INTERVAL_SECONDS = 0.1

# Width blanked before every redraw
LINE_WIDTH = 80

SECONDS_PER_DAY = 86400
SECONDS_PER_HOUR = 3600
SECONDS_PER_MINUTE = 60


def format_duration(seconds: float) -> str:
    """Format seconds as ``dd.hh:mm:ss``."""
    total = max(0, int(seconds))
    days, rest = divmod(total, SECONDS_PER_DAY)
    hours, rest = divmod(rest, SECONDS_PER_HOUR)
    minutes, secs = divmod(rest, SECONDS_PER_MINUTE)
    return f"{days:02d}.{hours:02d}:{minutes:02d}:{secs:02d}"


@dataclass(frozen=True)
class ProgressSnapshot:
    """Point-in-time copy of the counters, used for rendering."""

    title: str
    count: int
    total: int
    skipped: int
    elapsed_seconds: float
    counts: dict[str, int] = field(default_factory=dict)


class ProgressSink:
    """Process-wide progress counters rendered on one console line.

    Counters may be updated from any thread. A daemon thread redraws the
    line every 100ms when something changed; display reads are
    snapshots and only eventually consistent with writers. ``dispose()``
    stops and joins the thread before printing the final summary, so no
    redraw can follow it.
    """

    def __init__(  # noqa: PLR0913
        self,
        title: str,
        total: int = 0,
        show_rate: bool = True,
        stream: TextIO | None = None,
        interval_seconds: float = UPDATE_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the sink.

        Args:
            title: Prefix of the status line.
            total: Expected count (0 means unknown).
            show_rate: Whether to show items per minute.
            stream: Output stream (default: stderr).
            interval_seconds: Refresh period of the background thread.
            clock: Monotonic clock, injectable for tests.
        """
        self._title = title
        self._show_rate = show_rate
        self._stream = stream or sys.stderr
        self._interval = interval_seconds
        self._clock = clock
        self._start_time = clock()

        self._lock = threading.Lock()
        self._counts_lock = threading.Lock()
        self._render_lock = threading.Lock()
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None
        self._disposed = False

        self._total = total
        self._count = 0
        self._skipped = 0
        self._counts: dict[str, int] = {}
        self._dirty = True

    def __enter__(self) -> "ProgressSink":
        return self.start()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.dispose()

    @property
    def title(self) -> str:
        return self._title

    @property
    def count(self) -> int:
        return self._count

    @property
    def total(self) -> int:
        return self._total

    @property
    def skipped(self) -> int:
        return self._skipped

    @property
    def counts(self) -> dict[str, int]:
        """Copy of the named auxiliary counters."""
        with self._counts_lock:
            return dict(self._counts)

    def start(self) -> "ProgressSink":
        """Start the background refresh thread."""
        if self._thread is None and not self._disposed:
            self._thread = threading.Thread(
                target=self._refresh_loop,
                name=f"progress-{self._title}",
                daemon=True,
            )
            self._thread.start()
        return self

    def increment(self, name: str | None = None, *, skipped: bool = False) -> None:
        """Increment the progress count, or a named counter when ``name`` is given.

        Args:
            name: Named auxiliary counter (e.g. "retries").
            skipped: Count the item as skipped; skipped items are left out
                of the remaining-time estimate.
        """
        if name is not None:
            with self._counts_lock:
                self._counts[name] = self._counts.get(name, 0) + 1
            self._dirty = True
            return

        with self._lock:
            self._count += 1
            if skipped:
                self._skipped += 1
        self._dirty = True

    def add(self, value: int) -> None:
        """Add ``value`` to the progress count."""
        with self._lock:
            self._count += value
        self._dirty = True

    def set(self, value: int) -> None:
        """Overwrite the progress count."""
        with self._lock:
            self._count = value
        self._dirty = True

    def set_total(self, total: int) -> None:
        """Set the expected count; only affects later renders."""
        with self._lock:
            self._total = total
        self._dirty = True

    def snapshot(self) -> ProgressSnapshot:
        """Copy the counters for display."""
        with self._lock:
            count, total, skipped = self._count, self._total, self._skipped
        return ProgressSnapshot(
            title=self._title,
            count=count,
            total=total,
            skipped=skipped,
            elapsed_seconds=self._clock() - self._start_time,
            counts=self.counts,
        )

    def render_line(self, snapshot: ProgressSnapshot | None = None) -> str:
        """Build the status line.

        Args:
            snapshot: Counters to render (taken now if not provided).

        Returns:
            ``"{title}: {count}"`` followed by a parenthesised list of named
            counts, rate and remaining-time estimate when available.
        """
        snap = snapshot or self.snapshot()
        parts = [f"{value} {name}" for name, value in snap.counts.items()]

        if self._show_rate and snap.count > 0 and snap.elapsed_seconds > 0:
            per_minute = int(snap.count / (snap.elapsed_seconds / SECONDS_PER_MINUTE))
            parts.append(f"{per_minute} items/m")

        if snap.total > 0:
            parts.append(_remaining_estimate(snap))

        line = f"{snap.title}: {snap.count}"
        if parts:
            line = f"{line} ({', '.join(parts)})"
        return line

    def summary_line(self) -> str:
        """Final line: count and total elapsed time."""
        elapsed = self._clock() - self._start_time
        return f"{self._title}: {self._count} in {format_duration(elapsed)}"

    def dispose(self) -> None:
        """Stop the refresh thread and print the final summary.

        Blocks until the thread has exited. Safe to call more than once.
        """
        if self._disposed:
            return
        self._disposed = True
        self._stopping.set()
        if self._thread is not None:
            self._thread.join()

        with self._render_lock:
            self._stream.write(f"{' ' * LINE_WIDTH}\r")
            self._stream.write(f"{self.summary_line()}\n")
            self._stream.flush()

    def _refresh_loop(self) -> None:
        while not self._stopping.is_set():
            if self._dirty:
                self._draw()
            self._stopping.wait(self._interval)

    def _draw(self) -> None:
        self._dirty = False
        line = self.render_line()
        with self._render_lock:
            self._stream.write(f"{' ' * LINE_WIDTH}\r")
            self._stream.write(f"{line}\r")
            self._stream.flush()


def _remaining_estimate(snap: ProgressSnapshot) -> str:
    done = snap.count - snap.skipped
    if done <= 0 or snap.count > snap.total:
        return "unknown time remaining"
    remaining = (snap.total - snap.skipped) - done
    seconds = snap.elapsed_seconds * remaining / done
    return f"{format_duration(seconds)} remaining"
