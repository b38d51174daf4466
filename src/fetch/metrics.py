"""Metrics collection for the HTTP fetch layer."""

from dataclasses import dataclass, field
from threading import Lock

from src.fetch.models import FetchErrorClass


# Module-level singleton state
_metrics_instance: "FetchMetrics | None" = None
_metrics_lock: Lock = Lock()


@dataclass
class FetchMetrics:
    """Thread-safe metrics for HTTP fetch operations.

    Tracks attempts by status code, retries, terminal failures,
    bytes received and time spent in logical fetches.
    Use get_instance() for singleton access.
    """

    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    http_requests_total: dict[int, int] = field(default_factory=dict)
    http_retry_total: int = 0
    http_failures_total: dict[str, int] = field(default_factory=dict)
    http_bytes_total: int = 0
    http_duration_ms_total: float = 0.0
    http_fetch_count: int = 0

    @classmethod
    def get_instance(cls) -> "FetchMetrics":
        """Get the singleton instance (thread-safe).

        Returns:
            The shared FetchMetrics instance.
        """
        global _metrics_instance  # noqa: PLW0603
        if _metrics_instance is None:
            with _metrics_lock:
                if _metrics_instance is None:
                    _metrics_instance = cls()
        return _metrics_instance

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton instance (for testing)."""
        global _metrics_instance  # noqa: PLW0603
        with _metrics_lock:
            _metrics_instance = None

    def record_request(self, status_code: int, bytes_received: int) -> None:
        """Record one completed HTTP exchange.

        Args:
            status_code: HTTP status code.
            bytes_received: Number of bytes received.
        """
        with self._lock:
            self.http_requests_total[status_code] = (
                self.http_requests_total.get(status_code, 0) + 1
            )
            self.http_bytes_total += bytes_received

    def record_retry(self) -> None:
        """Record a retried attempt."""
        with self._lock:
            self.http_retry_total += 1

    def record_failure(self, error_class: FetchErrorClass) -> None:
        """Record a logical fetch that ended without success.

        Args:
            error_class: Classification of the final error.
        """
        key = error_class.value
        with self._lock:
            self.http_failures_total[key] = self.http_failures_total.get(key, 0) + 1

    def record_duration(self, duration_ms: float) -> None:
        """Record the duration of one logical fetch, retries included.

        Args:
            duration_ms: Duration in milliseconds.
        """
        with self._lock:
            self.http_duration_ms_total += duration_ms
            self.http_fetch_count += 1

    def to_dict(self) -> dict[str, int | float | dict[str, int] | dict[int, int]]:
        """Convert metrics to dictionary.

        Returns:
            Dictionary of metric name to value.
        """
        with self._lock:
            return {
                "http_requests_total": dict(self.http_requests_total),
                "http_retry_total": self.http_retry_total,
                "http_failures_total": dict(self.http_failures_total),
                "http_bytes_total": self.http_bytes_total,
                "http_duration_ms_total": self.http_duration_ms_total,
                "http_fetch_count": self.http_fetch_count,
            }

    @property
    def avg_duration_ms(self) -> float:
        """Average logical fetch duration in milliseconds."""
        if self.http_fetch_count == 0:
            return 0.0
        return self.http_duration_ms_total / self.http_fetch_count
