"""Exception hierarchy for the crawl engine."""


class CrawlError(Exception):
    """Base exception for crawl engine errors.

    Provides structured error information for logging and reporting.
    """

    def __init__(
        self,
        message: str,
        details: dict[str, str | int | bool | None] | None = None,
    ) -> None:
        """Initialize the crawl error.

        Args:
            message: Human-readable error message.
            details: Additional structured error details.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(
        self,
    ) -> dict[str, str | dict[str, str | int | bool | None]]:
        """Convert error to dictionary for logging/serialization.

        Returns:
            Dictionary representation of the error.
        """
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class ExtractionError(CrawlError):
    """Expected markup is absent or malformed on a fetched page.

    Signals a markup assumption violation, not transient unavailability,
    so it is never retried.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        selector: str | None = None,
    ) -> None:
        """Initialize the extraction error.

        Args:
            message: Human-readable error message.
            url: URL of the page being extracted.
            selector: Selector that failed to match.
        """
        details: dict[str, str | int | bool | None] = {}
        if url is not None:
            details["url"] = url
        if selector is not None:
            details["selector"] = selector
        super().__init__(message, details=details)
        self.url = url
        self.selector = selector


class CrawlCancelledError(CrawlError):
    """Raised at a suspension point once cancellation was requested."""

    def __init__(self, where: str) -> None:
        super().__init__(f"Crawl cancelled during {where}", details={"where": where})
        self.where = where


class SettingsError(CrawlError):
    """Environment settings failed validation."""

    def __init__(self, errors: list[dict[str, str]]) -> None:
        """Initialize the settings error.

        Args:
            errors: One entry per invalid field, with "loc" and "msg" keys.
        """
        summary = "; ".join(f"{err['loc']}: {err['msg']}" for err in errors)
        super().__init__(
            f"Invalid settings: {summary}", details={"error_count": len(errors)}
        )
        self.errors = errors
