"""Logging setup for crawl sessions."""

from src.observability.logging import configure_logging, end_session, start_session


__all__ = [
    "configure_logging",
    "end_session",
    "start_session",
]
