"""Console progress reporting."""

from src.progress.iterate import with_progress
from src.progress.sink import ProgressSink, ProgressSnapshot, format_duration


__all__ = [
    "ProgressSink",
    "ProgressSnapshot",
    "format_duration",
    "with_progress",
]
