"""Structured logging for crawl sessions.

Every event of a session carries its ``session_id`` and ``command`` so the
JSON lines of concurrent crawls can be told apart.
"""

import logging
import sys
import uuid
from typing import TextIO

import structlog


# Per-request INFO lines from these would interleave with the progress line
QUIET_LOGGERS = ("httpx", "httpcore")


def configure_logging(
    level: int = logging.INFO,
    output: TextIO = sys.stderr,
    json_format: bool = True,
) -> None:
    """Route crawl events to ``output``.

    Args:
        level: Minimum level of emitted events.
        output: Stream receiving log lines, stderr so stdout stays
            reserved for command results.
        json_format: One sorted-key JSON object per line when true,
            otherwise a human readable console line.
    """
    renderer: structlog.types.Processor
    if json_format:
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=output.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=output),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=output, level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def start_session(command: str) -> str:
    """Open a crawl session in the logging context.

    Args:
        command: Name of the command driving the session.

    Returns:
        The new session id.
    """
    session_id = str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(session_id=session_id, command=command)
    return session_id


def end_session() -> None:
    """Drop the session fields from the logging context."""
    structlog.contextvars.unbind_contextvars("session_id", "command")
