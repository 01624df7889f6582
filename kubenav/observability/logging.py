"""Structured logging configuration using structlog."""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, TextIO

import structlog

# Client libraries that log every reconnect; kind-level failures are
# reported through our own debug logs instead.
_NOISY_LOGGERS = ("kubernetes_asyncio", "aiohttp", "asyncio")

_log_stream: TextIO | None = None


def setup_logging(level: str = "info", log_file: str | None = None, fmt: str = "text") -> None:
    """Configure structlog for console or JSON output.

    Output goes to stderr unless ``log_file`` is given, in which case it is
    appended to that file so an interactive terminal stays clean.
    """
    global _log_stream

    log_level = getattr(logging, level.upper(), logging.INFO)

    if _log_stream is not None and _log_stream not in (sys.stderr, sys.stdout):
        _log_stream.close()
    _log_stream = open(log_file, "a", encoding="utf-8") if log_file else sys.stderr  # noqa: SIM115

    renderers: list[Any]
    if fmt == "json":
        renderers = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=False)]

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            *renderers,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=_log_stream),
        cache_logger_on_first_use=False,
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.ERROR)


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Get a logger bound with a component name."""
    return structlog.get_logger(component=component)  # type: ignore[no-any-return]


@contextmanager
def log_duration(logger: Any, operation: str, **fields: Any) -> Iterator[None]:
    """Log how long the wrapped block took, at debug level."""
    start = time.monotonic()
    try:
        yield
    finally:
        duration_ms = round((time.monotonic() - start) * 1000, 1)
        logger.debug("operation timed", operation=operation, duration_ms=duration_ms, **fields)
