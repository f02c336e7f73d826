"""Structured logging setup on top of structlog.

Library modules obtain loggers with ``structlog.get_logger(__name__)`` and log an
event name followed by key/value context. Nothing is configured at import time;
applications call :func:`configure_logging` once at startup.
"""

from __future__ import annotations

import logging
import sys
from typing import IO, Final, Literal

import structlog

LogFormat = Literal["json", "console"]

LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
LOG_FORMATS: Final[tuple[str, ...]] = ("json", "console")


def configure_logging(
    level: int | str = "INFO",
    fmt: LogFormat = "json",
    *,
    stream: IO[str] | None = None,
) -> None:
    """Configure structlog processors and the minimum level for the process."""

    numeric_level = _parse_log_level(level)
    if fmt not in LOG_FORMATS:
        allowed = ", ".join(LOG_FORMATS)
        raise ValueError(f"log format must be one of: {allowed}; got {fmt!r}")

    renderer: structlog.typing.Processor
    if fmt == "json":
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stderr),
        cache_logger_on_first_use=False,
    )


def reset_logging() -> None:
    """Restore structlog defaults (used by tests and CLI teardown)."""

    structlog.reset_defaults()


def _parse_log_level(level: int | str) -> int:
    if isinstance(level, bool):
        raise ValueError("log level must be an int or level name")
    if isinstance(level, int):
        return level
    normalized = level.strip().upper()
    if normalized not in LOG_LEVELS:
        allowed = ", ".join(LOG_LEVELS)
        raise ValueError(f"log level must be one of: {allowed}; got {level!r}")
    return int(logging.getLevelName(normalized))


__all__ = ["LOG_FORMATS", "LOG_LEVELS", "LogFormat", "configure_logging", "reset_logging"]
