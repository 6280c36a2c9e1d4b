"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import sys

import structlog

# Chatty third-party loggers (stdlib logging) kept at WARNING unless debugging.
_LIBRARY_LOGGERS = ("apscheduler", "httpx", "httpcore", "PIL")


def setup_logging(level: str = "INFO", fmt: str = "console") -> None:
    """Configure structlog for the session.

    ``fmt`` selects the renderer: ``console`` for humans, ``json`` for log
    shippers. Library loggers go to the same stream through stdlib logging.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    renderer = (
        structlog.processors.JSONRenderer()
        if fmt.lower() == "json"
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(stream=sys.stderr, level=log_level, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    library_level = log_level if log_level <= logging.DEBUG else logging.WARNING
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named logger instance."""
    return structlog.get_logger(name)
