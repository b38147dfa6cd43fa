"""Structured logging setup shared by the API and the CLI."""

import logging
import sys

import structlog

from refledger.settings import settings

# Chatty third-party loggers, kept at WARNING unless we are debugging
_NOISY_LOGGERS = ("sqlalchemy.engine", "passlib", "multipart")


def _renderer():
    if settings.log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def configure_logging() -> None:
    """Configure structlog and the standard library root logger.

    Events are snake_case names with keyword context, e.g.
    ``logger.info("referral_converted", referral_id=3)``. Context bound
    with ``structlog.contextvars`` (such as the authenticated user) is
    merged into every event of the current request.
    """
    level = logging.getLevelName(settings.log_level.upper())
    timestamp_fmt = "iso" if settings.log_format == "json" else "%Y-%m-%d %H:%M:%S"

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt=timestamp_fmt, utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    if level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)
