"""Structured logging for the billing engine.

Every module logs through ``get_logger(__name__)`` with snake_case event names
and keyword context. Payment event handling binds ``event_id`` with
``structlog.contextvars`` so nested calls inherit it.
"""

import logging
import sys

import structlog

from creditcore.settings import settings

# Chatty third-party loggers kept at WARNING unless running at DEBUG
QUIET_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore")


def _add_app_name(logger, method_name, event_dict):
    event_dict.setdefault("app", settings.app_name)
    return event_dict


def configure_logging(log_level: str | None = None, log_format: str | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: Overrides ``settings.log_level``
        log_format: ``json`` or ``console``, overrides ``settings.log_format``
    """
    level_name = (log_level or settings.log_level).upper()
    level = logging.getLevelName(level_name)
    log_format = log_format or settings.log_format

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        _add_app_name,
    ]

    if log_format == "json":
        processors = shared_processors + [
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    if level_name != "DEBUG":
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
