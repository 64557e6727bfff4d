"""Logging configuration module.

structlog renders both its own events and records from stdlib loggers, so
third-party libraries end up in the same stream as application events.
"""

import logging
from typing import cast

import structlog
from structlog import dev, processors, stdlib
from structlog.contextvars import merge_contextvars
from structlog.stdlib import BoundLogger
from structlog.types import Processor

LOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

# httpx logs every request at INFO; node and registry polling would drown
# the application events
NOISY_LOGGERS = ("httpx", "httpcore", "asyncio")


def _shared_processors() -> list[Processor]:
    return [
        merge_contextvars,
        stdlib.add_logger_name,
        stdlib.add_log_level,
        stdlib.PositionalArgumentsFormatter(),
        processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S.%f"),
        processors.dict_tracebacks,
    ]


def configure_logging(
    testing: bool = False, level: str = "info", json_logs: bool = True
) -> None:
    """Configure structured logging for the application.

    Args:
        testing: Whether the application is running in test mode
        level: Log level name (debug, info, warning, error, critical)
        json_logs: Render JSON lines instead of key/value pairs
    """
    log_level = LOG_LEVELS.get(level.lower(), logging.INFO)
    use_json = json_logs and not testing
    shared = _shared_processors()

    structlog.configure(
        processors=[
            stdlib.filter_by_level,
            *shared,
            processors.format_exc_info,
            processors.JSONRenderer() if use_json else processors.KeyValueRenderer(),
        ],
        context_class=dict,
        logger_factory=stdlib.LoggerFactory(),
        wrapper_class=stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setLevel(log_level)
    handler.setFormatter(
        stdlib.ProcessorFormatter(
            processor=processors.JSONRenderer() if use_json else dev.ConsoleRenderer(),
            foreign_pre_chain=shared,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level)

    # Own handler on the package logger so records are not rendered twice
    app_logger = logging.getLogger("truthchain")
    app_logger.handlers = [handler]
    app_logger.setLevel(log_level)
    app_logger.propagate = False

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def get_logger(name: str | None = None) -> BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Optional logger name, usually ``__name__``
    """
    logger = structlog.get_logger(name) if name else structlog.get_logger()
    return cast(BoundLogger, logger)


def get_request_logger(request_id: str | None = None) -> BoundLogger:
    """Get a logger with request context.

    Args:
        request_id: Optional request ID to bind to logger

    Returns:
        Configured logger with request context
    """
    logger: BoundLogger = get_logger()
    if request_id:
        logger = logger.bind(request_id=request_id)
    return logger
