"""Logging configuration for the sales domain.

stdlib logging carries the handlers (console plus rotating files under
``logs/``); structlog sits on top and renders JSON in production-like
environments and a colourised console otherwise.
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path

import structlog

_LEVELS_BY_ENV = {
    "production": "INFO",
    "staging": "INFO",
    "development": "DEBUG",
    "test": "WARNING",
}

_MAX_LOG_BYTES = 10 * 1024 * 1024


def _current_env() -> str:
    return (os.getenv("ENVIRONMENT") or os.getenv("PROTEAN_ENV") or "development").lower()


def get_log_level() -> str:
    """Resolve the log level: LOG_LEVEL wins, otherwise derived from the environment."""
    return os.getenv("LOG_LEVEL", _LEVELS_BY_ENV.get(_current_env(), "INFO")).upper()


def _rotating_handler(path: Path, level) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        filename=path,
        maxBytes=_MAX_LOG_BYTES,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(level)
    return handler


def setup_stdlib_logging(log_dir: str | Path = "logs") -> None:
    level = get_log_level()
    log_path = Path(log_dir)
    log_path.mkdir(exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = []

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    root_logger.addHandler(console)
    root_logger.addHandler(_rotating_handler(log_path / "sales.log", level))
    root_logger.addHandler(_rotating_handler(log_path / "sales_error.log", logging.ERROR))

    # Provider SDK and HTTP client chatter
    for noisy in ("stripe", "httpx", "httpcore", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def setup_structlog() -> None:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if _current_env() in ("production", "staging"):
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.RichTracebackFormatter(show_locals=False, max_frames=3),
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging(log_dir: str | Path = "logs") -> None:
    """Configure stdlib and structlog logging for the process."""
    setup_stdlib_logging(log_dir)
    setup_structlog()


def bind_delivery(event_id: str, event_type: str) -> None:
    """Attach webhook delivery identifiers to every log line until cleared."""
    structlog.contextvars.bind_contextvars(event_id=event_id, event_type=event_type)


def clear_delivery() -> None:
    structlog.contextvars.unbind_contextvars("event_id", "event_type")
