"""Logging configuration for the commerce domain.

structlog renders on top of the standard library root logger: JSON in
production and staging, coloured console output elsewhere. Payment secrets
never reach a log line; see ``redact_secrets``.
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Any

import structlog

LEVELS_BY_ENVIRONMENT = {
    "production": "INFO",
    "staging": "INFO",
    "development": "DEBUG",
    "test": "WARNING",
}

REDACTED_KEYS = frozenset({"client_secret", "payment_client_secret", "signature", "stripe_signature", "api_key"})


def _environment() -> str:
    return (os.getenv("ENVIRONMENT") or os.getenv("PROTEAN_ENV") or "development").lower()


def get_log_level() -> str:
    """Get log level based on environment. ``LOG_LEVEL`` wins when set."""
    return os.getenv("LOG_LEVEL", LEVELS_BY_ENVIRONMENT.get(_environment(), "INFO"))


def redact_secrets(logger, method_name, event_dict):
    """structlog processor masking values of keys in ``REDACTED_KEYS``."""
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def setup_stdlib_logging(stream=None) -> None:
    log_level = get_log_level()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = []

    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.setLevel(log_level)
    root_logger.addHandler(console_handler)

    log_dir = os.getenv("LOG_DIR")
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        # Settlement errors need manual follow-up, so they get their own file
        error_handler = logging.handlers.RotatingFileHandler(
            filename=Path(log_dir) / "commerce_error.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        error_handler.setLevel(logging.ERROR)
        root_logger.addHandler(error_handler)

    for noisy in ("protean", "stripe", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def setup_structlog(stream=None) -> None:
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if _environment() in ("production", "staging"):
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=(stream or sys.stdout).isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging(stream=None) -> None:
    """Configure all logging for the application.

    Log lines go to ``stream``, stdout by default. Commands whose stdout is
    machine-readable output pass ``sys.stderr``.
    """
    setup_stdlib_logging(stream)
    setup_structlog(stream)


def add_context(**kwargs: Any) -> None:
    """Bind values (request path, order id, ...) onto every subsequent log line."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
