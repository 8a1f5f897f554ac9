"""Structured logging for AgilePM.

structlog on top of the standard library: JSON lines in production,
colored console output in development. Webhook secrets and signatures
are masked before any renderer sees them.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from structlog.typing import Processor, WrappedLogger

_configured = False

# Never rendered in clear text
SENSITIVE_KEYS = frozenset({"secret", "signature", "authorization", "auth_secret_key"})
REDACTED = "***"

# httpx logs every request at INFO, one line per delivery attempt
NOISY_LOGGERS = ("httpx", "httpcore")


def redact_secrets(
    _logger: WrappedLogger, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask values of sensitive keys in a log event."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def configure_logging(
    level: str = "INFO",
    format: str = "json",
) -> None:
    """Configure structured logging for AgilePM.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        format: "json" for production, "text" for development.

    Example:
        ```python
        from agilepm.logging import configure_logging, get_logger

        configure_logging(level="DEBUG", format="text")
        get_logger(__name__).info("Webhook API started", env="development")
        ```
    """
    global _configured

    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if format.lower() == "json":
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, configuring defaults on first use."""
    if not _configured:
        configure_logging()

    return structlog.get_logger(name)  # type: ignore[no-any-return]


def bind_context(**kwargs: object) -> None:
    """Bind context variables to all subsequent log messages.

    Request handlers bind ``company_id`` and ``user_id`` here so every
    line logged while serving the request carries them.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


def unbind_context(*keys: str) -> None:
    """Remove specific keys from the logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


@contextmanager
def log_context(**kwargs: object) -> Iterator[None]:
    """Bind context for the duration of a block, restoring it afterwards.

    Example:
        ```python
        with log_context(delivery_id=record.id, subscription_id=sub.id):
            logger.info("Posting webhook")
        ```
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield


logger = get_logger("agilepm")
