"""
Structured logging configuration.

Provides:
- JSON formatted logs for production (ELK, CloudWatch, etc.)
- Human-readable logs for development
- Request context (request id, user, scope, client ip)
- Redaction of credentials, including plaintext API keys embedded in values
"""

import logging
import re
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from agencyhub.config import settings

REDACTED = "***REDACTED***"

SENSITIVE_KEYS = {
    "password", "secret", "token", "authorization",
    "api_key", "hash", "credential",
}

# Any plaintext key, wherever it appears in a string value
_API_KEY_PATTERN = re.compile(r"\b[a-z]{1,6}_[0-9a-f]{64}\b")


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add environment, service name and version to log entries."""
    event_dict["environment"] = settings.environment
    event_dict["service"] = settings.app_name
    event_dict["version"] = settings.app_version
    return event_dict


def add_request_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add request context from contextvars (set by middleware)."""
    from agencyhub.core.context import get_request_context

    for key, value in get_request_context().items():
        event_dict.setdefault(key, value)

    return event_dict


def _scrub(value: Any) -> Any:
    if isinstance(value, str):
        return _API_KEY_PATTERN.sub(REDACTED, value)
    if isinstance(value, dict):
        return {k: _scrub(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_scrub(v) for v in value)
    return value


def censor_sensitive_data(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Censor sensitive information from logs.

    Fields whose name looks sensitive are replaced outright; every other
    string value is scanned for plaintext API keys.
    """
    for key in list(event_dict.keys()):
        if any(sensitive in key.lower() for sensitive in SENSITIVE_KEYS):
            event_dict[key] = REDACTED
        else:
            event_dict[key] = _scrub(event_dict[key])

    return event_dict


def setup_logging() -> None:
    """
    Configure application-wide structured logging.

    Production: JSON logs to stdout (for log aggregation)
    Development: Colorized console logs (human-readable)
    """
    log_level = getattr(logging, settings.log_level.upper())

    shared_processors: list[Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.contextvars.merge_contextvars,
        add_app_context,
        add_request_context,
        censor_sensitive_data,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("passlib").setLevel(logging.ERROR)

    logger = structlog.get_logger(__name__)
    logger.info(
        "logging_configured",
        log_level=settings.log_level,
        log_format=settings.log_format,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("api_key_created", key_id=record.id)
    """
    return structlog.get_logger(name)
