"""
structlog setup for the worker and scripts.

Production (BEATGEN_ENV=production) renders one JSON object per line;
anything else gets the console renderer. Every event carries the contextvars
bound at the time (the scheduler binds ``run_id`` for the span of a firing),
and keys that look like credentials are masked before rendering.

Usage:
    from beatgen.core.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("Credential selected", credential_id=3, quota_remaining=120)

Production:
    {"credential_id": 3, "quota_remaining": 120, "run_id": "5f0c2e9a41d3",
     "event": "Credential selected", "level": "info", "timestamp": "..."}

Components take a ``logger`` argument and fall back to
``get_logger(__name__)`` so tests can hand them a mock.
"""

import logging
import os
import sys
from typing import Any, MutableMapping

import structlog

IS_PRODUCTION = os.getenv("BEATGEN_ENV") == "production"
IS_TEST = "pytest" in sys.modules

LOG_LEVEL = logging.getLevelName(os.getenv("BEATGEN_LOG_LEVEL", "INFO").upper())

# Event keys whose values are never rendered in full
SENSITIVE_KEYS = frozenset({"secret", "api_key", "authorization", "token"})

NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "apscheduler")


def redact_secrets(logger: Any, method_name: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Mask credential-like values that were logged by mistake."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, str) and "..." not in value:
            event_dict[key] = value[:4] + "..."
    return event_dict


def _renderer(production: bool) -> list[Any]:
    if production:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=not IS_TEST)]


def configure_logging(production: bool = IS_PRODUCTION, level: int = LOG_LEVEL) -> None:
    if not isinstance(level, int):
        level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            *_renderer(production),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # APScheduler and SQLAlchemy log through stdlib logging
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


configure_logging()
