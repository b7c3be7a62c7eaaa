"""
Error capture: structured log always, Sentry when a DSN is configured.

sentry-sdk is an optional extra (``pip install beatgen[sentry]``); without it
init_sentry() logs a warning and every capture is log-only.

Usage:
    init_sentry(settings.SENTRY_DSN, environment=settings.ENVIRONMENT)

    capture_exception(exc, context={"template_id": 12})
    capture_message("Circuit MusicService opened", level="warning")

Both enrich the event with the structlog contextvars bound at the call site
(``run_id`` inside a scheduler firing).
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

from beatgen.core.logging_config import SENSITIVE_KEYS

logger = structlog.get_logger(__name__)

__all__ = [
    "init_sentry",
    "is_sentry_enabled",
    "capture_exception",
    "capture_message",
]

_sentry_initialized: bool = False


def _scrub_event(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Drop credential values from extras before the event leaves the process."""
    extra = event.get("extra") or {}
    for key in SENSITIVE_KEYS.intersection(extra):
        extra[key] = "[Filtered]"
    return event


def init_sentry(
    dsn: str,
    environment: str = "production",
    traces_sample_rate: float = 0.0,
    release: Optional[str] = None,
) -> bool:
    """
    Initialize Sentry for the worker process.

    Returns:
        True if Sentry is now active, False if disabled or unavailable
    """
    global _sentry_initialized

    if not dsn:
        logger.info("Sentry disabled (no DSN provided)")
        return False

    try:
        import sentry_sdk
        from sentry_sdk.integrations.logging import LoggingIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
    except ImportError:
        logger.warning("Sentry SDK not installed, error tracking disabled")
        return False

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            traces_sample_rate=traces_sample_rate,
            release=release,
            integrations=[
                SqlalchemyIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            ignore_errors=[KeyboardInterrupt, SystemExit],
            before_send=_scrub_event,
        )
    except Exception as e:
        logger.error("Failed to initialize Sentry", error=str(e))
        return False

    _sentry_initialized = True
    logger.info("Sentry initialized", environment=environment, release=release)
    return True


def is_sentry_enabled() -> bool:
    return _sentry_initialized


def _enrich(context: Optional[Dict[str, Any]], **extra: Any) -> Dict[str, Any]:
    return {
        **structlog.contextvars.get_contextvars(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **extra,
        **(context or {}),
    }


def _send(capture, level: str, extras: Dict[str, Any], tags: Optional[Dict[str, str]]) -> Optional[str]:
    """Run a sentry capture call inside a scope carrying extras, tags and level."""
    if not _sentry_initialized:
        return None

    try:
        import sentry_sdk

        with sentry_sdk.new_scope() as scope:
            for key, value in extras.items():
                if value is not None:
                    scope.set_extra(key, value)
            for key, value in (tags or {}).items():
                scope.set_tag(key, value)
            scope.set_level(level)
            return capture(sentry_sdk)
    except Exception as e:
        logger.warning("Failed to send event to Sentry", error=str(e))
        return None


def capture_exception(
    exc: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error",
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Log an exception and forward it to Sentry.

    Returns:
        Sentry event ID, or None when Sentry is off
    """
    extras = _enrich(context, error_type=type(exc).__name__)
    getattr(logger, level, logger.error)("Exception captured", exc_info=exc, **extras)
    return _send(lambda sdk: sdk.capture_exception(exc), level, extras, tags)


def capture_message(
    message: str,
    level: str = "info",
    context: Optional[Dict[str, Any]] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """Record a non-exception event, such as a breaker opening."""
    extras = _enrich(context)
    getattr(logger, level, logger.info)(message, **extras)
    return _send(lambda sdk: sdk.capture_message(message, level=level), level, extras, tags)
