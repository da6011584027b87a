"""
Domain exceptions and unified error reporting with Sentry integration.

``pagepulse.validation`` returns ``Invalid`` results for bad bodies; the API
layer raises them as ``PayloadValidationError``, rendered as a 400.
Everything unexpected goes through ``capture_exception``, which always
logs through structlog and forwards to Sentry when it has been initialised.

Usage:
    try:
        ...
    except Exception as exc:
        capture_exception(exc, context={"page_id": page_id})
        raise
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import sentry_sdk
import structlog
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from pagepulse.core.context import get_context_dict, get_request_id

logger = structlog.get_logger(__name__)

__all__ = [
    "PagePulseError",
    "PageviewNotFound",
    "PayloadValidationError",
    "init_sentry",
    "capture_exception",
]

_sentry_initialized: bool = False


class PagePulseError(Exception):
    """Base class for domain errors."""


class PageviewNotFound(PagePulseError):
    """An engagement append referenced a page_id with no stored pageview."""

    def __init__(self, page_id: str):
        super().__init__(f"Pageview {page_id} does not exist")
        self.page_id = page_id


class PayloadValidationError(PagePulseError):
    """A request body failed validation; ``errors`` holds per-field details."""

    def __init__(self, errors):
        super().__init__("Validation failed")
        self.errors = list(errors)


def init_sentry(
    dsn: str,
    environment: str = "production",
    traces_sample_rate: float = 0.0,
    release: Optional[str] = None,
) -> bool:
    """
    Initialize Sentry SDK for error tracking.

    Returns:
        True if initialization successful, False otherwise
    """
    global _sentry_initialized

    if not dsn:
        logger.info("Sentry disabled (no DSN provided)")
        return False

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            traces_sample_rate=traces_sample_rate,
            release=release or os.environ.get("GIT_COMMIT_SHA"),
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            # Client IPs must never leave the process
            send_default_pii=False,
            before_send=_before_send,
        )
    except Exception as e:
        logger.error("Failed to initialize Sentry", error=str(e))
        return False

    _sentry_initialized = True
    logger.info("Sentry initialized", environment=environment)
    return True


def _before_send(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if "request" in event:
        url = event["request"].get("url", "")
        if "/health" in url:
            return None
        # Forwarded-for chains carry the visitor IP
        headers = event["request"].get("headers") or {}
        for name in list(headers):
            if name.lower() in ("x-forwarded-for", "x-real-ip"):
                headers.pop(name)

    request_id = get_request_id()
    if request_id:
        event.setdefault("tags", {})["request_id"] = request_id
    return event


def capture_exception(
    exc: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error",
) -> Optional[str]:
    """
    Capture an exception with Sentry and structured logging.

    Args:
        exc: Exception to capture
        context: Additional context dict (e.g., {"page_id": "c..."})
        level: Severity level (warning, error, fatal)

    Returns:
        Sentry event ID or None if not sent
    """
    enriched_context = {
        **get_context_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "error_type": type(exc).__name__,
        **(context or {}),
    }

    logger.error("Exception captured", exc_info=exc, **enriched_context)

    if not _sentry_initialized:
        return None

    try:
        with sentry_sdk.push_scope() as scope:
            for key, value in enriched_context.items():
                if value is not None:
                    scope.set_extra(key, value)
            scope.level = level
            return sentry_sdk.capture_exception(exc)
    except Exception as e:
        logger.warning("Failed to send exception to Sentry", error=str(e))
        return None
