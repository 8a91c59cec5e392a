"""
Sentry Error Tracking
=====================

Centralized error tracking using Sentry.

Related files:
- app/cli.py: Initializes Sentry on startup
- app/services/lead_import_service.py: Reports per-lead import failures
- app/services/shopify_conversion_service.py: Reports per-order failures

Environment Variables:
- SENTRY_DSN: Sentry project DSN (required for Sentry to work)
- ENVIRONMENT: Environment name (production, staging, development)
- RELEASE_VERSION: Release identifier (optional, set via CI/CD)
"""

from __future__ import annotations

import os
import logging
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from app.deps import get_settings

logger = logging.getLogger(__name__)


def get_sentry_dsn() -> Optional[str]:
    """Get Sentry DSN from settings.

    Returns:
        DSN string if configured, None otherwise.
    """
    return get_settings().SENTRY_DSN


def init_sentry() -> bool:
    """
    Initialize the Sentry SDK.

    Should be called once during process startup.

    Returns:
        True if Sentry was initialized successfully, False otherwise.
    """
    dsn = get_sentry_dsn()
    if not dsn:
        return False

    environment = get_settings().ENVIRONMENT

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            integrations=[
                SqlalchemyIntegration(),
                LoggingIntegration(
                    level=logging.INFO,        # Capture INFO+ as breadcrumbs
                    event_level=logging.ERROR,  # Send ERROR+ as events
                ),
            ],
            traces_sample_rate=0.1,
            # Lead payloads carry names, emails and phones
            send_default_pii=False,
            release=os.environ.get("RELEASE_VERSION"),
        )

        logger.debug(f"[SENTRY] Initialized for {environment} environment")
        return True

    except Exception as e:
        logger.error(f"[SENTRY] Failed to initialize: {e}")
        return False


def set_owner_context(owner_uid: str) -> None:
    """Tag all subsequent events with the owner being processed."""
    if not sentry_sdk.is_initialized():
        return
    sentry_sdk.set_tag("owner_uid", owner_uid)


def capture_exception(exception: Exception, extra: Optional[dict] = None) -> None:
    """
    Manually capture an exception to Sentry.

    Use this for exceptions that are caught and handled (a failed item in a
    batch) but should still be tracked for monitoring purposes.

    Args:
        exception: The exception to capture
        extra: Additional context to attach to the event

    Example:
        try:
            process(order)
        except Exception as e:
            capture_exception(e, extra={"order_id": order.id})
            details.append(error_detail(order, e))
    """
    if not sentry_sdk.is_initialized():
        return

    try:
        with sentry_sdk.new_scope() as scope:
            if extra:
                for key, value in extra.items():
                    scope.set_extra(key, value)
            sentry_sdk.capture_exception(exception)
    except Exception as e:
        logger.error(f"[SENTRY] Failed to capture exception: {e}")
