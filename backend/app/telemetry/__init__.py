"""
Telemetry Module
================

Observability for the lead attribution backend.

Components:
- sentry.py: Error tracking (batch item failures, whole-operation errors)

Environment Variables:
- SENTRY_DSN: Sentry project DSN
- ENVIRONMENT: Environment name

Usage:
    from app.telemetry import init_observability

    # Initialize on process startup
    init_observability()
"""

from app.telemetry.sentry import (
    init_sentry,
    set_owner_context,
    capture_exception,
)


def init_observability() -> dict:
    """
    Initialize all observability tools.

    Returns:
        Dict with status of each tool initialization:
        {"sentry": True/False}
    """
    return {
        "sentry": init_sentry(),
    }


__all__ = [
    "init_observability",
    "init_sentry",
    "set_owner_context",
    "capture_exception",
]
