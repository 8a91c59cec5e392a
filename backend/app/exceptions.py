"""Domain exceptions for lead ingestion and attribution reporting.

Batch operations never raise these for a single bad item; they are for
whole-operation failures that the caller has to handle.
"""

from typing import Optional


class LeadAttributionError(Exception):
    """Base exception for lead/attribution errors."""
    pass


class LeadNotFoundError(LeadAttributionError):
    """Raised when a lead does not exist within the given owner scope."""

    def __init__(self, owner_uid: str, lead_id: str):
        super().__init__("Lead not found")
        self.owner_uid = owner_uid
        self.lead_id = lead_id


class InvalidDateRangeError(LeadAttributionError, ValueError):
    """Raised when a report date cannot be parsed or the range is inverted."""

    def __init__(self, message: str, value: Optional[str] = None):
        super().__init__(message)
        self.value = value


class LeadStoreError(LeadAttributionError):
    """Raised when the persistence layer fails.

    The session has already been rolled back when this is raised, so the
    caller can keep using it for the next item in a batch.
    """
    pass
