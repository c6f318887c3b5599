"""
Error taxonomy for trip, passenger and check-in operations.
"""

from typing import Any, Dict, Optional


class TripCoreError(Exception):
    """Base class for errors raised by the trip core."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class TripNotFound(TripCoreError):
    """The referenced trip does not exist in the store."""


class InvalidStateTransition(TripCoreError):
    """A trip or passenger status change is not allowed from the current state."""


class UnknownStudent(TripCoreError):
    """The student is not a roster member of the trip."""


class NotAuthorized(TripCoreError):
    """The actor lacks supervisory rights on the trip."""


class UnknownCode(TripCoreError):
    """A scanned payload could not be resolved to a roster student."""


class EmptyBatch(TripCoreError):
    """A bulk submission contained no operations."""


class StatusConflict(TripCoreError):
    """A passenger status write lost a compare-and-swap on the record version."""


class DirectionsUnavailable(TripCoreError):
    """The external directions service failed; callers fall back to straight-line distance."""
