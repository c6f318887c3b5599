"""
Database module for the trip backend.

This module provides SQLAlchemy persistence for trips, rosters and
passenger statuses. It is enabled by setting USE_DATABASE=true.
"""

from .database import (
    SessionLocal,
    engine,
    Base,
    USE_DATABASE,
    is_database_available,
)
from .models import (
    TripModel,
    StudentModel,
    PassengerStatusModel,
    ProfileModel,
    AuditEntryModel,
    BulkOperationModel,
)
from . import crud

__all__ = [
    "SessionLocal",
    "engine",
    "Base",
    "USE_DATABASE",
    "is_database_available",
    "TripModel",
    "StudentModel",
    "PassengerStatusModel",
    "ProfileModel",
    "AuditEntryModel",
    "BulkOperationModel",
    "crud",
]
