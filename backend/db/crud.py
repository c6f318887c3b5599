"""
CRUD operations for the trip database.

Provides functions to create, read, update, and delete:
- Trips and rosters
- Students
- Passenger statuses (replace semantics)
- Profiles, audit entries and bulk operations

All functions take a Session and return domain models from models.py.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from models import (
    ActorProfile,
    AuditEntry,
    BulkOperation,
    Coordinates,
    PassengerStatus,
    StudentStop,
    Trip,
)
from . import models

logger = logging.getLogger(__name__)


def _coords(lat: Optional[float], lon: Optional[float]) -> Optional[Coordinates]:
    if lat is None or lon is None:
        return None
    return Coordinates(lat=lat, lon=lon)


# =============================================================================
# Trip CRUD
# =============================================================================

def _trip_to_domain(row: models.TripModel) -> Trip:
    return Trip(
        id=row.id,
        school_id=row.school_id,
        mode=row.mode,
        status=row.status,
        driver_id=row.driver_id,
        supervisor_id=row.supervisor_id,
        allow_driver_as_supervisor=bool(row.allow_driver_as_supervisor),
        roster=list(row.roster or []),
        school_location=_coords(row.school_lat, row.school_lon),
        driver_position=_coords(row.driver_lat, row.driver_lon),
        start_position=_coords(row.start_lat, row.start_lon),
        bus_id=row.bus_id,
        route_id=row.route_id,
        created_at=row.created_at or datetime.utcnow(),
        started_at=row.started_at,
        ended_at=row.ended_at,
        last_position_at=row.last_position_at,
    )


def get_trip(db: Session, trip_id: str) -> Optional[Trip]:
    row = db.get(models.TripModel, trip_id)
    return _trip_to_domain(row) if row else None


def list_trips(db: Session, school_id: Optional[str] = None) -> List[Trip]:
    query = db.query(models.TripModel)
    if school_id is not None:
        query = query.filter(models.TripModel.school_id == school_id)
    return [_trip_to_domain(row) for row in query.order_by(desc(models.TripModel.created_at)).all()]


def upsert_trip(db: Session, trip: Trip) -> Trip:
    """
    Create or replace a trip document.

    Args:
        db: Database session
        trip: Full trip document

    Returns:
        The stored trip
    """
    row = db.get(models.TripModel, trip.id)
    if row is None:
        row = models.TripModel(id=trip.id)
        db.add(row)

    row.school_id = trip.school_id
    row.mode = trip.mode.value
    row.status = trip.status.value
    row.driver_id = trip.driver_id
    row.supervisor_id = trip.supervisor_id
    row.allow_driver_as_supervisor = trip.allow_driver_as_supervisor
    row.roster = list(trip.roster)
    row.bus_id = trip.bus_id
    row.route_id = trip.route_id
    row.school_lat = trip.school_location.lat if trip.school_location else None
    row.school_lon = trip.school_location.lon if trip.school_location else None
    row.driver_lat = trip.driver_position.lat if trip.driver_position else None
    row.driver_lon = trip.driver_position.lon if trip.driver_position else None
    row.start_lat = trip.start_position.lat if trip.start_position else None
    row.start_lon = trip.start_position.lon if trip.start_position else None
    row.created_at = trip.created_at
    row.started_at = trip.started_at
    row.ended_at = trip.ended_at
    row.last_position_at = trip.last_position_at

    db.commit()
    db.refresh(row)
    logger.debug(f"Saved trip {row.id} ({row.status})")
    return _trip_to_domain(row)


def update_trip_position(db: Session, trip_id: str, position: Coordinates, at: datetime) -> Optional[Trip]:
    row = db.get(models.TripModel, trip_id)
    if row is None:
        return None
    row.driver_lat = position.lat
    row.driver_lon = position.lon
    row.last_position_at = at
    db.commit()
    db.refresh(row)
    return _trip_to_domain(row)


_TRIP_POINT_COLUMNS = {
    "school_location": ("school_lat", "school_lon"),
    "driver_position": ("driver_lat", "driver_lon"),
    "start_position": ("start_lat", "start_lon"),
}


def update_trip_fields(db: Session, trip_id: str, fields: Dict[str, Any]) -> Optional[Trip]:
    """
    Update the named trip fields in place, leaving every other column as stored.

    Coordinates fields map onto their lat/lon column pairs; enums are stored
    by value.
    """
    row = db.get(models.TripModel, trip_id)
    if row is None:
        return None
    for name, value in fields.items():
        if name in _TRIP_POINT_COLUMNS:
            lat_column, lon_column = _TRIP_POINT_COLUMNS[name]
            setattr(row, lat_column, value.lat if value else None)
            setattr(row, lon_column, value.lon if value else None)
        elif isinstance(value, Enum):
            setattr(row, name, value.value)
        else:
            setattr(row, name, value)
    db.commit()
    db.refresh(row)
    logger.debug(f"Updated trip {trip_id}: {', '.join(sorted(fields))}")
    return _trip_to_domain(row)


# =============================================================================
# Student CRUD
# =============================================================================

def _student_to_domain(row: models.StudentModel) -> StudentStop:
    return StudentStop(
        id=row.id,
        name=row.name,
        lat=row.lat,
        lon=row.lon,
        school_id=row.school_id,
        contact_name=row.contact_name,
        contact_phone=row.contact_phone,
        photo_url=row.photo_url,
    )


def upsert_student(db: Session, student: StudentStop) -> StudentStop:
    row = db.get(models.StudentModel, student.id)
    if row is None:
        row = models.StudentModel(id=student.id)
        db.add(row)
    row.name = student.name
    row.lat = student.lat
    row.lon = student.lon
    row.school_id = student.school_id
    row.contact_name = student.contact_name
    row.contact_phone = student.contact_phone
    row.photo_url = student.photo_url
    db.commit()
    return student


def get_students(db: Session, student_ids: List[str]) -> List[StudentStop]:
    """Students in the requested order; unknown ids are skipped."""
    if not student_ids:
        return []
    rows = db.query(models.StudentModel).filter(models.StudentModel.id.in_(student_ids)).all()
    by_id = {row.id: row for row in rows}
    return [_student_to_domain(by_id[sid]) for sid in student_ids if sid in by_id]


# =============================================================================
# Passenger status CRUD
# =============================================================================

def _status_to_domain(row: models.PassengerStatusModel) -> PassengerStatus:
    return PassengerStatus(
        trip_id=row.trip_id,
        student_id=row.student_id,
        status=row.status,
        method=row.method,
        timestamp=row.timestamp,
        position=_coords(row.lat, row.lon),
        updated_by=row.updated_by,
        version=row.version or 0,
    )


def _status_row(db: Session, trip_id: str, student_id: str) -> Optional[models.PassengerStatusModel]:
    return (
        db.query(models.PassengerStatusModel)
        .filter(
            models.PassengerStatusModel.trip_id == trip_id,
            models.PassengerStatusModel.student_id == student_id,
        )
        .first()
    )


def get_passenger_status(db: Session, trip_id: str, student_id: str) -> Optional[PassengerStatus]:
    row = _status_row(db, trip_id, student_id)
    return _status_to_domain(row) if row else None


def list_passenger_statuses(db: Session, trip_id: str) -> List[PassengerStatus]:
    rows = (
        db.query(models.PassengerStatusModel)
        .filter(models.PassengerStatusModel.trip_id == trip_id)
        .all()
    )
    return [_status_to_domain(row) for row in rows]


def replace_passenger_status(db: Session, record: PassengerStatus) -> PassengerStatus:
    """
    Replace the single status row for (trip_id, student_id).

    The unique constraint on the pair keeps exactly one current row.
    """
    row = _status_row(db, record.trip_id, record.student_id)
    if row is None:
        row = models.PassengerStatusModel(trip_id=record.trip_id, student_id=record.student_id)
        db.add(row)
    row.status = record.status.value
    row.method = record.method.value
    row.timestamp = record.timestamp
    row.lat = record.position.lat if record.position else None
    row.lon = record.position.lon if record.position else None
    row.updated_by = record.updated_by
    row.version = record.version
    db.commit()
    db.refresh(row)
    return _status_to_domain(row)


# =============================================================================
# Profile CRUD
# =============================================================================

def get_profile(db: Session, user_id: str) -> Optional[ActorProfile]:
    row = db.get(models.ProfileModel, user_id)
    if row is None:
        return None
    return ActorProfile(
        user_id=row.user_id,
        display_name=row.display_name,
        supervisor_mode_enabled=bool(row.supervisor_mode_enabled),
    )


def upsert_profile(db: Session, profile: ActorProfile) -> ActorProfile:
    row = db.get(models.ProfileModel, profile.user_id)
    if row is None:
        row = models.ProfileModel(user_id=profile.user_id)
        db.add(row)
    row.display_name = profile.display_name
    row.supervisor_mode_enabled = profile.supervisor_mode_enabled
    db.commit()
    return profile


# =============================================================================
# Audit CRUD
# =============================================================================

def create_audit_entry(db: Session, entry: AuditEntry) -> AuditEntry:
    db.add(
        models.AuditEntryModel(
            id=entry.id,
            trip_id=entry.trip_id,
            student_id=entry.student_id,
            actor_id=entry.actor_id,
            previous_status=entry.previous_status.value if entry.previous_status else None,
            new_status=entry.new_status.value,
            method=entry.method.value,
            batch_id=entry.batch_id,
            timestamp=entry.timestamp,
            lat=entry.position.lat if entry.position else None,
            lon=entry.position.lon if entry.position else None,
        )
    )
    db.commit()
    return entry


def list_audit_entries(
    db: Session,
    trip_id: str,
    student_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[AuditEntry]:
    query = db.query(models.AuditEntryModel).filter(models.AuditEntryModel.trip_id == trip_id)
    if student_id is not None:
        query = query.filter(models.AuditEntryModel.student_id == student_id)
    query = query.order_by(desc(models.AuditEntryModel.timestamp))
    if limit:
        query = query.limit(limit)
    return [
        AuditEntry(
            id=row.id,
            trip_id=row.trip_id,
            student_id=row.student_id,
            actor_id=row.actor_id,
            previous_status=row.previous_status,
            new_status=row.new_status,
            method=row.method,
            batch_id=row.batch_id,
            timestamp=row.timestamp,
            position=_coords(row.lat, row.lon),
        )
        for row in query.all()
    ]


# =============================================================================
# Bulk operation CRUD
# =============================================================================

def upsert_bulk_operation(db: Session, operation: BulkOperation) -> BulkOperation:
    row = db.get(models.BulkOperationModel, operation.id)
    if row is None:
        row = models.BulkOperationModel(id=operation.id)
        db.add(row)
    row.batch_id = operation.batch_id
    row.trip_id = operation.trip_id
    row.student_id = operation.student_id
    row.action = operation.action.value
    row.status = operation.status.value
    row.error = operation.error
    row.timestamp = operation.timestamp
    db.commit()
    return operation


def list_bulk_operations(db: Session, batch_id: str) -> List[BulkOperation]:
    rows = (
        db.query(models.BulkOperationModel)
        .filter(models.BulkOperationModel.batch_id == batch_id)
        .order_by(models.BulkOperationModel.timestamp)
        .all()
    )
    return [
        BulkOperation(
            id=row.id,
            batch_id=row.batch_id,
            trip_id=row.trip_id,
            student_id=row.student_id,
            action=row.action,
            status=row.status,
            error=row.error,
            timestamp=row.timestamp,
        )
        for row in rows
    ]
