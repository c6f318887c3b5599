"""
Document store for trips, rosters, passenger statuses and check-in records.

The trip core reads and writes through the TripStore interface only. Two
implementations are provided:

- InMemoryTripStore: thread-safe dictionaries, used when the database is
  disabled and in tests.
- SqlTripStore: SQLAlchemy-backed, see db/crud.py.

Single-document writes are atomic. Passenger statuses use replace semantics:
one record per (trip_id, student_id), latest write wins.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session, sessionmaker

from db import crud
from models import (
    ActorProfile,
    AuditEntry,
    BulkOperation,
    Coordinates,
    PassengerStatus,
    StudentStop,
    Trip,
)

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, Dict[str, Any]], None]


class TripStore(ABC):
    """get/set/subscribe interface over trip documents."""

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Subscriber]] = defaultdict(list)
        self._subscribers_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, trip_id: str, callback: Subscriber) -> Callable[[], None]:
        """Register a callback for changes on a trip. Returns an unsubscribe function."""
        with self._subscribers_lock:
            self._subscribers[trip_id].append(callback)

        def _unsubscribe() -> None:
            with self._subscribers_lock:
                callbacks = self._subscribers.get(trip_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscribers.pop(trip_id, None)

        return _unsubscribe

    def _notify(self, trip_id: str, event: str, payload: Dict[str, Any]) -> None:
        with self._subscribers_lock:
            callbacks = list(self._subscribers.get(trip_id, []))
        for callback in callbacks:
            try:
                callback(event, payload)
            except Exception as e:
                logger.error(f"[Store] Subscriber failed for trip {trip_id} ({event}): {e}")

    # ------------------------------------------------------------------
    # Trips
    # ------------------------------------------------------------------

    @abstractmethod
    def get_trip(self, trip_id: str) -> Optional[Trip]: ...

    @abstractmethod
    def _write_trip(self, trip: Trip) -> Trip: ...

    @abstractmethod
    def list_trips(self, school_id: Optional[str] = None) -> List[Trip]: ...

    @abstractmethod
    def _write_trip_position(self, trip_id: str, position: Coordinates, at: datetime) -> Optional[Trip]: ...

    @abstractmethod
    def _write_trip_fields(self, trip_id: str, fields: Dict[str, Any]) -> Optional[Trip]: ...

    def save_trip(self, trip: Trip) -> Trip:
        saved = self._write_trip(trip)
        self._notify(trip.id, "trip", saved.model_dump(mode="json"))
        return saved

    def update_trip(self, trip_id: str, **fields: Any) -> Optional[Trip]:
        """Change only the named trip fields; concurrent position writes survive."""
        updated = self._write_trip_fields(trip_id, fields)
        if updated is not None:
            self._notify(trip_id, "trip", updated.model_dump(mode="json"))
        return updated

    def update_trip_position(self, trip_id: str, position: Coordinates, at: Optional[datetime] = None) -> Optional[Trip]:
        """Persist the driver's live position without touching passenger records."""
        updated = self._write_trip_position(trip_id, position, at or datetime.utcnow())
        if updated is not None:
            self._notify(trip_id, "position", {"lat": position.lat, "lon": position.lon})
        return updated

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------

    @abstractmethod
    def save_student(self, student: StudentStop) -> StudentStop: ...

    @abstractmethod
    def get_students(self, student_ids: Iterable[str]) -> List[StudentStop]:
        """Students in the order requested; unknown ids are skipped."""

    # ------------------------------------------------------------------
    # Passenger statuses
    # ------------------------------------------------------------------

    @abstractmethod
    def get_passenger_status(self, trip_id: str, student_id: str) -> Optional[PassengerStatus]: ...

    @abstractmethod
    def _write_passenger_status(self, record: PassengerStatus) -> PassengerStatus: ...

    @abstractmethod
    def list_passenger_statuses(self, trip_id: str) -> List[PassengerStatus]: ...

    def put_passenger_status(self, record: PassengerStatus) -> PassengerStatus:
        """Replace the current status for (trip, student)."""
        saved = self._write_passenger_status(record)
        self._notify(record.trip_id, "passenger", saved.model_dump(mode="json"))
        return saved

    # ------------------------------------------------------------------
    # Profiles, audit, bulk operations
    # ------------------------------------------------------------------

    @abstractmethod
    def get_profile(self, user_id: str) -> Optional[ActorProfile]: ...

    @abstractmethod
    def save_profile(self, profile: ActorProfile) -> ActorProfile: ...

    @abstractmethod
    def append_audit(self, entry: AuditEntry) -> AuditEntry: ...

    @abstractmethod
    def list_audit(self, trip_id: str, student_id: Optional[str] = None, limit: Optional[int] = None) -> List[AuditEntry]:
        """Newest first."""

    @abstractmethod
    def save_bulk_operation(self, operation: BulkOperation) -> BulkOperation: ...

    @abstractmethod
    def list_bulk_operations(self, batch_id: str) -> List[BulkOperation]: ...


class InMemoryTripStore(TripStore):
    """Thread-safe in-memory store. Returns deep copies so callers never share state."""

    def __init__(self) -> None:
        super().__init__()
        self._trips: Dict[str, Trip] = {}
        self._students: Dict[str, StudentStop] = {}
        self._statuses: Dict[Tuple[str, str], PassengerStatus] = {}
        self._profiles: Dict[str, ActorProfile] = {}
        self._audit: List[AuditEntry] = []
        self._bulk: Dict[str, BulkOperation] = {}
        # Trip documents and passenger documents are locked separately so live
        # position writes never wait on status writes.
        self._trip_lock = threading.RLock()
        self._status_lock = threading.RLock()
        self._misc_lock = threading.RLock()

    def get_trip(self, trip_id: str) -> Optional[Trip]:
        with self._trip_lock:
            trip = self._trips.get(trip_id)
            return trip.model_copy(deep=True) if trip else None

    def _write_trip(self, trip: Trip) -> Trip:
        with self._trip_lock:
            self._trips[trip.id] = trip.model_copy(deep=True)
            return trip.model_copy(deep=True)

    def list_trips(self, school_id: Optional[str] = None) -> List[Trip]:
        with self._trip_lock:
            trips = [t for t in self._trips.values() if school_id is None or t.school_id == school_id]
            trips.sort(key=lambda t: t.created_at, reverse=True)
            return [t.model_copy(deep=True) for t in trips]

    def _write_trip_position(self, trip_id: str, position: Coordinates, at: datetime) -> Optional[Trip]:
        with self._trip_lock:
            trip = self._trips.get(trip_id)
            if trip is None:
                return None
            updated = trip.model_copy(update={"driver_position": position, "last_position_at": at}, deep=True)
            self._trips[trip_id] = updated
            return updated.model_copy(deep=True)

    def _write_trip_fields(self, trip_id: str, fields: Dict[str, Any]) -> Optional[Trip]:
        with self._trip_lock:
            trip = self._trips.get(trip_id)
            if trip is None:
                return None
            updated = trip.model_copy(update=fields, deep=True)
            self._trips[trip_id] = updated
            return updated.model_copy(deep=True)

    def save_student(self, student: StudentStop) -> StudentStop:
        with self._misc_lock:
            self._students[student.id] = student.model_copy(deep=True)
            return student

    def get_students(self, student_ids: Iterable[str]) -> List[StudentStop]:
        with self._misc_lock:
            return [
                self._students[sid].model_copy(deep=True)
                for sid in student_ids
                if sid in self._students
            ]

    def get_passenger_status(self, trip_id: str, student_id: str) -> Optional[PassengerStatus]:
        with self._status_lock:
            record = self._statuses.get((trip_id, student_id))
            return record.model_copy(deep=True) if record else None

    def _write_passenger_status(self, record: PassengerStatus) -> PassengerStatus:
        with self._status_lock:
            self._statuses[(record.trip_id, record.student_id)] = record.model_copy(deep=True)
            return record.model_copy(deep=True)

    def list_passenger_statuses(self, trip_id: str) -> List[PassengerStatus]:
        with self._status_lock:
            return [
                r.model_copy(deep=True)
                for (tid, _), r in self._statuses.items()
                if tid == trip_id
            ]

    def get_profile(self, user_id: str) -> Optional[ActorProfile]:
        with self._misc_lock:
            profile = self._profiles.get(user_id)
            return profile.model_copy() if profile else None

    def save_profile(self, profile: ActorProfile) -> ActorProfile:
        with self._misc_lock:
            self._profiles[profile.user_id] = profile.model_copy()
            return profile

    def append_audit(self, entry: AuditEntry) -> AuditEntry:
        with self._misc_lock:
            self._audit.append(entry.model_copy(deep=True))
            return entry

    def list_audit(self, trip_id: str, student_id: Optional[str] = None, limit: Optional[int] = None) -> List[AuditEntry]:
        with self._misc_lock:
            entries = [
                e for e in self._audit
                if e.trip_id == trip_id and (student_id is None or e.student_id == student_id)
            ]
        entries = list(reversed(entries))
        if limit:
            entries = entries[:limit]
        return [e.model_copy(deep=True) for e in entries]

    def save_bulk_operation(self, operation: BulkOperation) -> BulkOperation:
        with self._misc_lock:
            self._bulk[operation.id] = operation.model_copy(deep=True)
            return operation

    def list_bulk_operations(self, batch_id: str) -> List[BulkOperation]:
        with self._misc_lock:
            ops = [op for op in self._bulk.values() if op.batch_id == batch_id]
            return [op.model_copy(deep=True) for op in ops]


class SqlTripStore(TripStore):
    """TripStore over SQLAlchemy. Each call runs in its own short session."""

    def __init__(self, session_factory: sessionmaker) -> None:
        super().__init__()
        self._session_factory = session_factory

    def _session(self) -> Session:
        return self._session_factory()

    def get_trip(self, trip_id: str) -> Optional[Trip]:
        with self._session() as db:
            return crud.get_trip(db, trip_id)

    def _write_trip(self, trip: Trip) -> Trip:
        with self._session() as db:
            return crud.upsert_trip(db, trip)

    def list_trips(self, school_id: Optional[str] = None) -> List[Trip]:
        with self._session() as db:
            return crud.list_trips(db, school_id)

    def _write_trip_position(self, trip_id: str, position: Coordinates, at: datetime) -> Optional[Trip]:
        with self._session() as db:
            return crud.update_trip_position(db, trip_id, position, at)

    def _write_trip_fields(self, trip_id: str, fields: Dict[str, Any]) -> Optional[Trip]:
        with self._session() as db:
            return crud.update_trip_fields(db, trip_id, fields)

    def save_student(self, student: StudentStop) -> StudentStop:
        with self._session() as db:
            return crud.upsert_student(db, student)

    def get_students(self, student_ids: Iterable[str]) -> List[StudentStop]:
        with self._session() as db:
            return crud.get_students(db, list(student_ids))

    def get_passenger_status(self, trip_id: str, student_id: str) -> Optional[PassengerStatus]:
        with self._session() as db:
            return crud.get_passenger_status(db, trip_id, student_id)

    def _write_passenger_status(self, record: PassengerStatus) -> PassengerStatus:
        with self._session() as db:
            return crud.replace_passenger_status(db, record)

    def list_passenger_statuses(self, trip_id: str) -> List[PassengerStatus]:
        with self._session() as db:
            return crud.list_passenger_statuses(db, trip_id)

    def get_profile(self, user_id: str) -> Optional[ActorProfile]:
        with self._session() as db:
            return crud.get_profile(db, user_id)

    def save_profile(self, profile: ActorProfile) -> ActorProfile:
        with self._session() as db:
            return crud.upsert_profile(db, profile)

    def append_audit(self, entry: AuditEntry) -> AuditEntry:
        with self._session() as db:
            return crud.create_audit_entry(db, entry)

    def list_audit(self, trip_id: str, student_id: Optional[str] = None, limit: Optional[int] = None) -> List[AuditEntry]:
        with self._session() as db:
            return crud.list_audit_entries(db, trip_id, student_id, limit)

    def save_bulk_operation(self, operation: BulkOperation) -> BulkOperation:
        with self._session() as db:
            return crud.upsert_bulk_operation(db, operation)

    def list_bulk_operations(self, batch_id: str) -> List[BulkOperation]:
        with self._session() as db:
            return crud.list_bulk_operations(db, batch_id)
