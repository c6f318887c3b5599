"""
Trip and passenger status transitions.

Trip status is monotonic:

    scheduled -> active -> ended

Passenger status is looser. A student moves pending -> boarded/absent/no_show
(or straight to dropped on a dropoff run), boarded -> dropped/absent, and any
status can be corrected back to boarded. Every applied passenger transition
replaces the current record and appends an audit entry with the previous
status and the actor.

Only supervisors may change passenger status. A driver counts as supervisor
when their profile has supervisor mode on or the trip allows it.
"""

import logging
import threading
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from errors import (
    InvalidStateTransition,
    NotAuthorized,
    StatusConflict,
    TripNotFound,
    UnknownStudent,
)
from models import (
    ActorProfile,
    AuditEntry,
    CheckInMethod,
    Coordinates,
    PassengerStatus,
    PassengerStatusValue,
    StudentStop,
    Trip,
    TripMode,
    TripStatus,
)
from services.trip_store import TripStore

logger = logging.getLogger(__name__)


P = PassengerStatusValue

PASSENGER_TRANSITIONS = {
    P.PENDING: {P.BOARDED, P.DROPPED, P.ABSENT, P.NO_SHOW},
    P.BOARDED: {P.BOARDED, P.DROPPED, P.ABSENT},
    P.DROPPED: {P.BOARDED},
    P.ABSENT: {P.BOARDED},
    P.NO_SHOW: {P.BOARDED},
}


def can_supervise(actor_id: str, trip: Trip, profile: Optional[ActorProfile] = None) -> bool:
    """
    Whether the actor may board/drop students on this trip.

    True for the assigned supervisor, for an actor whose profile has
    supervisor mode on, and for the trip's driver when the trip allows the
    driver to act as supervisor.
    """
    if trip.supervisor_id is not None and trip.supervisor_id == actor_id:
        return True
    if profile is not None and profile.user_id == actor_id and profile.supervisor_mode_enabled:
        return True
    if trip.allow_driver_as_supervisor:
        return trip.driver_id is None or trip.driver_id == actor_id
    return False


class SupervisionWatcher:
    """
    Tracks the supervise flag per (trip, actor) and reports when supervisory
    controls should be surfaced: the flag flipping from false to true while
    the trip is active.
    """

    def __init__(self) -> None:
        self._last: Dict[Tuple[str, str], bool] = {}
        self._lock = threading.Lock()

    def update(self, trip: Trip, actor_id: str, profile: Optional[ActorProfile] = None) -> bool:
        current = can_supervise(actor_id, trip, profile)
        key = (trip.id, actor_id)
        with self._lock:
            previous = self._last.get(key, False)
            self._last[key] = current
        return current and not previous and trip.status == TripStatus.ACTIVE


class TripStatusMachine:
    """Owns every write to trip status and passenger status."""

    def __init__(self, store: TripStore):
        self.store = store
        self._key_locks: Dict[Tuple[str, str], threading.Lock] = defaultdict(threading.Lock)
        self._key_locks_guard = threading.Lock()
        self._trip_lock = threading.Lock()

    def _lock_for(self, trip_id: str, student_id: str) -> threading.Lock:
        with self._key_locks_guard:
            return self._key_locks[(trip_id, student_id)]

    def require_trip(self, trip_id: str) -> Trip:
        trip = self.store.get_trip(trip_id)
        if trip is None:
            raise TripNotFound(f"Trip {trip_id} not found", {"trip_id": trip_id})
        return trip

    # ------------------------------------------------------------------
    # Trip lifecycle
    # ------------------------------------------------------------------

    def create_trip(
        self,
        trip_id: str,
        school_id: str,
        mode: TripMode,
        students: Iterable[StudentStop],
        school_location: Optional[Coordinates] = None,
        driver_id: Optional[str] = None,
        supervisor_id: Optional[str] = None,
        allow_driver_as_supervisor: bool = False,
        bus_id: Optional[str] = None,
        route_id: Optional[str] = None,
    ) -> Trip:
        """Create a scheduled trip and store its roster students."""
        if self.store.get_trip(trip_id) is not None:
            raise InvalidStateTransition(f"Trip {trip_id} already exists", {"trip_id": trip_id})

        roster: List[str] = []
        for student in students:
            if student.id in roster:
                continue
            self.store.save_student(student)
            roster.append(student.id)

        trip = Trip(
            id=trip_id,
            school_id=school_id,
            mode=mode,
            status=TripStatus.SCHEDULED,
            driver_id=driver_id,
            supervisor_id=supervisor_id,
            allow_driver_as_supervisor=allow_driver_as_supervisor,
            roster=roster,
            school_location=school_location,
            bus_id=bus_id,
            route_id=route_id,
        )
        saved = self.store.save_trip(trip)
        logger.info(f"[Trip] Created {trip_id} ({TripMode(mode).value}) with {len(roster)} students")
        return saved

    def start(self, trip_id: str, driver_position: Optional[Coordinates]) -> Trip:
        """
        scheduled -> active.

        Raises:
            InvalidStateTransition: no driver position, or trip not scheduled
        """
        with self._trip_lock:
            trip = self.require_trip(trip_id)
            if driver_position is None:
                raise InvalidStateTransition(
                    "Cannot start a trip without a known driver position", {"trip_id": trip_id}
                )
            if trip.status != TripStatus.SCHEDULED:
                raise InvalidStateTransition(
                    f"Cannot start trip in status '{trip.status.value}'",
                    {"trip_id": trip_id, "status": trip.status.value},
                )
            now = datetime.utcnow()
            saved = self.store.update_trip(
                trip_id,
                status=TripStatus.ACTIVE,
                started_at=now,
                start_position=driver_position,
                driver_position=driver_position,
                last_position_at=now,
            )
        logger.info(f"[Trip] Started {trip_id}")
        return saved

    def end(self, trip_id: str) -> Trip:
        """
        active -> ended.

        Raises:
            InvalidStateTransition: trip not active
        """
        with self._trip_lock:
            trip = self.require_trip(trip_id)
            if trip.status != TripStatus.ACTIVE:
                raise InvalidStateTransition(
                    f"Cannot end trip in status '{trip.status.value}'",
                    {"trip_id": trip_id, "status": trip.status.value},
                )
            # Position fields are left to PositionTracker
            saved = self.store.update_trip(trip_id, status=TripStatus.ENDED, ended_at=datetime.utcnow())
        logger.info(f"[Trip] Ended {trip_id}")
        return saved

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def can_supervise(self, trip: Trip, actor_id: str) -> bool:
        return can_supervise(actor_id, trip, self.store.get_profile(actor_id))

    def require_supervisor(self, trip: Trip, actor_id: str) -> None:
        if not self.can_supervise(trip, actor_id):
            logger.warning(f"[Trip] Actor {actor_id} is not allowed to supervise trip {trip.id}")
            raise NotAuthorized(
                f"User {actor_id} cannot supervise trip {trip.id}",
                {"trip_id": trip.id, "actor_id": actor_id},
            )

    # ------------------------------------------------------------------
    # Passenger status
    # ------------------------------------------------------------------

    def current_status(self, trip_id: str, student_id: str) -> PassengerStatusValue:
        record = self.store.get_passenger_status(trip_id, student_id)
        return record.status if record else PassengerStatusValue.PENDING

    def statuses_by_student(self, trip_id: str) -> Dict[str, PassengerStatusValue]:
        return {r.student_id: r.status for r in self.store.list_passenger_statuses(trip_id)}

    def set_status(
        self,
        trip_id: str,
        student_id: str,
        new_status: PassengerStatusValue,
        method: CheckInMethod,
        actor_id: str,
        position: Optional[Coordinates] = None,
        batch_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> PassengerStatus:
        """
        Apply a passenger status change.

        Checks run before any write: authorization, roster membership, trip
        not ended, allowed transition, then the optional version check.

        Raises:
            TripNotFound, NotAuthorized, UnknownStudent,
            InvalidStateTransition, StatusConflict
        """
        new_status = PassengerStatusValue(new_status)
        method = CheckInMethod(method)
        trip = self.require_trip(trip_id)
        self.require_supervisor(trip, actor_id)

        if student_id not in trip.roster:
            raise UnknownStudent(
                f"Student {student_id} is not on trip {trip_id}",
                {"trip_id": trip_id, "student_id": student_id},
            )
        if trip.status == TripStatus.ENDED:
            raise InvalidStateTransition(
                f"Trip {trip_id} has ended", {"trip_id": trip_id, "status": trip.status.value}
            )

        with self._lock_for(trip_id, student_id):
            previous = self.store.get_passenger_status(trip_id, student_id)
            previous_status = previous.status if previous else PassengerStatusValue.PENDING
            previous_version = previous.version if previous else 0

            if new_status not in PASSENGER_TRANSITIONS[previous_status]:
                raise InvalidStateTransition(
                    f"Cannot change student {student_id} from '{previous_status.value}' to '{new_status.value}'",
                    {"student_id": student_id, "from": previous_status.value, "to": new_status.value},
                )
            if expected_version is not None and expected_version != previous_version:
                raise StatusConflict(
                    f"Status for student {student_id} changed (version {previous_version}, expected {expected_version})",
                    {"student_id": student_id, "version": previous_version},
                )

            now = datetime.utcnow()
            record = PassengerStatus(
                trip_id=trip_id,
                student_id=student_id,
                status=new_status,
                method=method,
                timestamp=now,
                position=position,
                updated_by=actor_id,
                version=previous_version + 1,
            )
            saved = self.store.put_passenger_status(record)
            self.store.append_audit(
                AuditEntry(
                    id=f"audit_{uuid.uuid4().hex}",
                    trip_id=trip_id,
                    student_id=student_id,
                    actor_id=actor_id,
                    previous_status=previous.status if previous else None,
                    new_status=new_status,
                    method=method,
                    batch_id=batch_id,
                    timestamp=now,
                    position=position,
                )
            )

        logger.info(
            f"[Trip] {trip_id}: student {student_id} {previous_status.value} -> {new_status.value} "
            f"via {method.value} by {actor_id}"
        )
        return saved
