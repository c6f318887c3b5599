"""
Trip tracking API.

Endpoints for the driver/supervisor app: trip lifecycle, passenger check-in
(manual, scan and bulk), stop sequencing, next-stop projection, live position
and the trip report.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from config import config
from db import database
from errors import (
    EmptyBatch,
    InvalidStateTransition,
    NotAuthorized,
    StatusConflict,
    TripCoreError,
    TripNotFound,
    UnknownCode,
    UnknownStudent,
)
from models import (
    ActorProfile,
    AuditEntry,
    BatchResult,
    BulkOperationRequest,
    CheckInMethod,
    Coordinates,
    NextStop,
    OptimizedStop,
    PassengerStatus,
    PassengerStatusValue,
    RouteStatistics,
    ScanOutcome,
    StudentStop,
    Trip,
    TripMode,
)
from pdf_service import generate_trip_report_pdf
from services.bulk_operations import BulkOperationProcessor
from services.directions_service import DirectionsService, get_directions_service
from services.next_stop_resolver import resolve_live
from services.position_tracker import PositionTracker
from services.route_sequencer import endpoints_for, route_statistics, sequence_trip
from services.scan_ingestion import ScanIngestionPipeline
from services.trip_status_machine import SupervisionWatcher, TripStatusMachine
from services.trip_store import InMemoryTripStore, SqlTripStore, TripStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["trips"])


# =============================================================================
# Service wiring
# =============================================================================

class TripServices:
    """Everything the endpoints need, built over one store."""

    def __init__(self, store: TripStore, directions: Optional[DirectionsService] = None):
        self.store = store
        self.machine = TripStatusMachine(store)
        self.scanner = ScanIngestionPipeline(self.machine)
        self.bulk = BulkOperationProcessor(self.machine)
        self.positions = PositionTracker(store)
        self.watcher = SupervisionWatcher()
        self.directions = directions


_services: Optional[TripServices] = None


def get_trip_services() -> TripServices:
    global _services
    if _services is None:
        if database.is_database_available():
            store: TripStore = SqlTripStore(database.SessionLocal)
            logger.info("[API] Using SQL trip store")
        else:
            store = InMemoryTripStore()
            logger.info("[API] Using in-memory trip store")
        directions = get_directions_service() if config.DIRECTIONS_ENABLED else None
        _services = TripServices(store, directions)
    return _services


ERROR_STATUS = [
    (EmptyBatch, status.HTTP_400_BAD_REQUEST),
    (NotAuthorized, status.HTTP_403_FORBIDDEN),
    (TripNotFound, status.HTTP_404_NOT_FOUND),
    (UnknownStudent, status.HTTP_404_NOT_FOUND),
    (InvalidStateTransition, status.HTTP_409_CONFLICT),
    (StatusConflict, status.HTTP_409_CONFLICT),
    (UnknownCode, status.HTTP_422_UNPROCESSABLE_ENTITY),
]


def _http_error(exc: TripCoreError) -> HTTPException:
    code = status.HTTP_400_BAD_REQUEST
    for error_type, error_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            code = error_code
            break
    return HTTPException(
        status_code=code,
        detail={"error": type(exc).__name__, "message": exc.message, "details": exc.details},
    )


def _get_trip(services: TripServices, trip_id: str) -> Trip:
    trip = services.store.get_trip(trip_id)
    if trip is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Trip {trip_id} not found")
    return trip


# =============================================================================
# Request / response schemas
# =============================================================================

class CreateTripRequest(BaseModel):
    id: str = Field(min_length=1, max_length=64)
    school_id: str = Field(min_length=1)
    mode: TripMode
    students: List[StudentStop] = Field(default_factory=list)
    school_location: Optional[Coordinates] = None
    driver_id: Optional[str] = None
    supervisor_id: Optional[str] = None
    allow_driver_as_supervisor: bool = False
    bus_id: Optional[str] = None
    route_id: Optional[str] = None


class StartTripRequest(BaseModel):
    driver_position: Optional[Coordinates] = None


class SetStatusRequest(BaseModel):
    status: PassengerStatusValue
    actor_id: str
    method: CheckInMethod = CheckInMethod.MANUAL
    position: Optional[Coordinates] = None
    expected_version: Optional[int] = Field(default=None, ge=0)


class ScanRequest(BaseModel):
    payload: str
    actor_id: str
    position: Optional[Coordinates] = None


class BulkRequest(BaseModel):
    actor_id: str
    operations: List[BulkOperationRequest] = Field(default_factory=list)
    position: Optional[Coordinates] = None


class PositionRequest(BaseModel):
    position: Coordinates
    foreground: bool = True


class PositionResponse(BaseModel):
    trip_id: str
    persisted: bool


class ProfileRequest(BaseModel):
    display_name: Optional[str] = None
    supervisor_mode_enabled: bool = False


class SequenceResponse(BaseModel):
    trip_id: str
    stops: List[OptimizedStop]
    statistics: RouteStatistics


class SupervisionResponse(BaseModel):
    trip_id: str
    actor_id: str
    can_supervise: bool
    show_controls: bool


# =============================================================================
# Trip lifecycle
# =============================================================================

@router.post("/trips", response_model=Trip, status_code=status.HTTP_201_CREATED)
def create_trip(payload: CreateTripRequest, services: TripServices = Depends(get_trip_services)) -> Trip:
    try:
        return services.machine.create_trip(
            payload.id,
            payload.school_id,
            payload.mode,
            payload.students,
            school_location=payload.school_location,
            driver_id=payload.driver_id,
            supervisor_id=payload.supervisor_id,
            allow_driver_as_supervisor=payload.allow_driver_as_supervisor,
            bus_id=payload.bus_id,
            route_id=payload.route_id,
        )
    except TripCoreError as exc:
        raise _http_error(exc) from exc


@router.get("/trips/{trip_id}", response_model=Trip)
def get_trip(trip_id: str, services: TripServices = Depends(get_trip_services)) -> Trip:
    return _get_trip(services, trip_id)


@router.post("/trips/{trip_id}/start", response_model=Trip)
def start_trip(
    trip_id: str,
    payload: StartTripRequest,
    services: TripServices = Depends(get_trip_services),
) -> Trip:
    position = payload.driver_position or services.positions.latest(trip_id)
    try:
        return services.machine.start(trip_id, position)
    except TripCoreError as exc:
        raise _http_error(exc) from exc


@router.post("/trips/{trip_id}/end", response_model=Trip)
def end_trip(trip_id: str, services: TripServices = Depends(get_trip_services)) -> Trip:
    try:
        trip = services.machine.end(trip_id)
    except TripCoreError as exc:
        raise _http_error(exc) from exc
    services.positions.forget(trip_id)
    return trip


# =============================================================================
# Passengers
# =============================================================================

@router.get("/trips/{trip_id}/passengers", response_model=List[PassengerStatus])
def list_passengers(trip_id: str, services: TripServices = Depends(get_trip_services)) -> List[PassengerStatus]:
    trip = _get_trip(services, trip_id)
    records = {r.student_id: r for r in services.store.list_passenger_statuses(trip_id)}
    return [
        records.get(student_id) or PassengerStatus(trip_id=trip_id, student_id=student_id)
        for student_id in trip.roster
    ]


@router.put("/trips/{trip_id}/passengers/{student_id}", response_model=PassengerStatus)
def set_passenger_status(
    trip_id: str,
    student_id: str,
    payload: SetStatusRequest,
    services: TripServices = Depends(get_trip_services),
) -> PassengerStatus:
    try:
        return services.machine.set_status(
            trip_id,
            student_id,
            payload.status,
            payload.method,
            payload.actor_id,
            position=payload.position,
            expected_version=payload.expected_version,
        )
    except TripCoreError as exc:
        raise _http_error(exc) from exc


@router.post("/trips/{trip_id}/scan", response_model=ScanOutcome)
def scan(trip_id: str, payload: ScanRequest, services: TripServices = Depends(get_trip_services)) -> ScanOutcome:
    trip = _get_trip(services, trip_id)
    try:
        outcome = services.scanner.ingest(
            trip_id, payload.payload, trip.mode, payload.actor_id, position=payload.position
        )
        return outcome.raise_for_status()
    except TripCoreError as exc:
        raise _http_error(exc) from exc


@router.post("/trips/{trip_id}/bulk", response_model=BatchResult)
def bulk(trip_id: str, payload: BulkRequest, services: TripServices = Depends(get_trip_services)) -> BatchResult:
    try:
        return services.bulk.submit(trip_id, payload.operations, payload.actor_id, position=payload.position)
    except TripCoreError as exc:
        raise _http_error(exc) from exc


@router.get("/trips/{trip_id}/audit", response_model=List[AuditEntry])
def audit_trail(
    trip_id: str,
    student_id: Optional[str] = None,
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    services: TripServices = Depends(get_trip_services),
) -> List[AuditEntry]:
    _get_trip(services, trip_id)
    return services.store.list_audit(trip_id, student_id=student_id, limit=limit)


@router.get("/trips/{trip_id}/supervision", response_model=SupervisionResponse)
def supervision(
    trip_id: str,
    actor_id: str,
    services: TripServices = Depends(get_trip_services),
) -> SupervisionResponse:
    trip = _get_trip(services, trip_id)
    profile = services.store.get_profile(actor_id)
    show_controls = services.watcher.update(trip, actor_id, profile)
    return SupervisionResponse(
        trip_id=trip_id,
        actor_id=actor_id,
        can_supervise=services.machine.can_supervise(trip, actor_id),
        show_controls=show_controls,
    )


# =============================================================================
# Route
# =============================================================================

def _route_inputs(services: TripServices, trip: Trip):
    students = services.store.get_students(trip.roster)
    statuses: Dict[str, PassengerStatusValue] = services.machine.statuses_by_student(trip.id)
    position = services.positions.latest(trip.id)
    return students, statuses, position


@router.get("/trips/{trip_id}/sequence", response_model=SequenceResponse)
def get_sequence(trip_id: str, services: TripServices = Depends(get_trip_services)) -> SequenceResponse:
    trip = _get_trip(services, trip_id)
    students, statuses, position = _route_inputs(services, trip)
    stops = sequence_trip(trip, students, statuses, driver_position=position)
    _, destination = endpoints_for(trip, position)
    return SequenceResponse(
        trip_id=trip_id,
        stops=stops,
        statistics=route_statistics(stops, destination, statuses),
    )


@router.get("/trips/{trip_id}/next-stop", response_model=NextStop)
def get_next_stop(trip_id: str, services: TripServices = Depends(get_trip_services)) -> NextStop:
    trip = _get_trip(services, trip_id)
    students, statuses, position = _route_inputs(services, trip)
    stops = sequence_trip(trip, students, statuses, driver_position=position)
    origin, destination = endpoints_for(trip, position)
    return resolve_live(stops, origin, destination, position, services.directions)


@router.post("/trips/{trip_id}/position", response_model=PositionResponse)
def update_position(
    trip_id: str,
    payload: PositionRequest,
    services: TripServices = Depends(get_trip_services),
) -> PositionResponse:
    _get_trip(services, trip_id)
    persisted = services.positions.update(trip_id, payload.position, foreground=payload.foreground)
    return PositionResponse(trip_id=trip_id, persisted=persisted)


@router.get("/trips/{trip_id}/report.pdf")
def trip_report(trip_id: str, services: TripServices = Depends(get_trip_services)):
    trip = _get_trip(services, trip_id)
    students = services.store.get_students(trip.roster)
    statuses = {r.student_id: r for r in services.store.list_passenger_statuses(trip_id)}
    audit = list(reversed(services.store.list_audit(trip_id)))
    pdf_buffer = generate_trip_report_pdf(trip, students, statuses, audit)
    return StreamingResponse(
        pdf_buffer,
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename=trip_{trip_id}.pdf"},
    )


# =============================================================================
# Profiles
# =============================================================================

@router.put("/profiles/{user_id}", response_model=ActorProfile)
def update_profile(
    user_id: str,
    payload: ProfileRequest,
    services: TripServices = Depends(get_trip_services),
) -> ActorProfile:
    profile = ActorProfile(
        user_id=user_id,
        display_name=payload.display_name,
        supervisor_mode_enabled=payload.supervisor_mode_enabled,
    )
    saved = services.store.save_profile(profile)
    logger.info(f"[API] Supervisor mode for {user_id}: {saved.supervisor_mode_enabled}")
    return saved
