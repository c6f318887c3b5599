import math
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from errors import UnknownCode


class TripMode(str, Enum):
    PICKUP = "pickup"
    DROPOFF = "dropoff"


class TripStatus(str, Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    ENDED = "ended"


class PassengerStatusValue(str, Enum):
    PENDING = "pending"
    BOARDED = "boarded"
    DROPPED = "dropped"
    ABSENT = "absent"
    NO_SHOW = "no_show"


class CheckInMethod(str, Enum):
    QR = "qr"
    MANUAL = "manual"
    AUTO = "auto"


class BulkAction(str, Enum):
    BOARDING = "boarding"
    DROPPING = "dropping"


class BulkOperationStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Coordinates(BaseModel):
    """Geographic coordinates (latitude, longitude) in decimal degrees."""

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)

    class Config:
        json_schema_extra = {"example": {"lat": 40.4168, "lon": -3.7038}}


class StudentStop(BaseModel):
    """A student on a roster, with the home stop used for sequencing."""
    id: str
    name: str
    lat: Optional[float] = None
    lon: Optional[float] = None
    school_id: Optional[str] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    photo_url: Optional[str] = None

    @property
    def coordinates(self) -> Optional[Coordinates]:
        """Home coordinates, or None when missing, zero, NaN or out of range."""
        if self.lat is None or self.lon is None:
            return None
        if not (math.isfinite(self.lat) and math.isfinite(self.lon)):
            return None
        if self.lat == 0 or self.lon == 0:
            return None
        if not (-90 <= self.lat <= 90 and -180 <= self.lon <= 180):
            return None
        return Coordinates(lat=self.lat, lon=self.lon)


class Trip(BaseModel):
    id: str
    school_id: str
    mode: TripMode
    status: TripStatus = TripStatus.SCHEDULED
    driver_id: Optional[str] = None
    supervisor_id: Optional[str] = None
    allow_driver_as_supervisor: bool = False
    roster: List[str] = Field(default_factory=list)
    school_location: Optional[Coordinates] = None
    driver_position: Optional[Coordinates] = None
    start_position: Optional[Coordinates] = None
    bus_id: Optional[str] = None
    route_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    last_position_at: Optional[datetime] = None


class PassengerStatus(BaseModel):
    """Current status of one student on one trip. A new write replaces the old record."""
    trip_id: str
    student_id: str
    status: PassengerStatusValue = PassengerStatusValue.PENDING
    method: CheckInMethod = CheckInMethod.MANUAL
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    position: Optional[Coordinates] = None
    updated_by: Optional[str] = None
    version: int = 0


class ActorProfile(BaseModel):
    user_id: str
    display_name: Optional[str] = None
    supervisor_mode_enabled: bool = False


class AuditEntry(BaseModel):
    id: str
    trip_id: str
    student_id: str
    actor_id: str
    previous_status: Optional[PassengerStatusValue] = None
    new_status: PassengerStatusValue
    method: CheckInMethod
    batch_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    position: Optional[Coordinates] = None


class OptimizedStop(BaseModel):
    student: StudentStop
    order_index: int = Field(..., ge=0)
    distance_from_origin_km: float = Field(..., ge=0)
    distance_from_previous_km: float = Field(..., ge=0)


class RouteStatistics(BaseModel):
    total_stops: int
    completed_stops: int
    pending_stops: int
    absent_stops: int
    total_distance_km: float
    estimated_minutes: int


class DirectionsLeg(BaseModel):
    start: Coordinates
    end: Coordinates
    distance_km: Optional[float] = None
    duration_minutes: Optional[float] = None


class DirectionsResult(BaseModel):
    legs: List[DirectionsLeg] = Field(default_factory=list)
    from_cache: bool = False


class NextStop(BaseModel):
    current: Optional[OptimizedStop] = None
    next: Optional[OptimizedStop] = None
    source: str = "none"  # 'directions', 'position' or 'none'


class BulkOperationRequest(BaseModel):
    student_id: str
    action: BulkAction


class BulkOperation(BaseModel):
    id: str
    batch_id: str
    trip_id: str
    student_id: str
    action: BulkAction
    status: BulkOperationStatus = BulkOperationStatus.PENDING
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class BatchResult(BaseModel):
    batch_id: str
    processed: int = 0
    failed: int = 0
    operations: List[BulkOperation] = Field(default_factory=list)
    duplicates: List[str] = Field(default_factory=list)


class ScanOutcomeKind(str, Enum):
    APPLIED = "applied"
    SUPPRESSED = "suppressed"
    UNKNOWN_CODE = "unknown_code"


class ScanOutcome(BaseModel):
    kind: ScanOutcomeKind
    raw_payload: str
    student_id: Optional[str] = None
    status: Optional[PassengerStatus] = None
    feedback: Optional[str] = None  # 'success', 'error' or None (silent)
    message: str = ""

    def raise_for_status(self) -> "ScanOutcome":
        """Raise UnknownCode when the scan could not be resolved."""
        if self.kind == ScanOutcomeKind.UNKNOWN_CODE:
            raise UnknownCode(self.message or "Unknown scan code", {"student_id": self.student_id})
        return self
