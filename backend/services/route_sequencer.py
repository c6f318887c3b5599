"""
Stop sequencing for pickup and dropoff trips.

Orders the roster's home stops with a nearest-neighbour heuristic. This is a
cheap heuristic, not an exact shortest-route solve:

    origin -> nearest unvisited stop -> nearest unvisited stop -> ... -> destination

Only students with a usable coordinate and an eligible passenger status take
part. The output is capped at the waypoint ceiling imposed by the directions
provider; students past the cap stay on the roster but are not sequenced.
"""

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from config import config
from models import (
    Coordinates,
    OptimizedStop,
    PassengerStatusValue,
    RouteStatistics,
    StudentStop,
    Trip,
    TripMode,
)
from services.proximity import estimate_minutes, haversine_km

logger = logging.getLogger(__name__)


ELIGIBLE_STATUSES = {
    TripMode.PICKUP: {PassengerStatusValue.PENDING, PassengerStatusValue.BOARDED},
    TripMode.DROPOFF: {PassengerStatusValue.PENDING},
}


def _status_of(student_id: str, statuses: Optional[Mapping[str, PassengerStatusValue]]) -> PassengerStatusValue:
    if not statuses:
        return PassengerStatusValue.PENDING
    return PassengerStatusValue(statuses.get(student_id, PassengerStatusValue.PENDING))


def eligible_students(
    students: Iterable[StudentStop],
    mode: TripMode,
    statuses: Optional[Mapping[str, PassengerStatusValue]] = None,
) -> List[StudentStop]:
    """Students with a usable coordinate whose status the mode still visits."""
    allowed = ELIGIBLE_STATUSES[TripMode(mode)]
    return [
        s for s in students
        if s.coordinates is not None and _status_of(s.id, statuses) in allowed
    ]


def sequence(
    students: Iterable[StudentStop],
    origin: Coordinates,
    destination: Optional[Coordinates],
    mode: TripMode,
    statuses: Optional[Mapping[str, PassengerStatusValue]] = None,
    max_stops: Optional[int] = None,
) -> List[OptimizedStop]:
    """
    Order eligible students into a visiting sequence.

    Args:
        students: Roster students, in roster order (ties break by this order)
        origin: Where the bus starts
        destination: Where the bus ends; the route implicitly finishes there
        mode: pickup or dropoff, selects which passenger statuses are visited
        statuses: student_id -> current status; missing students count as pending
        max_stops: Waypoint ceiling, defaults to config.MAX_WAYPOINTS

    Returns:
        OptimizedStop list with a dense 0-based order_index. Empty when no
        student is eligible.
    """
    cap = config.MAX_WAYPOINTS if max_stops is None else max(0, int(max_stops))
    remaining = [(s, s.coordinates) for s in eligible_students(students, mode, statuses)]
    if not remaining or cap == 0:
        return []

    result: List[OptimizedStop] = []
    current = origin

    while remaining and len(result) < cap:
        best_idx = 0
        best_distance = haversine_km(current, remaining[0][1])
        for idx in range(1, len(remaining)):
            distance = haversine_km(current, remaining[idx][1])
            # Strict comparison keeps the first-seen student on ties
            if distance < best_distance:
                best_idx = idx
                best_distance = distance

        student, point = remaining.pop(best_idx)
        result.append(
            OptimizedStop(
                student=student,
                order_index=len(result),
                distance_from_origin_km=haversine_km(origin, point),
                distance_from_previous_km=best_distance,
            )
        )
        current = point

    if remaining:
        logger.info(
            f"[Sequencer] Waypoint cap {cap} reached, {len(remaining)} eligible students left unsequenced"
        )
    return result


def endpoints_for(trip: Trip, driver_position: Optional[Coordinates] = None) -> Tuple[Optional[Coordinates], Optional[Coordinates]]:
    """
    Origin and destination for a trip's mode.

    pickup:  driver (or school) -> school
    dropoff: school -> driver (or last known / school)
    """
    driver = driver_position or trip.driver_position
    school = trip.school_location
    if TripMode(trip.mode) == TripMode.PICKUP:
        return (driver or school), school
    return school, (driver or school)


def sequence_trip(
    trip: Trip,
    students: Iterable[StudentStop],
    statuses: Optional[Mapping[str, PassengerStatusValue]] = None,
    driver_position: Optional[Coordinates] = None,
) -> List[OptimizedStop]:
    """Sequence a trip's roster using the trip's mode semantics."""
    origin, destination = endpoints_for(trip, driver_position)
    if origin is None:
        return []
    return sequence(students, origin, destination, trip.mode, statuses)


def route_distance_km(
    stops: List[OptimizedStop],
    destination: Optional[Coordinates],
) -> float:
    """Straight-line length of origin -> stops -> destination."""
    if not stops:
        return 0.0
    total = sum(stop.distance_from_previous_km for stop in stops)
    if destination is not None:
        total += haversine_km(stops[-1].student.coordinates, destination)
    return total


def route_statistics(
    stops: List[OptimizedStop],
    destination: Optional[Coordinates],
    statuses: Optional[Mapping[str, PassengerStatusValue]] = None,
) -> RouteStatistics:
    counts: Dict[PassengerStatusValue, int] = {}
    for stop in stops:
        status = _status_of(stop.student.id, statuses)
        counts[status] = counts.get(status, 0) + 1

    total_distance = route_distance_km(stops, destination)
    return RouteStatistics(
        total_stops=len(stops),
        completed_stops=counts.get(PassengerStatusValue.BOARDED, 0) + counts.get(PassengerStatusValue.DROPPED, 0),
        pending_stops=counts.get(PassengerStatusValue.PENDING, 0),
        absent_stops=counts.get(PassengerStatusValue.ABSENT, 0) + counts.get(PassengerStatusValue.NO_SHOW, 0),
        total_distance_km=round(total_distance, 2),
        estimated_minutes=round(estimate_minutes(total_distance, config.AVERAGE_SPEED_KMH)),
    )
