"""
Current / next stop projection for an active trip.

Pure recomputation over a stop sequence; holds no state between calls and
never raises for missing data.
"""

import logging
from typing import List, Optional

from errors import DirectionsUnavailable
from models import Coordinates, DirectionsResult, NextStop, OptimizedStop
from services.directions_service import DirectionsService
from services.proximity import haversine_km

logger = logging.getLogger(__name__)


def _nearest(stops: List[OptimizedStop], point: Coordinates) -> OptimizedStop:
    best = stops[0]
    best_distance = haversine_km(point, best.student.coordinates)
    for stop in stops[1:]:
        distance = haversine_km(point, stop.student.coordinates)
        if distance < best_distance:
            best = stop
            best_distance = distance
    return best


def resolve(
    stops: List[OptimizedStop],
    current_position: Optional[Coordinates] = None,
    directions: Optional[DirectionsResult] = None,
) -> NextStop:
    """
    Work out which stop the bus is heading to now and which comes after it.

    A directions result wins over the raw position: the sequence entry
    closest to the end of its first leg becomes `current`. Without one the
    entry closest to `current_position` is used.
    """
    if not stops:
        return NextStop()

    ordered = sorted(stops, key=lambda s: s.order_index)

    if directions is not None and directions.legs:
        anchor = directions.legs[0].end
        source = "directions"
    elif current_position is not None:
        anchor = current_position
        source = "position"
    else:
        return NextStop()

    current = _nearest(ordered, anchor)
    position = ordered.index(current)
    following = ordered[position + 1] if position + 1 < len(ordered) else None
    return NextStop(current=current, next=following, source=source)


def resolve_live(
    stops: List[OptimizedStop],
    origin: Optional[Coordinates],
    destination: Optional[Coordinates],
    current_position: Optional[Coordinates],
    directions_service: Optional[DirectionsService] = None,
) -> NextStop:
    """
    Resolve using the directions service when it answers, straight-line otherwise.
    """
    directions: Optional[DirectionsResult] = None
    start = current_position or origin
    if directions_service is not None and stops and start is not None and destination is not None:
        waypoints = [stop.student.coordinates for stop in sorted(stops, key=lambda s: s.order_index)]
        try:
            directions = directions_service.get_directions(start, destination, waypoints)
        except DirectionsUnavailable as e:
            logger.warning(f"[Directions] Falling back to straight-line distance: {e.message}")

    return resolve(stops, current_position, directions)
