"""
Great-circle distance helpers.
"""

import math

from models import Coordinates

EARTH_RADIUS_KM = 6371.0


def haversine_km(start: Coordinates, end: Coordinates) -> float:
    """Great-circle (haversine) distance in km."""
    lat1 = math.radians(start.lat)
    lat2 = math.radians(end.lat)
    dlat = math.radians(end.lat - start.lat)
    dlon = math.radians(end.lon - start.lon)
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def estimate_minutes(distance_km: float, speed_kmh: float) -> float:
    """Straight-line travel estimate in minutes at an average speed."""
    if speed_kmh <= 0:
        return 0.0
    return (distance_km / speed_kmh) * 60
