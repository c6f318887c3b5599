"""
Live driver position with a persistence cadence.

The latest position is always kept in memory for next-stop resolution. It is
written to the trip record at most every 30 s while the app is in the
foreground and every 90 s in the background, or never in the background when
background tracking is off.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple

from config import config
from models import Coordinates
from services.trip_store import TripStore

logger = logging.getLogger(__name__)


@dataclass
class CadencePolicy:
    foreground_interval: float = config.POSITION_FOREGROUND_INTERVAL
    background_interval: float = config.POSITION_BACKGROUND_INTERVAL
    background_tracking: bool = config.BACKGROUND_TRACKING_ENABLED

    def interval_for(self, foreground: bool) -> Optional[float]:
        """Seconds between persisted samples, or None when nothing may be persisted."""
        if foreground:
            return self.foreground_interval
        if not self.background_tracking:
            return None
        return self.background_interval


class PositionTracker:
    def __init__(self, store: TripStore, policy: Optional[CadencePolicy] = None):
        self.store = store
        self.policy = policy or CadencePolicy()
        self._latest: Dict[str, Tuple[Coordinates, datetime]] = {}
        self._persisted_at: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def update(
        self,
        trip_id: str,
        position: Coordinates,
        foreground: bool = True,
        at: Optional[datetime] = None,
    ) -> bool:
        """
        Record a position sample.

        Returns:
            True if the sample was written to the trip record.
        """
        at = at or datetime.utcnow()
        interval = self.policy.interval_for(foreground)

        with self._lock:
            self._latest[trip_id] = (position, at)
            if interval is None:
                return False
            last = self._persisted_at.get(trip_id)
            if last is not None and (at - last).total_seconds() < interval:
                return False
            self._persisted_at[trip_id] = at

        if self.store.update_trip_position(trip_id, position, at) is None:
            logger.warning(f"[Position] Trip {trip_id} not found, position not persisted")
            with self._lock:
                self._persisted_at.pop(trip_id, None)
            return False
        logger.debug(f"[Position] Persisted {trip_id} at ({position.lat:.5f}, {position.lon:.5f})")
        return True

    def latest(self, trip_id: str) -> Optional[Coordinates]:
        """Most recent sample in memory, falling back to the stored driver position."""
        with self._lock:
            sample = self._latest.get(trip_id)
        if sample is not None:
            return sample[0]
        trip = self.store.get_trip(trip_id)
        return trip.driver_position if trip else None

    def forget(self, trip_id: str) -> None:
        with self._lock:
            self._latest.pop(trip_id, None)
            self._persisted_at.pop(trip_id, None)
