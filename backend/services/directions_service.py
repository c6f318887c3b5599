"""
Directions client for an OSRM-compatible routing service.

Returns the ordered legs of a route through the trip's waypoints. Every
failure mode is reported as DirectionsUnavailable so callers can fall back to
straight-line distance.
"""

import logging
import threading
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from config import config
from errors import DirectionsUnavailable
from models import Coordinates, DirectionsLeg, DirectionsResult

logger = logging.getLogger(__name__)


class DirectionsCache:
    """In-memory cache for OSRM route responses."""

    def __init__(self, ttl_seconds: float = 300.0, max_size: int = 500):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._cache: Dict[str, Tuple[float, DirectionsResult]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _get_key(points: Sequence[Coordinates]) -> str:
        return "|".join(f"{round(p.lat, 5)},{round(p.lon, 5)}" for p in points)

    def get(self, points: Sequence[Coordinates]) -> Optional[DirectionsResult]:
        key = self._get_key(points)
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            stored_at, result = entry
            if time.time() - stored_at > self.ttl_seconds:
                self._cache.pop(key, None)
                return None
        return result.model_copy(update={"from_cache": True})

    def set(self, points: Sequence[Coordinates], result: DirectionsResult) -> None:
        key = self._get_key(points)
        with self._lock:
            if key not in self._cache and len(self._cache) >= self.max_size:
                oldest = min(self._cache.items(), key=lambda item: item[1][0])[0]
                del self._cache[oldest]
            self._cache[key] = (time.time(), result)

    @property
    def size(self) -> int:
        return len(self._cache)


class DirectionsService:
    """Fetches turn-by-turn legs from OSRM with retries and caching."""

    def __init__(
        self,
        route_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        enabled: Optional[bool] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.route_url = (route_url or config.OSRM_ROUTE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else config.OSRM_TIMEOUT
        self.max_retries = max(1, max_retries if max_retries is not None else config.OSRM_MAX_RETRIES)
        self.enabled = config.DIRECTIONS_ENABLED if enabled is None else enabled
        self.cache = DirectionsCache()
        self._http_client = client
        self._stats = {"requests": 0, "cache_hits": 0, "failures": 0}

    def _get_client(self) -> httpx.Client:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.Client(timeout=self.timeout)
        return self._http_client

    def get_directions(
        self,
        origin: Coordinates,
        destination: Coordinates,
        waypoints: Sequence[Coordinates] = (),
    ) -> DirectionsResult:
        """
        Route origin -> waypoints -> destination.

        Raises:
            DirectionsUnavailable: service disabled, too many waypoints, HTTP
                failure or a response without a usable route.
        """
        if not self.enabled:
            raise DirectionsUnavailable("Directions service disabled")
        if len(waypoints) > config.MAX_WAYPOINTS:
            raise DirectionsUnavailable(
                f"Too many waypoints: {len(waypoints)} > {config.MAX_WAYPOINTS}"
            )

        points = [origin, *waypoints, destination]
        cached = self.cache.get(points)
        if cached is not None:
            self._stats["cache_hits"] += 1
            return cached

        result = self._fetch(points)
        self.cache.set(points, result)
        return result

    def _fetch(self, points: List[Coordinates]) -> DirectionsResult:
        coords = ";".join(f"{p.lon},{p.lat}" for p in points)
        url = f"{self.route_url}/{coords}"
        params = {"overview": "false", "steps": "false"}
        self._stats["requests"] += 1
        last_error = "no response"

        for attempt in range(self.max_retries):
            try:
                response = self._get_client().get(url, params=params)
                if response.status_code == 200:
                    return self._parse(response.json(), points)
                if response.status_code == 429:
                    last_error = "rate limited"
                    time.sleep(min(2 ** attempt, 4))
                    continue
                last_error = f"HTTP {response.status_code}"
            except DirectionsUnavailable:
                self._stats["failures"] += 1
                raise
            except httpx.TimeoutException:
                last_error = "timeout"
                logger.warning(f"[Directions] Timeout (attempt {attempt + 1})")
            except (httpx.HTTPError, ValueError) as e:
                last_error = str(e)
                logger.error(f"[Directions] Error: {e}")

            if attempt < self.max_retries - 1:
                time.sleep(config.OSRM_RETRY_DELAY * (attempt + 1))

        self._stats["failures"] += 1
        raise DirectionsUnavailable(f"Directions request failed: {last_error}")

    @staticmethod
    def _parse(data: Any, points: List[Coordinates]) -> DirectionsResult:
        if not isinstance(data, dict):
            raise DirectionsUnavailable(f"Unexpected directions response: {type(data).__name__}")
        if data.get("code") != "Ok" or not data.get("routes"):
            raise DirectionsUnavailable(f"Directions status: {data.get('code', 'unknown')}")

        try:
            legs_raw = data["routes"][0].get("legs") or []
            snapped = [
                Coordinates(lat=w["location"][1], lon=w["location"][0])
                for w in data.get("waypoints") or []
                if isinstance(w.get("location"), list) and len(w["location"]) == 2
            ]
            # Snapped waypoints line up with the requested points when OSRM returns them
            anchors = snapped if len(snapped) == len(points) else points

            legs: List[DirectionsLeg] = []
            for idx, leg in enumerate(legs_raw):
                if idx + 1 >= len(anchors):
                    break
                distance = leg.get("distance")
                duration = leg.get("duration")
                legs.append(
                    DirectionsLeg(
                        start=anchors[idx],
                        end=anchors[idx + 1],
                        distance_km=float(distance) / 1000 if distance is not None else None,
                        duration_minutes=float(duration) / 60 if duration is not None else None,
                    )
                )
        except (KeyError, IndexError, TypeError, AttributeError, ValueError) as e:
            raise DirectionsUnavailable(f"Malformed directions response: {e}") from e
        if not legs:
            raise DirectionsUnavailable("Directions response has no legs")
        return DirectionsResult(legs=legs)

    def get_stats(self) -> Dict[str, int]:
        return self._stats.copy()

    def close(self) -> None:
        if self._http_client is not None and not self._http_client.is_closed:
            self._http_client.close()


_directions_service: Optional[DirectionsService] = None


def get_directions_service() -> DirectionsService:
    global _directions_service
    if _directions_service is None:
        _directions_service = DirectionsService()
    return _directions_service


def close_directions_service() -> None:
    global _directions_service
    if _directions_service:
        _directions_service.close()
        _directions_service = None
