"""
Tests for the live position cadence.
"""

from datetime import datetime, timedelta

from models import Coordinates
from services.position_tracker import CadencePolicy, PositionTracker


T0 = datetime(2026, 3, 2, 7, 30, 0)
P1 = Coordinates(lat=40.01, lon=-3.0)
P2 = Coordinates(lat=40.02, lon=-3.0)


def _tracker(store, **policy):
    return PositionTracker(store, CadencePolicy(**policy))


class TestCadencePolicy:

    def test_defaults(self):
        policy = CadencePolicy(30, 90, True)
        assert policy.interval_for(True) == 30
        assert policy.interval_for(False) == 90

    def test_background_disabled(self):
        assert CadencePolicy(30, 90, False).interval_for(False) is None


class TestPositionTracker:

    def test_first_sample_persisted(self, store, active_trip):
        tracker = _tracker(store)
        assert tracker.update("T1", P1, at=T0) is True
        trip = store.get_trip("T1")
        assert trip.driver_position == P1
        assert trip.last_position_at == T0

    def test_foreground_cadence(self, store, active_trip):
        tracker = _tracker(store, foreground_interval=30)
        tracker.update("T1", P1, at=T0)

        assert tracker.update("T1", P2, at=T0 + timedelta(seconds=10)) is False
        assert store.get_trip("T1").driver_position == P1
        # Latest sample is still available in memory
        assert tracker.latest("T1") == P2

        assert tracker.update("T1", P2, at=T0 + timedelta(seconds=30)) is True
        assert store.get_trip("T1").driver_position == P2

    def test_background_cadence(self, store, active_trip):
        tracker = _tracker(store, background_interval=90)
        tracker.update("T1", P1, foreground=False, at=T0)
        assert tracker.update("T1", P2, foreground=False, at=T0 + timedelta(seconds=60)) is False
        assert tracker.update("T1", P2, foreground=False, at=T0 + timedelta(seconds=90)) is True

    def test_background_tracking_off(self, store, active_trip):
        tracker = _tracker(store, background_tracking=False)
        assert tracker.update("T1", P1, foreground=False, at=T0) is False
        assert store.get_trip("T1").driver_position != P1
        assert tracker.latest("T1") == P1

    def test_unknown_trip(self, store):
        tracker = _tracker(store)
        assert tracker.update("missing", P1, at=T0) is False

    def test_latest_falls_back_to_store(self, store, active_trip, school_location):
        assert _tracker(store).latest("T1") == school_location

    def test_subscribers_notified(self, store, active_trip):
        events = []
        unsubscribe = store.subscribe("T1", lambda event, payload: events.append((event, payload)))
        _tracker(store).update("T1", P1, at=T0)
        unsubscribe()
        _tracker(store).update("T1", P2, at=T0)

        assert events == [("position", {"lat": P1.lat, "lon": P1.lon})]
