"""
Tests for current/next stop projection.
"""

from unittest.mock import MagicMock

import pytest

from errors import DirectionsUnavailable
from models import Coordinates, DirectionsLeg, DirectionsResult, TripMode
from services.directions_service import DirectionsService
from services.next_stop_resolver import resolve, resolve_live
from services.route_sequencer import sequence


def _stops(students, school):
    return sequence(students, school, school, TripMode.PICKUP)


class TestResolve:

    def test_empty_sequence(self, school_location):
        result = resolve([], school_location)
        assert result.current is None
        assert result.next is None

    def test_no_position_no_directions(self, students_acb, school_location):
        result = resolve(_stops(students_acb, school_location))
        assert result.current is None
        assert result.next is None
        assert result.source == "none"

    def test_nearest_to_position(self, students_acb, school_location):
        stops = _stops(students_acb, school_location)
        # Just past A, closer to C
        result = resolve(stops, Coordinates(lat=40.016, lon=-3.0))
        assert result.current.student.id == "C"
        assert result.next.student.id == "B"
        assert result.source == "position"

    def test_last_stop_has_no_next(self, students_acb, school_location):
        stops = _stops(students_acb, school_location)
        result = resolve(stops, Coordinates(lat=40.03, lon=-3.0))
        assert result.current.student.id == "B"
        assert result.next is None

    def test_directions_win_over_position(self, students_acb, school_location):
        stops = _stops(students_acb, school_location)
        directions = DirectionsResult(
            legs=[
                DirectionsLeg(
                    start=school_location,
                    end=Coordinates(lat=40.009, lon=-3.0001),
                )
            ]
        )
        # Raw position says B, the route's first leg ends at A
        result = resolve(stops, Coordinates(lat=40.03, lon=-3.0), directions)
        assert result.current.student.id == "A"
        assert result.next.student.id == "C"
        assert result.source == "directions"

    def test_directions_without_legs_fall_back_to_position(self, students_acb, school_location):
        stops = _stops(students_acb, school_location)
        result = resolve(stops, Coordinates(lat=40.03, lon=-3.0), DirectionsResult(legs=[]))
        assert result.current.student.id == "B"
        assert result.source == "position"


class TestResolveLive:

    def test_uses_directions_service(self, students_acb, school_location):
        stops = _stops(students_acb, school_location)
        service = MagicMock()
        service.get_directions.return_value = DirectionsResult(
            legs=[DirectionsLeg(start=school_location, end=stops[1].student.coordinates)]
        )

        result = resolve_live(stops, school_location, school_location, school_location, service)

        assert result.current.student.id == "C"
        args = service.get_directions.call_args[0]
        assert [w for w in args[2]] == [s.student.coordinates for s in stops]

    def test_falls_back_when_directions_unavailable(self, students_acb, school_location):
        stops = _stops(students_acb, school_location)
        service = MagicMock()
        service.get_directions.side_effect = DirectionsUnavailable("Directions request failed: timeout")

        result = resolve_live(stops, school_location, school_location, Coordinates(lat=40.009, lon=-3.0), service)

        assert result.current.student.id == "A"
        assert result.source == "position"

    def test_without_service(self, students_acb, school_location):
        stops = _stops(students_acb, school_location)
        result = resolve_live(stops, school_location, school_location, Coordinates(lat=40.027, lon=-3.0))
        assert result.current.student.id == "B"

    @pytest.mark.parametrize(
        "body",
        [
            [],
            {"code": "Ok", "routes": ["not-a-route"]},
            {"code": "Ok", "routes": [{"legs": [{"distance": "n/a"}, {}]}]},
        ],
    )
    def test_malformed_directions_body_falls_back(self, students_acb, school_location, body):
        stops = _stops(students_acb, school_location)
        response = MagicMock()
        response.status_code = 200
        response.json.return_value = body
        client = MagicMock()
        client.is_closed = False
        client.get.return_value = response
        service = DirectionsService(route_url="http://osrm.test/route/v1/driving", enabled=True, client=client)

        result = resolve_live(stops, school_location, school_location, Coordinates(lat=40.009, lon=-3.0), service)

        assert result.current.student.id == "A"
        assert result.source == "position"
