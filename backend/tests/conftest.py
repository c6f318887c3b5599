"""
Pytest configuration and shared fixtures for trip backend tests.
"""
import pytest
import os
import sys
from typing import List

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from models import Coordinates, StudentStop, TripMode
from services.trip_status_machine import TripStatusMachine
from services.trip_store import InMemoryTripStore


# ============================================================
# FIXTURES FOR LOCATIONS AND STUDENTS
# ============================================================

@pytest.fixture
def school_location() -> Coordinates:
    """School used as origin/destination in most scenarios."""
    return Coordinates(lat=40.0, lon=-3.0)


@pytest.fixture
def students_acb() -> List[StudentStop]:
    """
    Three students due north of the school at roughly 1, 3 and 2 km.

    Given in roster order A, B, C; nearest-neighbour from the school
    visits them as A, C, B.
    """
    return [
        StudentStop(id="A", name="Alba", lat=40.008993, lon=-3.0),
        StudentStop(id="B", name="Bruno", lat=40.026979, lon=-3.0),
        StudentStop(id="C", name="Carla", lat=40.017986, lon=-3.0),
    ]


@pytest.fixture
def student_without_coordinates() -> StudentStop:
    return StudentStop(id="N", name="Nico")


# ============================================================
# FIXTURES FOR STORE AND STATE MACHINE
# ============================================================

@pytest.fixture
def store() -> InMemoryTripStore:
    return InMemoryTripStore()


@pytest.fixture
def machine(store) -> TripStatusMachine:
    return TripStatusMachine(store)


@pytest.fixture
def scheduled_trip(machine, students_acb, school_location):
    """Pickup trip T1 with supervisor 'sup1' and driver 'drv1', not started."""
    return machine.create_trip(
        "T1",
        "SCH1",
        TripMode.PICKUP,
        students_acb,
        school_location=school_location,
        driver_id="drv1",
        supervisor_id="sup1",
    )


@pytest.fixture
def active_trip(machine, scheduled_trip, school_location):
    """T1 started at the school."""
    return machine.start(scheduled_trip.id, school_location)


@pytest.fixture
def active_dropoff_trip(machine, students_acb, school_location):
    machine.create_trip(
        "T2",
        "SCH1",
        TripMode.DROPOFF,
        students_acb,
        school_location=school_location,
        driver_id="drv1",
        supervisor_id="sup1",
    )
    return machine.start("T2", school_location)

