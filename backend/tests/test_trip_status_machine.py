"""
Tests for trip lifecycle, supervision rights and passenger transitions.
"""

import threading

import pytest

from errors import (
    InvalidStateTransition,
    NotAuthorized,
    StatusConflict,
    TripNotFound,
    UnknownStudent,
)
from models import (
    ActorProfile,
    CheckInMethod,
    Coordinates,
    PassengerStatusValue,
    Trip,
    TripMode,
    TripStatus,
)
from services.trip_status_machine import SupervisionWatcher, can_supervise


BOARDED = PassengerStatusValue.BOARDED
DROPPED = PassengerStatusValue.DROPPED
ABSENT = PassengerStatusValue.ABSENT
NO_SHOW = PassengerStatusValue.NO_SHOW


# ============================================================
# TRIP LIFECYCLE
# ============================================================

class TestTripLifecycle:

    def test_create_trip_is_scheduled(self, scheduled_trip):
        assert scheduled_trip.status == TripStatus.SCHEDULED
        assert scheduled_trip.roster == ["A", "B", "C"]

    def test_create_trip_dedupes_roster(self, machine, students_acb):
        trip = machine.create_trip("T9", "SCH1", TripMode.PICKUP, students_acb + students_acb[:1])
        assert trip.roster == ["A", "B", "C"]

    def test_create_existing_trip(self, machine, scheduled_trip, students_acb):
        with pytest.raises(InvalidStateTransition):
            machine.create_trip("T1", "SCH1", TripMode.PICKUP, students_acb)

    def test_start(self, machine, scheduled_trip, school_location):
        trip = machine.start("T1", school_location)
        assert trip.status == TripStatus.ACTIVE
        assert trip.started_at is not None
        assert trip.start_position == school_location
        assert trip.driver_position == school_location

    def test_start_without_position(self, machine, scheduled_trip):
        with pytest.raises(InvalidStateTransition):
            machine.start("T1", None)
        assert machine.store.get_trip("T1").status == TripStatus.SCHEDULED

    def test_start_twice(self, machine, active_trip, school_location):
        with pytest.raises(InvalidStateTransition):
            machine.start("T1", school_location)

    def test_end(self, machine, active_trip):
        trip = machine.end("T1")
        assert trip.status == TripStatus.ENDED
        assert trip.ended_at is not None

    def test_end_keeps_position_written_after_read(self, machine, active_trip, monkeypatch):
        moved = Coordinates(lat=40.02, lon=-3.0)
        read_trip = machine.require_trip

        def read_then_move(trip_id):
            trip = read_trip(trip_id)
            machine.store.update_trip_position(trip_id, moved)
            return trip

        monkeypatch.setattr(machine, "require_trip", read_then_move)
        trip = machine.end("T1")

        assert trip.status == TripStatus.ENDED
        assert trip.driver_position == moved
        assert machine.store.get_trip("T1").driver_position == moved

    def test_end_scheduled_trip(self, machine, scheduled_trip):
        with pytest.raises(InvalidStateTransition):
            machine.end("T1")

    def test_end_twice(self, machine, active_trip):
        machine.end("T1")
        with pytest.raises(InvalidStateTransition):
            machine.end("T1")

    def test_start_ended_trip(self, machine, active_trip, school_location):
        machine.end("T1")
        with pytest.raises(InvalidStateTransition):
            machine.start("T1", school_location)

    def test_unknown_trip(self, machine, school_location):
        with pytest.raises(TripNotFound):
            machine.start("missing", school_location)
        with pytest.raises(TripNotFound):
            machine.end("missing")


# ============================================================
# SUPERVISION
# ============================================================

class TestCanSupervise:

    def _trip(self, **kwargs):
        return Trip(id="T", school_id="SCH", mode=TripMode.PICKUP, driver_id="drv1", supervisor_id="sup1", **kwargs)

    def test_assigned_supervisor(self):
        assert can_supervise("sup1", self._trip()) is True

    def test_driver_without_rights(self):
        assert can_supervise("drv1", self._trip()) is False

    def test_driver_with_supervisor_mode(self):
        profile = ActorProfile(user_id="drv1", supervisor_mode_enabled=True)
        assert can_supervise("drv1", self._trip(), profile) is True

    def test_trip_allows_driver(self):
        assert can_supervise("drv1", self._trip(allow_driver_as_supervisor=True)) is True

    def test_profile_of_someone_else_is_ignored(self):
        profile = ActorProfile(user_id="other", supervisor_mode_enabled=True)
        assert can_supervise("drv1", self._trip(), profile) is False


class TestSupervisionWatcher:

    def test_flip_on_active_trip(self):
        watcher = SupervisionWatcher()
        trip = Trip(id="T", school_id="SCH", mode=TripMode.PICKUP, status=TripStatus.ACTIVE, supervisor_id="sup1")

        assert watcher.update(trip, "drv1") is False
        profile = ActorProfile(user_id="drv1", supervisor_mode_enabled=True)
        assert watcher.update(trip, "drv1", profile) is True
        # Already surfaced
        assert watcher.update(trip, "drv1", profile) is False

    def test_no_trigger_when_trip_not_active(self):
        watcher = SupervisionWatcher()
        trip = Trip(id="T", school_id="SCH", mode=TripMode.PICKUP, status=TripStatus.SCHEDULED)
        profile = ActorProfile(user_id="drv1", supervisor_mode_enabled=True)
        assert watcher.update(trip, "drv1", profile) is False


# ============================================================
# PASSENGER STATUS
# ============================================================

class TestSetStatus:

    def test_board(self, machine, active_trip):
        record = machine.set_status("T1", "A", BOARDED, CheckInMethod.MANUAL, "sup1")
        assert record.status == BOARDED
        assert record.updated_by == "sup1"
        assert record.version == 1
        assert machine.current_status("T1", "A") == BOARDED

    def test_last_write_is_current(self, machine, active_trip):
        machine.set_status("T1", "A", BOARDED, CheckInMethod.QR, "sup1")
        machine.set_status("T1", "A", DROPPED, CheckInMethod.MANUAL, "sup1")
        records = [r for r in machine.store.list_passenger_statuses("T1") if r.student_id == "A"]
        assert len(records) == 1
        assert records[0].status == DROPPED
        assert records[0].method == CheckInMethod.MANUAL
        assert records[0].version == 2

    def test_unauthorized_driver(self, machine, active_trip):
        with pytest.raises(NotAuthorized):
            machine.set_status("T1", "A", BOARDED, CheckInMethod.MANUAL, "drv1")
        assert machine.store.get_passenger_status("T1", "A") is None
        assert machine.store.list_audit("T1") == []

    def test_driver_with_supervisor_mode(self, machine, store, active_trip):
        store.save_profile(ActorProfile(user_id="drv1", supervisor_mode_enabled=True))
        record = machine.set_status("T1", "A", BOARDED, CheckInMethod.MANUAL, "drv1")
        assert record.status == BOARDED

    def test_unknown_student(self, machine, active_trip):
        with pytest.raises(UnknownStudent):
            machine.set_status("T1", "Z", BOARDED, CheckInMethod.MANUAL, "sup1")

    def test_unknown_trip(self, machine):
        with pytest.raises(TripNotFound):
            machine.set_status("missing", "A", BOARDED, CheckInMethod.MANUAL, "sup1")

    def test_ended_trip(self, machine, active_trip):
        machine.end("T1")
        with pytest.raises(InvalidStateTransition):
            machine.set_status("T1", "A", BOARDED, CheckInMethod.MANUAL, "sup1")

    def test_dropped_cannot_become_absent(self, machine, active_trip):
        machine.set_status("T1", "A", DROPPED, CheckInMethod.MANUAL, "sup1")
        with pytest.raises(InvalidStateTransition):
            machine.set_status("T1", "A", ABSENT, CheckInMethod.MANUAL, "sup1")
        assert machine.current_status("T1", "A") == DROPPED

    def test_reboarding_after_no_show(self, machine, active_trip):
        machine.set_status("T1", "A", NO_SHOW, CheckInMethod.MANUAL, "sup1")
        record = machine.set_status("T1", "A", BOARDED, CheckInMethod.MANUAL, "sup1")
        assert record.status == BOARDED

    def test_expected_version(self, machine, active_trip):
        machine.set_status("T1", "A", BOARDED, CheckInMethod.MANUAL, "sup1", expected_version=0)
        with pytest.raises(StatusConflict):
            machine.set_status("T1", "A", DROPPED, CheckInMethod.MANUAL, "sup1", expected_version=0)
        record = machine.set_status("T1", "A", DROPPED, CheckInMethod.MANUAL, "sup1", expected_version=1)
        assert record.version == 2

    def test_position_recorded(self, machine, active_trip):
        position = Coordinates(lat=40.009, lon=-3.0)
        record = machine.set_status("T1", "A", BOARDED, CheckInMethod.MANUAL, "sup1", position=position)
        assert record.position == position

    def test_scheduled_trip_accepts_status(self, machine, scheduled_trip):
        record = machine.set_status("T1", "A", ABSENT, CheckInMethod.MANUAL, "sup1")
        assert record.status == ABSENT


class TestAuditTrail:

    def test_audit_records_previous_status(self, machine, active_trip):
        machine.set_status("T1", "A", BOARDED, CheckInMethod.QR, "sup1")
        machine.set_status("T1", "A", DROPPED, CheckInMethod.MANUAL, "sup1")

        entries = machine.store.list_audit("T1", student_id="A")
        assert len(entries) == 2
        newest, oldest = entries
        assert oldest.previous_status is None
        assert oldest.new_status == BOARDED
        assert newest.previous_status == BOARDED
        assert newest.new_status == DROPPED
        assert newest.actor_id == "sup1"

    def test_batch_id_recorded(self, machine, active_trip):
        machine.set_status("T1", "A", BOARDED, CheckInMethod.MANUAL, "sup1", batch_id="batch_x")
        assert machine.store.list_audit("T1")[0].batch_id == "batch_x"


class TestConcurrency:

    def test_parallel_writes_same_student(self, machine, active_trip):
        errors = []

        def board():
            try:
                machine.set_status("T1", "A", BOARDED, CheckInMethod.QR, "sup1")
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=board) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        record = machine.store.get_passenger_status("T1", "A")
        assert record.version == 10
        assert len(machine.store.list_audit("T1", student_id="A")) == 10

    def test_position_update_does_not_touch_statuses(self, machine, store, active_trip):
        machine.set_status("T1", "A", BOARDED, CheckInMethod.MANUAL, "sup1")
        store.update_trip_position("T1", Coordinates(lat=40.02, lon=-3.0))
        assert machine.current_status("T1", "A") == BOARDED
        assert store.get_trip("T1").status == TripStatus.ACTIVE
