"""
Tests for bulk boarding / dropping.
"""

import pytest

from errors import EmptyBatch, NotAuthorized, TripNotFound
from models import (
    BulkAction,
    BulkOperationRequest,
    BulkOperationStatus,
    CheckInMethod,
    PassengerStatusValue,
)
from services.bulk_operations import BulkOperationProcessor


@pytest.fixture
def processor(machine):
    return BulkOperationProcessor(machine)


def _ops(*pairs):
    return [BulkOperationRequest(student_id=sid, action=action) for sid, action in pairs]


BOARD = BulkAction.BOARDING
DROP = BulkAction.DROPPING


class TestBulkSubmit:

    def test_boards_everyone(self, processor, machine, active_trip):
        result = processor.submit("T1", _ops(("A", BOARD), ("B", BOARD), ("C", BOARD)), "sup1")

        assert result.processed == 3
        assert result.failed == 0
        assert result.batch_id.startswith("batch_")
        assert all(op.status == BulkOperationStatus.COMPLETED for op in result.operations)
        for sid in ("A", "B", "C"):
            assert machine.current_status("T1", sid) == PassengerStatusValue.BOARDED

    def test_manual_method_and_shared_batch_id(self, processor, machine, active_trip):
        result = processor.submit("T1", _ops(("A", BOARD), ("C", BOARD)), "sup1")

        assert machine.store.get_passenger_status("T1", "A").method == CheckInMethod.MANUAL
        entries = machine.store.list_audit("T1")
        assert {e.batch_id for e in entries} == {result.batch_id}

    def test_duplicate_entry(self, processor, machine, active_trip):
        result = processor.submit("T1", _ops(("A", BOARD), ("A", DROP), ("B", BOARD)), "sup1")

        assert result.duplicates == ["A"]
        assert len(result.operations) == 2
        assert result.processed == 2
        # First occurrence wins
        assert machine.current_status("T1", "A") == PassengerStatusValue.BOARDED

    def test_partial_failure(self, processor, machine, active_trip):
        machine.set_status("T1", "B", PassengerStatusValue.DROPPED, CheckInMethod.MANUAL, "sup1")

        # B cannot go dropped -> dropped, Z is not on the roster
        result = processor.submit("T1", _ops(("A", DROP), ("B", DROP), ("Z", BOARD), ("C", BOARD)), "sup1")

        assert result.processed == 2
        assert result.failed == 2
        failed = {op.student_id: op for op in result.operations if op.status == BulkOperationStatus.FAILED}
        assert set(failed) == {"B", "Z"}
        assert all(op.error for op in failed.values())
        assert machine.current_status("T1", "A") == PassengerStatusValue.DROPPED
        assert machine.current_status("T1", "C") == PassengerStatusValue.BOARDED

    def test_operations_persisted(self, processor, machine, active_trip):
        result = processor.submit("T1", _ops(("A", BOARD), ("Z", BOARD)), "sup1")

        stored = {op.student_id: op for op in machine.store.list_bulk_operations(result.batch_id)}
        assert stored["A"].status == BulkOperationStatus.COMPLETED
        assert stored["Z"].status == BulkOperationStatus.FAILED
        assert stored["Z"].error

    def test_accepts_dicts(self, processor, active_trip):
        result = processor.submit("T1", [{"student_id": "A", "action": "boarding"}], "sup1")
        assert result.processed == 1


class TestBulkRejections:

    def test_unauthorized(self, processor, machine, active_trip):
        with pytest.raises(NotAuthorized):
            processor.submit("T1", _ops(("A", BOARD)), "drv1")
        assert machine.store.list_passenger_statuses("T1") == []

    def test_empty_batch(self, processor, active_trip):
        with pytest.raises(EmptyBatch):
            processor.submit("T1", [], "sup1")

    def test_unauthorized_checked_before_empty(self, processor, active_trip):
        with pytest.raises(NotAuthorized):
            processor.submit("T1", [], "drv1")

    def test_unknown_trip(self, processor):
        with pytest.raises(TripNotFound):
            processor.submit("missing", _ops(("A", BOARD)), "sup1")
