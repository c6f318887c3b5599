"""
Bulk boarding / dropping for a whole group of students at once.

Every item in a batch goes through the same state machine as a single scan,
so the audit trail records each student individually with the shared batch id.
A failing item is recorded on its own operation and never aborts the rest of
the batch.
"""

import logging
import uuid
from datetime import datetime
from typing import Iterable, List, Optional

from errors import EmptyBatch
from models import (
    BatchResult,
    BulkAction,
    BulkOperation,
    BulkOperationRequest,
    BulkOperationStatus,
    CheckInMethod,
    Coordinates,
    PassengerStatusValue,
)
from services.trip_status_machine import TripStatusMachine

logger = logging.getLogger(__name__)


ACTION_TARGET_STATUS = {
    BulkAction.BOARDING: PassengerStatusValue.BOARDED,
    BulkAction.DROPPING: PassengerStatusValue.DROPPED,
}


class BulkOperationProcessor:
    def __init__(self, machine: TripStatusMachine):
        self.machine = machine

    def _save(self, operation: BulkOperation, **changes) -> BulkOperation:
        updated = operation.model_copy(update={**changes, "timestamp": datetime.utcnow()})
        return self.machine.store.save_bulk_operation(updated)

    def submit(
        self,
        trip_id: str,
        operations: Iterable[BulkOperationRequest],
        actor_id: str,
        position: Optional[Coordinates] = None,
    ) -> BatchResult:
        """
        Apply a batch of boarding/dropping operations.

        Duplicate student ids are collapsed to their first occurrence and
        reported in ``duplicates``.

        Raises:
            TripNotFound: unknown trip
            NotAuthorized: actor may not supervise this trip
            EmptyBatch: no operations given
        """
        trip = self.machine.require_trip(trip_id)
        self.machine.require_supervisor(trip, actor_id)

        requests = [
            op if isinstance(op, BulkOperationRequest) else BulkOperationRequest(**op)
            for op in operations
        ]
        if not requests:
            raise EmptyBatch("No operations to process", {"trip_id": trip_id})

        seen = set()
        unique: List[BulkOperationRequest] = []
        duplicates: List[str] = []
        for request in requests:
            if request.student_id in seen:
                duplicates.append(request.student_id)
                continue
            seen.add(request.student_id)
            unique.append(request)

        batch_id = f"batch_{uuid.uuid4().hex}"
        logger.info(
            f"[Bulk] Batch {batch_id} on trip {trip_id}: {len(unique)} operations"
            + (f", {len(duplicates)} duplicates skipped" if duplicates else "")
        )

        pending = [
            self.machine.store.save_bulk_operation(
                BulkOperation(
                    id=f"{batch_id}_{index}",
                    batch_id=batch_id,
                    trip_id=trip_id,
                    student_id=request.student_id,
                    action=request.action,
                )
            )
            for index, request in enumerate(unique)
        ]

        result = BatchResult(batch_id=batch_id, duplicates=duplicates)
        for operation in pending:
            operation = self._save(operation, status=BulkOperationStatus.PROCESSING)
            try:
                self.machine.set_status(
                    trip_id,
                    operation.student_id,
                    ACTION_TARGET_STATUS[operation.action],
                    CheckInMethod.MANUAL,
                    actor_id,
                    position=position,
                    batch_id=batch_id,
                )
            except Exception as e:
                logger.warning(f"[Bulk] {operation.student_id} failed in {batch_id}: {e}")
                operation = self._save(operation, status=BulkOperationStatus.FAILED, error=str(e))
                result.failed += 1
            else:
                operation = self._save(operation, status=BulkOperationStatus.COMPLETED)
                result.processed += 1
            result.operations.append(operation)

        logger.info(f"[Bulk] Batch {batch_id} done: {result.processed} ok, {result.failed} failed")
        return result
