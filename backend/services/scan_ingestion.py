"""
Scan ingestion: raw badge payload -> passenger status transition.

A badge encodes a small JSON document:

    {"studentId": "S1", "studentName": "Ana", "schoolId": "SCH1",
     "timestamp": 1700000000000, "signature": "..."}

Plain-text badges carrying only the student id are accepted too.
Repeated scans of the same student inside the replay window are dropped
silently; the window is tracked per student, so different students never
wait on each other.
"""

import hashlib
import hmac
import json
import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from config import config
from errors import TripCoreError
from models import (
    CheckInMethod,
    Coordinates,
    PassengerStatusValue,
    ScanOutcome,
    ScanOutcomeKind,
    StudentStop,
    TripMode,
)
from services.trip_status_machine import TripStatusMachine

logger = logging.getLogger(__name__)


MODE_TARGET_STATUS = {
    TripMode.PICKUP: PassengerStatusValue.BOARDED,
    TripMode.DROPOFF: PassengerStatusValue.DROPPED,
}


def sign_badge(student_id: str, school_id: str, secret: str) -> str:
    message = f"{student_id}-{school_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def build_scan_payload(student: StudentStop, school_id: str, secret: Optional[str] = None) -> str:
    """JSON payload to print on a student's QR badge."""
    payload = {
        "studentId": student.id,
        "studentName": student.name,
        "schoolId": school_id,
        "timestamp": int(time.time() * 1000),
    }
    key = config.QR_SECRET_KEY if secret is None else secret
    if key:
        payload["signature"] = sign_badge(student.id, school_id, key)
    return json.dumps(payload)


def parse_scan_payload(raw_payload: str) -> Tuple[Optional[str], Dict]:
    """
    Extract the student identifier from a scanned payload.

    Returns (identifier, parsed_document). When the payload is not a JSON
    object with a student id, the stripped raw text is the identifier.
    """
    text = (raw_payload or "").strip()
    try:
        data = json.loads(text)
    except ValueError:
        data = None

    if isinstance(data, dict):
        student_id = data.get("studentId") or data.get("student_id")
        if student_id:
            return str(student_id).strip(), data

    return (text or None), {}


class ScanIngestionPipeline:
    """Turns scans into `qr` status transitions through the state machine."""

    def __init__(
        self,
        machine: TripStatusMachine,
        replay_window_seconds: Optional[float] = None,
        secret: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.machine = machine
        self.replay_window = (
            config.SCAN_REPLAY_WINDOW_SECONDS if replay_window_seconds is None else replay_window_seconds
        )
        self.secret = config.QR_SECRET_KEY if secret is None else secret
        self._clock = clock
        self._last_scan: Dict[Tuple[str, str], float] = {}
        self._lock = threading.Lock()
        self._stats = {"applied": 0, "suppressed": 0, "unknown": 0}

    def _claim(self, trip_id: str, identifier: str) -> Tuple[bool, Optional[float]]:
        """
        Check-and-record under one short lock; other identifiers are unaffected.

        Returns (is_replay, previous_timestamp). The previous timestamp is
        handed back to _release when the scan ends up not being applied.
        """
        now = self._clock()
        key = (trip_id, identifier)
        with self._lock:
            last = self._last_scan.get(key)
            if last is not None and now - last < self.replay_window:
                return True, last
            self._last_scan[key] = now
            if len(self._last_scan) > 1000:
                cutoff = now - self.replay_window
                self._last_scan = {k: v for k, v in self._last_scan.items() if v >= cutoff}
        return False, last

    def _release(self, trip_id: str, identifier: str, previous: Optional[float]) -> None:
        key = (trip_id, identifier)
        with self._lock:
            if previous is None:
                self._last_scan.pop(key, None)
            else:
                self._last_scan[key] = previous

    def _signature_ok(self, document: Dict) -> bool:
        if not self.secret or "signature" not in document:
            return True
        expected = sign_badge(
            str(document.get("studentId") or document.get("student_id")),
            str(document.get("schoolId", "")),
            self.secret,
        )
        return hmac.compare_digest(str(document["signature"]), expected)

    def _unknown(self, raw_payload: str, identifier: Optional[str], message: str) -> ScanOutcome:
        self._stats["unknown"] += 1
        logger.warning(f"[Scan] {message}")
        return ScanOutcome(
            kind=ScanOutcomeKind.UNKNOWN_CODE,
            raw_payload=raw_payload,
            student_id=identifier,
            feedback="error",
            message=message,
        )

    def ingest(
        self,
        trip_id: str,
        raw_payload: str,
        mode: TripMode,
        actor_id: str,
        position: Optional[Coordinates] = None,
    ) -> ScanOutcome:
        """
        Process one scan.

        Returns:
            ScanOutcome: applied, suppressed (replay) or unknown_code.

        Raises:
            Any TripStatusMachine error (NotAuthorized, InvalidStateTransition, ...)
        """
        identifier, document = parse_scan_payload(raw_payload)
        if identifier is None:
            return self._unknown(raw_payload, None, "Empty scan payload")

        is_replay, previous = self._claim(trip_id, identifier)
        if is_replay:
            self._stats["suppressed"] += 1
            logger.debug(f"[Scan] Suppressed repeat scan of {identifier}")
            return ScanOutcome(
                kind=ScanOutcomeKind.SUPPRESSED,
                raw_payload=raw_payload,
                student_id=identifier,
                message="Repeat scan ignored",
            )

        if not self._signature_ok(document):
            self._release(trip_id, identifier, previous)
            return self._unknown(raw_payload, identifier, f"Invalid badge signature for {identifier}")

        target = MODE_TARGET_STATUS[TripMode(mode)]
        try:
            trip = self.machine.require_trip(trip_id)
            self.machine.require_supervisor(trip, actor_id)
            if identifier not in trip.roster:
                self._release(trip_id, identifier, previous)
                return self._unknown(raw_payload, identifier, f"Code {identifier} is not on trip {trip_id}")

            record = self.machine.set_status(
                trip_id,
                identifier,
                target,
                CheckInMethod.QR,
                actor_id,
                position=position,
            )
        except TripCoreError:
            self._release(trip_id, identifier, previous)
            raise
        self._stats["applied"] += 1
        return ScanOutcome(
            kind=ScanOutcomeKind.APPLIED,
            raw_payload=raw_payload,
            student_id=identifier,
            status=record,
            feedback="success",
            message=f"Student {identifier} {target.value}",
        )

    @property
    def stats(self) -> Dict[str, int]:
        return self._stats.copy()
