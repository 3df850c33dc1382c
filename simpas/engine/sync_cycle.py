"""
SIMPAS sync cycle.

One cycle = fetch students + violations (with cache fallback), reconcile
the violations against the local write buffer, rewrite the buffer, publish
a new snapshot. Also hosts the two optimistic user actions: recording a
new violation and resolving a follow-up.

Cycles are serialized. A trigger that arrives while a cycle is running is
dropped and the last completed snapshot is returned, so a slow cycle can
never overwrite the result of a newer one.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import Callable, Optional

import requests

from aggregation import pending_follow_ups
from csv_decoder import STUDENT_SCHEMA, VIOLATION_SCHEMA
from fetch_fallback import NoDataAvailable, fetch_with_fallback
from kv_store import CACHE_STUDENTS_KEY, CACHE_VIOLATIONS_KEY, KeyValueStore
from reconciliation import (
    RECENT_WRITE_WINDOW,
    SyncState,
    next_sequence_code,
    reconcile,
    remote_confirmed,
    remote_ids,
)
from records import (
    FollowUpStatus,
    StudentRecord,
    ViolationRecord,
    find_violation_type,
    utc_now,
)
from remote_writer import RemoteWriter, build_create_payload, build_follow_up_payload
from write_buffer import WriteBuffer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notice:
    level: str  # "success" | "warning" | "error"
    message: str


@dataclass(frozen=True)
class SyncSnapshot:
    students: list[StudentRecord] = field(default_factory=list)
    violations: list[ViolationRecord] = field(default_factory=list)
    known_ids: frozenset[str] = frozenset()
    states: dict[str, SyncState] = field(default_factory=dict)
    served_from_cache: bool = False
    notice: Optional[Notice] = None
    completed_at: Optional[datetime] = None

    @property
    def confirmed_violations(self) -> list[ViolationRecord]:
        """Violations the sheet already has. Dashboards and follow-ups use these."""
        return remote_confirmed(self.violations, self.known_ids)

    @property
    def pending_follow_ups(self) -> list[ViolationRecord]:
        return pending_follow_ups(self.confirmed_violations)

    @property
    def next_code(self) -> str:
        return next_sequence_code(len(self.violations))


@dataclass(frozen=True)
class WriteOutcome:
    violation: ViolationRecord
    delivered: bool


class SyncEngine:
    def __init__(
        self,
        store: KeyValueStore,
        students_url: str,
        violations_url: str,
        writer: RemoteWriter,
        session: Optional[requests.Session] = None,
        timeout: float = 15.0,
        recent_window: timedelta = RECENT_WRITE_WINDOW,
        manual_refresh_floor: float = 1.0,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
        today: Callable[[], date] = date.today,
    ):
        self.store = store
        self.students_url = students_url
        self.violations_url = violations_url
        self.writer = writer
        self.session = session
        self.timeout = timeout
        self.recent_window = recent_window
        self.manual_refresh_floor = manual_refresh_floor
        self.clock = clock
        self.sleep = sleep
        self.today = today
        self.buffer = WriteBuffer(store)
        self.snapshot = SyncSnapshot()
        self._cycle_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Fetch -> reconcile
    # ------------------------------------------------------------------

    def run_cycle(self, manual: bool = False) -> SyncSnapshot:
        if not self._cycle_lock.acquire(blocking=False):
            logger.info("Sync cycle already running; trigger dropped")
            return self.snapshot

        started = time.monotonic()
        try:
            self.snapshot = self._cycle(manual)
            return self.snapshot
        finally:
            if manual:
                remaining = self.manual_refresh_floor - (time.monotonic() - started)
                if remaining > 0:
                    self.sleep(remaining)
            self._cycle_lock.release()

    def _cycle(self, manual: bool) -> SyncSnapshot:
        try:
            students = fetch_with_fallback(
                self.students_url, CACHE_STUDENTS_KEY, STUDENT_SCHEMA,
                self.store, session=self.session, timeout=self.timeout,
            )
            violations = fetch_with_fallback(
                self.violations_url, CACHE_VIOLATIONS_KEY, VIOLATION_SCHEMA,
                self.store, session=self.session, timeout=self.timeout,
            )
        except NoDataAvailable as e:
            logger.error("No data available: %s", e.reason)
            # Keep whatever is already in memory
            return replace(
                self.snapshot,
                notice=Notice("error", f"Could not load data: {e.reason}"),
            )

        now = self.clock()
        result = reconcile(
            violations.records,
            self.buffer.load(),
            now=now,
            window=self.recent_window,
        )
        self.buffer.replace(result.valid_local)

        from_cache = students.served_from_cache or violations.served_from_cache
        notice = None
        if manual:
            notice = (
                Notice("warning", "Unstable connection. Showing offline data.")
                if from_cache
                else Notice("success", "Data refreshed.")
            )

        logger.info(
            "Sync cycle: %d students, %d sheet violations, %d merged, %d pending local",
            len(students.records), len(violations.records),
            len(result.merged), len(result.valid_local),
        )
        return SyncSnapshot(
            students=students.records,
            violations=result.merged,
            known_ids=remote_ids(violations.records),
            states=result.states,
            served_from_cache=from_cache,
            notice=notice,
            completed_at=now,
        )

    # ------------------------------------------------------------------
    # Optimistic user actions
    # ------------------------------------------------------------------

    def add_violation(
        self,
        student: Optional[StudentRecord],
        violation_label: str,
        occurrence_date: Optional[date] = None,
        location: str = "",
        description: str = "",
        reporter: str = "",
        follow_up_status: FollowUpStatus = FollowUpStatus.PENDING,
        follow_up_result: str = "",
    ) -> WriteOutcome:
        """
        Record a new violation.

        Category and points always come from the catalog. The record is
        applied locally only when the POST went out; a failed delivery is
        reported and nothing is buffered, since no retry would ever send it.
        Without an occurrence_date the local calendar date is used, not the
        UTC date of the clock.

        Raises
        ------
        ValueError
            No student selected, or the label is not in the catalog.
        """
        if student is None:
            raise ValueError("Select a student first")
        violation_type = find_violation_type(violation_label)
        if violation_type is None:
            raise ValueError(f"Unknown violation type: {violation_label!r}")

        now = self.clock()
        violation = ViolationRecord(
            stable_id=str(uuid.uuid4()),
            student_number=student.student_number,
            full_name=student.full_name,
            sex=student.sex,
            class_label=student.class_label,
            homeroom_teacher=student.homeroom_teacher,
            parent_contact=student.parent_contact,
            violation_code=self.snapshot.next_code,
            occurrence_date=(occurrence_date or self.today()).isoformat(),
            violation_type_label=violation_type.label,
            category=violation_type.category,
            point_value=violation_type.points,
            location=location,
            description=description,
            follow_up_status=follow_up_status,
            follow_up_result=follow_up_result,
            reporter=reporter,
            created_at=now,
        )

        delivered = self.writer.send(build_create_payload(violation))
        if not delivered:
            return WriteOutcome(violation=violation, delivered=False)

        self.snapshot = replace(self.snapshot, violations=[violation] + self.snapshot.violations)
        self.buffer.record_create(violation, now=now)
        return WriteOutcome(violation=violation, delivered=True)

    def resolve_follow_up(self, violation: ViolationRecord, result: str) -> WriteOutcome:
        """
        Close a follow-up. The local change is kept even when delivery
        fails, so the queue reflects what staff did; reconciliation
        expires it after the recent-write window if the sheet never agrees.

        Raises
        ------
        ValueError
            Empty result text.
        """
        text = (result or "").strip()
        if not text:
            raise ValueError("Fill in the follow-up result")

        updated = violation.resolved(text)
        delivered = self.writer.send(build_follow_up_payload(updated.violation_code, text))

        self.snapshot = replace(
            self.snapshot,
            violations=[
                updated if v.stable_id == updated.stable_id else v
                for v in self.snapshot.violations
            ],
        )
        self.buffer.record_update(updated, now=self.clock())
        return WriteOutcome(violation=updated, delivered=delivered)
