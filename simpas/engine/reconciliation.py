"""
SIMPAS Reconciliation Engine

Merges the sheet's violation list (authoritative baseline) with the local
write buffer (optimistic writes not yet visible in the sheet).

POLICY
------
Local entry with no sheet row for its code:
  - fuzzy duplicate of a sheet row  -> REMOTE_ABSORBED, dropped
  - otherwise                       -> UNSYNCED, appended and kept
Local entry with a sheet row for its code:
  - same follow-up status           -> REMOTE_CONFIRMED_MATCHING, dropped
  - differs, written < 10 min ago   -> REMOTE_CONFLICT_RECENT, overrides and kept
  - differs, older                  -> REMOTE_CONFLICT_STALE, dropped

The kept entries form the next buffer snapshot; the caller rewrites the
stored buffer wholesale with it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Optional, Sequence

from records import LocalWriteRecord, ViolationRecord, utc_now

logger = logging.getLogger(__name__)

RECENT_WRITE_WINDOW: timedelta = timedelta(minutes=10)
SEQUENCE_CODE_PREFIX: str = "CPS-"


class SyncState(str, Enum):
    UNSYNCED = "unsynced"
    REMOTE_ABSORBED = "remote_absorbed"
    REMOTE_CONFIRMED_MATCHING = "remote_confirmed_matching"
    REMOTE_CONFLICT_RECENT = "remote_conflict_recent"
    REMOTE_CONFLICT_STALE = "remote_conflict_stale"


# States whose local entry survives into the next buffer snapshot
KEEP_STATES: frozenset[SyncState] = frozenset({
    SyncState.UNSYNCED,
    SyncState.REMOTE_CONFLICT_RECENT,
})


@dataclass
class ReconcileResult:
    merged: list[ViolationRecord]
    valid_local: list[LocalWriteRecord]
    states: dict[str, SyncState] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Per-record rules
# ---------------------------------------------------------------------------


def is_recent(
    local: LocalWriteRecord,
    now: datetime,
    window: timedelta = RECENT_WRITE_WINDOW,
) -> bool:
    if local.local_write_timestamp is None:
        return False
    return now - local.local_write_timestamp < window


def is_fuzzy_duplicate(local: ViolationRecord, remote: ViolationRecord) -> bool:
    """Same real-world event recorded under a different code."""
    return (
        remote.student_number == local.student_number
        and remote.violation_type_label == local.violation_type_label
        and remote.point_value == local.point_value
        and (remote.description or "").strip() == (local.description or "").strip()
    )


def classify(
    local: LocalWriteRecord,
    remote_by_code: dict[str, ViolationRecord],
    remote: Sequence[ViolationRecord],
    now: datetime,
    window: timedelta = RECENT_WRITE_WINDOW,
) -> SyncState:
    counterpart = remote_by_code.get(local.violation_code)

    if counterpart is None:
        if any(is_fuzzy_duplicate(local.violation, r) for r in remote):
            return SyncState.REMOTE_ABSORBED
        return SyncState.UNSYNCED

    if counterpart.follow_up_status == local.violation.follow_up_status:
        return SyncState.REMOTE_CONFIRMED_MATCHING
    if is_recent(local, now, window):
        return SyncState.REMOTE_CONFLICT_RECENT
    return SyncState.REMOTE_CONFLICT_STALE


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


def reconcile(
    remote_violations: Sequence[ViolationRecord],
    local_write_buffer: Iterable[LocalWriteRecord],
    now: Optional[datetime] = None,
    window: timedelta = RECENT_WRITE_WINDOW,
) -> ReconcileResult:
    """
    Merge sheet violations with the local write buffer.

    Parameters
    ----------
    remote_violations : sequence of ViolationRecord
        Latest sheet snapshot, in sheet order.
    local_write_buffer : iterable of LocalWriteRecord
        Buffered local creates and status edits.
    now : datetime, optional
        Clock for the staleness rule. Defaults to the current UTC time.

    Returns
    -------
    ReconcileResult
        merged list (sheet order, then unsynced local entries in buffer
        order), the surviving buffer entries, and the state per code.
    """
    clock = now or utc_now()
    remote_by_code: dict[str, ViolationRecord] = {}
    for r in remote_violations:
        remote_by_code[r.violation_code] = r

    merged: list[ViolationRecord] = list(remote_violations)
    valid_local: list[LocalWriteRecord] = []
    states: dict[str, SyncState] = {}

    for local in local_write_buffer:
        if local is None or not local.violation_code:
            continue

        state = classify(local, remote_by_code, remote_violations, clock, window)
        states[local.violation_code] = state
        logger.debug("Local %s -> %s", local.violation_code, state.value)

        if state is SyncState.UNSYNCED:
            merged.append(local.violation)
        elif state is SyncState.REMOTE_CONFLICT_RECENT:
            for i, v in enumerate(merged):
                if v.violation_code == local.violation_code:
                    merged[i] = local.violation
                    break

        if state in KEEP_STATES:
            valid_local.append(local)

    return ReconcileResult(merged=merged, valid_local=valid_local, states=states)


def remote_ids(remote_violations: Iterable[ViolationRecord]) -> frozenset[str]:
    """Identifiers present in the sheet snapshot."""
    return frozenset(v.stable_id for v in remote_violations)


def remote_confirmed(
    merged: Iterable[ViolationRecord],
    known_ids: frozenset[str],
) -> list[ViolationRecord]:
    """Merged violations the sheet already knows about, by identifier."""
    return [v for v in merged if v.stable_id in known_ids]


def next_sequence_code(merged_count: int) -> str:
    """Advisory display code for the next record, e.g. CPS-007."""
    return f"{SEQUENCE_CODE_PREFIX}{merged_count + 1:03d}"
