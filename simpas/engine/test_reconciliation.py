"""
SIMPAS Reconciliation Test Suite

Every POLICY branch, the staleness cutoff, idempotence, and the
end-to-end follow-up scenario. Fixed clock throughout.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

from reconciliation import (
    SyncState,
    classify,
    is_fuzzy_duplicate,
    next_sequence_code,
    reconcile,
    remote_confirmed,
    remote_ids,
)
from records import Category, FollowUpStatus, LocalWriteRecord, ViolationRecord


NOW = datetime(2024, 6, 1, 8, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_violation(code="A1", **overrides):
    base = dict(
        stable_id=code,
        student_number="1001",
        full_name="Budi Santoso",
        violation_code=code,
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        violation_type_label="Terlambat masuk kelas",
        category=Category.LIGHT,
        point_value=5,
        description="Datang 07.30",
        follow_up_status=FollowUpStatus.PENDING,
    )
    base.update(overrides)
    return ViolationRecord(**base)


def local(violation, age=timedelta(0)):
    return LocalWriteRecord(violation=violation, local_write_timestamp=NOW - age)


# ---------------------------------------------------------------------------
# Local entries without a sheet counterpart
# ---------------------------------------------------------------------------

class TestUnsynced:
    def test_new_local_appended_and_kept(self):
        remote = [make_violation("A1")]
        new = local(make_violation("CPS-002", student_number="1002", description="Lain"))
        result = reconcile(remote, [new], now=NOW)
        assert [v.violation_code for v in result.merged] == ["A1", "CPS-002"]
        assert result.valid_local == [new]
        assert result.states["CPS-002"] is SyncState.UNSYNCED

    def test_unsynced_survives_regardless_of_age(self):
        new = local(make_violation("CPS-002", student_number="1002"), age=timedelta(days=3))
        result = reconcile([], [new], now=NOW)
        assert result.valid_local == [new]

    def test_fuzzy_duplicate_dropped(self):
        remote = [make_violation("ROW-9", description="  Datang 07.30 ")]
        dup = local(make_violation("CPS-002"))
        result = reconcile(remote, [dup], now=NOW)
        assert [v.violation_code for v in result.merged] == ["ROW-9"]
        assert result.valid_local == []
        assert result.states["CPS-002"] is SyncState.REMOTE_ABSORBED

    def test_different_points_is_not_a_duplicate(self):
        remote = [make_violation("ROW-9")]
        other = local(make_violation("CPS-002", point_value=10))
        result = reconcile(remote, [other], now=NOW)
        assert len(result.merged) == 2

    def test_entries_without_code_skipped(self):
        blank = local(make_violation(""))
        result = reconcile([make_violation("A1")], [blank], now=NOW)
        assert [v.violation_code for v in result.merged] == ["A1"]
        assert result.valid_local == []


# ---------------------------------------------------------------------------
# Local entries with a sheet counterpart
# ---------------------------------------------------------------------------

class TestConflicts:
    def test_matching_status_dropped(self):
        remote = [make_violation("A1", follow_up_status=FollowUpStatus.RESOLVED)]
        edit = local(make_violation("A1", follow_up_status=FollowUpStatus.RESOLVED))
        result = reconcile(remote, [edit], now=NOW)
        assert result.valid_local == []
        assert result.states["A1"] is SyncState.REMOTE_CONFIRMED_MATCHING

    def test_recent_conflict_overrides_nine_minutes(self):
        remote = [make_violation("A0"), make_violation("A1")]
        edit = local(
            make_violation("A1", follow_up_status=FollowUpStatus.RESOLVED, follow_up_result="Dibina"),
            age=timedelta(minutes=9),
        )
        result = reconcile(remote, [edit], now=NOW)
        assert result.merged[1].follow_up_status is FollowUpStatus.RESOLVED
        assert result.merged[1].follow_up_result == "Dibina"
        assert [v.violation_code for v in result.merged] == ["A0", "A1"]
        assert result.valid_local == [edit]

    def test_stale_conflict_ten_minutes_one_second(self):
        remote = [make_violation("A1")]
        edit = local(
            make_violation("A1", follow_up_status=FollowUpStatus.RESOLVED),
            age=timedelta(minutes=10, seconds=1),
        )
        result = reconcile(remote, [edit], now=NOW)
        assert result.merged[0].follow_up_status is FollowUpStatus.PENDING
        assert result.valid_local == []
        assert result.states["A1"] is SyncState.REMOTE_CONFLICT_STALE

    def test_exactly_ten_minutes_is_stale(self):
        edit = local(make_violation("A1", follow_up_status=FollowUpStatus.RESOLVED), age=timedelta(minutes=10))
        result = reconcile([make_violation("A1")], [edit], now=NOW)
        assert result.valid_local == []

    def test_missing_timestamp_is_never_recent(self):
        edit = LocalWriteRecord(violation=make_violation("A1", follow_up_status=FollowUpStatus.RESOLVED))
        result = reconcile([make_violation("A1")], [edit], now=NOW)
        assert result.merged[0].follow_up_status is FollowUpStatus.PENDING
        assert result.valid_local == []

    def test_override_replaces_first_slot_with_code(self):
        remote = [make_violation("DUP", description="x"), make_violation("DUP", description="y")]
        edit = local(make_violation("DUP", follow_up_status=FollowUpStatus.RESOLVED, description="z"))
        result = reconcile(remote, [edit], now=NOW)
        assert [v.description for v in result.merged] == ["z", "y"]


# ---------------------------------------------------------------------------
# Whole-cycle properties
# ---------------------------------------------------------------------------

class TestCycles:
    def test_end_to_end_follow_up(self):
        remote = [make_violation("A1")]
        edit = local(replace(remote[0], follow_up_status=FollowUpStatus.RESOLVED, follow_up_result="Selesai"))

        first = reconcile(remote, [edit], now=NOW)
        assert first.merged[0].follow_up_status is FollowUpStatus.RESOLVED
        assert first.valid_local == [edit]

        # Sheet catches up: next cycle clears the buffer
        caught_up = [replace(remote[0], follow_up_status=FollowUpStatus.RESOLVED)]
        second = reconcile(caught_up, first.valid_local, now=NOW + timedelta(seconds=30))
        assert second.valid_local == []
        assert second.merged[0].follow_up_status is FollowUpStatus.RESOLVED

    def test_idempotent_with_confirmed_buffer(self):
        remote = [make_violation("A1", follow_up_status=FollowUpStatus.RESOLVED)]
        buffer = [local(make_violation("A1", follow_up_status=FollowUpStatus.RESOLVED))]
        first = reconcile(remote, buffer, now=NOW)
        second = reconcile(remote, first.valid_local, now=NOW)
        assert first.valid_local == []
        assert second.valid_local == []
        assert second.merged == remote

    def test_inputs_not_mutated(self):
        remote = [make_violation("A1")]
        buffer = [local(make_violation("A1", follow_up_status=FollowUpStatus.RESOLVED))]
        reconcile(remote, buffer, now=NOW)
        assert remote[0].follow_up_status is FollowUpStatus.PENDING
        assert len(buffer) == 1


# ---------------------------------------------------------------------------
# State machine, membership and sequence codes
# ---------------------------------------------------------------------------

class TestHelpers:
    def test_classify_directly(self):
        remote = [make_violation("A1")]
        by_code = {"A1": remote[0]}
        recent = local(make_violation("A1", follow_up_status=FollowUpStatus.RESOLVED))
        assert classify(recent, by_code, remote, NOW) is SyncState.REMOTE_CONFLICT_RECENT

    def test_fuzzy_duplicate_trims_descriptions(self):
        assert is_fuzzy_duplicate(make_violation("X", description=" a "), make_violation("Y", description="a"))

    def test_membership_excludes_local_only(self):
        remote = [make_violation("A1")]
        result = reconcile(remote, [local(make_violation("CPS-002", student_number="1002"))], now=NOW)
        confirmed = remote_confirmed(result.merged, remote_ids(remote))
        assert [v.violation_code for v in confirmed] == ["A1"]
        assert len(result.merged) == 2

    def test_sequence_code_padding(self):
        assert next_sequence_code(0) == "CPS-001"
        assert next_sequence_code(41) == "CPS-042"
        assert next_sequence_code(1234) == "CPS-1235"
