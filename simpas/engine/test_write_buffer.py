"""
SIMPAS Write Buffer & Store Test Suite
"""

import json
import threading
from datetime import datetime, timedelta, timezone

from kv_store import LOCAL_WRITE_BUFFER_KEY, JsonFileStore, MemoryStore
from records import Category, FollowUpStatus, LocalWriteRecord, ViolationRecord
from write_buffer import WriteBuffer


NOW = datetime(2024, 6, 1, 8, 0, 0, tzinfo=timezone.utc)


def make_violation(code="CPS-001", stable_id=None, **overrides):
    base = dict(
        stable_id=stable_id or code,
        student_number="1001",
        full_name="Budi Santoso",
        violation_code=code,
        created_at=NOW,
        violation_type_label="Mencuri",
        category=Category.SEVERE,
        point_value=75,
    )
    base.update(overrides)
    return ViolationRecord(**base)


class FailingStore(MemoryStore):
    def set(self, key, value):
        raise OSError("disk full")


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

class TestLoad:
    def test_missing_key_is_empty(self):
        assert WriteBuffer(MemoryStore()).load() == []

    def test_corrupt_json_is_empty(self):
        store = MemoryStore({LOCAL_WRITE_BUFFER_KEY: "[{oops"})
        assert WriteBuffer(store).load() == []

    def test_non_list_is_empty(self):
        store = MemoryStore({LOCAL_WRITE_BUFFER_KEY: json.dumps({"violation_code": "X"})})
        assert WriteBuffer(store).load() == []

    def test_entries_without_code_skipped(self):
        good = LocalWriteRecord(make_violation(), NOW).to_dict()
        payload = [good, {"violation_code": ""}, None, "junk"]
        store = MemoryStore({LOCAL_WRITE_BUFFER_KEY: json.dumps(payload)})
        entries = WriteBuffer(store).load()
        assert [e.violation_code for e in entries] == ["CPS-001"]

    def test_unreadable_entry_skipped(self):
        broken = {"violation_code": "CPS-002", "student_number": "1001", "created_at": "not a date"}
        good = LocalWriteRecord(make_violation(), NOW).to_dict()
        store = MemoryStore({LOCAL_WRITE_BUFFER_KEY: json.dumps([broken, good])})
        assert [e.violation_code for e in WriteBuffer(store).load()] == ["CPS-001"]


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------

class TestWrite:
    def test_record_create_round_trips(self):
        buffer = WriteBuffer(MemoryStore())
        buffer.record_create(make_violation(), now=NOW)
        (entry,) = buffer.load()
        assert entry.violation == make_violation()
        assert entry.local_write_timestamp == NOW

    def test_record_update_replaces_by_stable_id(self):
        buffer = WriteBuffer(MemoryStore())
        buffer.record_create(make_violation(stable_id="uuid-1"), now=NOW)
        buffer.record_create(make_violation("CPS-002", stable_id="uuid-2"), now=NOW)

        later = NOW + timedelta(minutes=1)
        resolved = make_violation(stable_id="uuid-1").resolved("Dibina")
        buffer.record_update(resolved, now=later)

        entries = buffer.load()
        assert [e.violation.stable_id for e in entries] == ["uuid-1", "uuid-2"]
        assert entries[0].violation.follow_up_status is FollowUpStatus.RESOLVED
        assert entries[0].local_write_timestamp == later

    def test_record_update_appends_unknown(self):
        buffer = WriteBuffer(MemoryStore())
        buffer.record_update(make_violation("A1").resolved("Selesai"), now=NOW)
        assert [e.violation_code for e in buffer.load()] == ["A1"]

    def test_replace_is_wholesale(self):
        buffer = WriteBuffer(MemoryStore())
        buffer.record_create(make_violation("A"), now=NOW)
        buffer.record_create(make_violation("B"), now=NOW)
        buffer.replace([])
        assert buffer.load() == []

    def test_storage_failure_reported_not_raised(self):
        buffer = WriteBuffer(FailingStore())
        assert buffer.replace([LocalWriteRecord(make_violation(), NOW)]) is False
        # create still returns its entry for the caller
        assert buffer.record_create(make_violation(), now=NOW).violation_code == "CPS-001"

    def test_clear(self):
        store = MemoryStore()
        buffer = WriteBuffer(store)
        buffer.record_create(make_violation(), now=NOW)
        buffer.clear()
        assert store.get(LOCAL_WRITE_BUFFER_KEY) is None


# ---------------------------------------------------------------------------
# JSON file store
# ---------------------------------------------------------------------------

class TestJsonFileStore:
    def test_set_get_delete(self, tmp_path):
        store = JsonFileStore(tmp_path / "store.json")
        assert store.get("k") is None
        store.set("k", "v")
        assert store.get("k") == "v"
        store.delete("k")
        assert store.get("k") is None

    def test_creates_parent_directories(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "store.json"
        JsonFileStore(path).set("k", "v")
        assert json.loads(path.read_text(encoding="utf-8")) == {"k": "v"}

    def test_second_instance_sees_writes(self, tmp_path):
        path = tmp_path / "store.json"
        JsonFileStore(path).set("k", "v")
        assert JsonFileStore(path).get("k") == "v"

    def test_unreadable_file_treated_as_empty(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("not json", encoding="utf-8")
        store = JsonFileStore(path)
        assert store.get("k") is None
        store.set("k", "v")
        assert store.get("k") == "v"

    def test_buffer_persists_across_instances(self, tmp_path):
        path = tmp_path / "store.json"
        WriteBuffer(JsonFileStore(path)).record_create(make_violation(), now=NOW)
        (entry,) = WriteBuffer(JsonFileStore(path)).load()
        assert entry.violation_code == "CPS-001"
        assert entry.local_write_timestamp == NOW

    def test_concurrent_writers_keep_both_keys(self, tmp_path):
        path = tmp_path / "store.json"
        errors = []

        def write_many(key):
            store = JsonFileStore(path)
            try:
                for i in range(300):
                    store.set(key, json.dumps([i]))
            except Exception as e:
                errors.append(e)

        threads = [
            threading.Thread(target=write_many, args=(LOCAL_WRITE_BUFFER_KEY,)),
            threading.Thread(target=write_many, args=("cache:violations",)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        store = JsonFileStore(path)
        assert json.loads(store.get(LOCAL_WRITE_BUFFER_KEY)) == [299]
        assert json.loads(store.get("cache:violations")) == [299]
