"""
SIMPAS Write-intent buffer.

Persists locally issued creates and follow-up edits until reconciliation
decides the sheet has caught up. Stored as one JSON array under
LOCAL_WRITE_BUFFER_KEY.

Persistence failures are logged and swallowed: the in-memory update the
user just made must never be blocked by storage.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Iterable, Optional

from kv_store import LOCAL_WRITE_BUFFER_KEY, KeyValueStore
from records import LocalWriteRecord, ViolationRecord, utc_now

logger = logging.getLogger(__name__)


class WriteBuffer:
    def __init__(self, store: KeyValueStore, key: str = LOCAL_WRITE_BUFFER_KEY):
        self.store = store
        self.key = key

    def load(self) -> list[LocalWriteRecord]:
        """Read the buffer. Corrupt or non-list content reads as empty."""
        raw = self.store.get(self.key)
        if not raw:
            return []
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("Error parsing local write buffer: %s", e)
            return []
        if not isinstance(payload, list):
            logger.error("Local write buffer is not a list; ignoring it")
            return []

        entries: list[LocalWriteRecord] = []
        for item in payload:
            if not isinstance(item, dict) or not item.get("violation_code"):
                continue
            try:
                entries.append(LocalWriteRecord.from_dict(item))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning("Skipping unreadable buffer entry: %s", e)
        return entries

    def replace(self, entries: Iterable[LocalWriteRecord]) -> bool:
        """Rewrite the whole buffer. Returns False if storage failed."""
        try:
            self.store.set(
                self.key,
                json.dumps([e.to_dict() for e in entries], ensure_ascii=False),
            )
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to save local write buffer: %s", e)
            return False
        return True

    def record_create(
        self,
        violation: ViolationRecord,
        now: Optional[datetime] = None,
    ) -> LocalWriteRecord:
        entry = LocalWriteRecord(violation=violation, local_write_timestamp=now or utc_now())
        self.replace(self.load() + [entry])
        return entry

    def record_update(
        self,
        violation: ViolationRecord,
        now: Optional[datetime] = None,
    ) -> LocalWriteRecord:
        """Replace the entry with the same stable_id, or append one."""
        entry = LocalWriteRecord(violation=violation, local_write_timestamp=now or utc_now())
        entries = self.load()
        for i, existing in enumerate(entries):
            if existing.violation.stable_id == violation.stable_id:
                entries[i] = entry
                break
        else:
            entries.append(entry)
        self.replace(entries)
        return entry

    def clear(self) -> None:
        try:
            self.store.delete(self.key)
        except OSError as e:
            logger.error("Failed to clear local write buffer: %s", e)
