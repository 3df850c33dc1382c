"""
SIMPAS remote writer.

Posts create / follow-up commands to the sheet's Apps Script endpoint.
Delivery is a single attempt and the response body is never read: the
script gives no acknowledgement worth trusting. Reconciliation against
the next sheet fetch is what confirms a write.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import requests

from records import FollowUpStatus, ViolationRecord

logger = logging.getLogger(__name__)

UPDATE_FOLLOW_UP_ACTION: str = "update_tindak_lanjut"


def build_create_payload(violation: ViolationRecord) -> dict[str, Any]:
    """Field names expected by the sheet script for a new row."""
    return {
        "nis": violation.student_number,
        "nama": violation.full_name,
        "jk": violation.sex,
        "kelas": violation.class_label,
        "wali_kelas": violation.homeroom_teacher,
        "kontak_ortu": violation.parent_contact,
        "tanggal": violation.occurrence_date,
        "jenis_pelanggaran": violation.violation_type_label,
        "kategori_pelanggaran": violation.category.value,
        "lokasi": violation.location,
        "deskripsi": violation.description,
        "status_tindak_lanjut": violation.follow_up_status.value,
        "hasil_tindak_lanjut": violation.follow_up_result,
        "poin_pelanggaran": violation.point_value,
        "pelapor": violation.reporter,
    }


def build_follow_up_payload(
    violation_code: str,
    result: str,
    status: FollowUpStatus = FollowUpStatus.RESOLVED,
) -> dict[str, Any]:
    return {
        "action": UPDATE_FOLLOW_UP_ACTION,
        "kode_pelanggaran": violation_code,
        "status_tindak_lanjut": status.value,
        "hasil_tindak_lanjut": result,
    }


class RemoteWriter:
    def __init__(
        self,
        script_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = 15.0,
    ):
        self.script_url = script_url
        self.session = session or requests.Session()
        self.timeout = timeout

    def send(self, payload: dict[str, Any]) -> bool:
        """
        Fire one POST. Returns True when the request went out without a
        transport error. The HTTP status and body are not inspected.
        """
        if not self.script_url:
            logger.warning("No script URL configured; write kept locally only")
            return False
        try:
            self.session.post(
                self.script_url,
                data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
                headers={"Content-Type": "text/plain"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("Remote write failed (kept locally): %s", e)
            return False
        return True
