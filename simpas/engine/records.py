"""
SIMPAS Records: data model shared by every engine module.

Students and violations arrive from the school spreadsheet; the spreadsheet
stores category and follow-up status as Indonesian labels, so those labels
are the enum values. Unknown labels never raise: they fall back to LIGHT and
PENDING respectively (school policy for messy exports).

Public API:
  StudentRecord, ViolationRecord, LocalWriteRecord
  Category, FollowUpStatus, parse_category(), parse_status()
  ViolationType, VIOLATION_TYPES, find_violation_type()
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Closed enumerations
# ---------------------------------------------------------------------------


class Category(str, Enum):
    LIGHT = "Ringan"
    MODERATE = "Sedang"
    SEVERE = "Berat"


class FollowUpStatus(str, Enum):
    PENDING = "Menunggu Tindak Lanjut"
    RESOLVED = "Sudah Ditindak Lanjut"


# Histogram and report ordering
CATEGORY_ORDER: tuple[Category, ...] = (
    Category.LIGHT,
    Category.MODERATE,
    Category.SEVERE,
)

_CATEGORY_ALIASES: dict[str, Category] = {
    "ringan": Category.LIGHT,
    "light": Category.LIGHT,
    "sedang": Category.MODERATE,
    "moderate": Category.MODERATE,
    "berat": Category.SEVERE,
    "severe": Category.SEVERE,
}

_STATUS_ALIASES: dict[str, FollowUpStatus] = {
    "menunggu tindak lanjut": FollowUpStatus.PENDING,
    "pending": FollowUpStatus.PENDING,
    "sudah ditindak lanjut": FollowUpStatus.RESOLVED,
    "resolved": FollowUpStatus.RESOLVED,
}


def parse_category(raw: Any) -> Category:
    """Sheet label -> Category. Missing or unknown defaults to LIGHT."""
    if isinstance(raw, Category):
        return raw
    key = str(raw or "").strip().lower()
    return _CATEGORY_ALIASES.get(key, Category.LIGHT)


def parse_status(raw: Any) -> FollowUpStatus:
    """Sheet label -> FollowUpStatus. Missing or unknown defaults to PENDING."""
    if isinstance(raw, FollowUpStatus):
        return raw
    key = str(raw or "").strip().lower()
    return _STATUS_ALIASES.get(key, FollowUpStatus.PENDING)


# ---------------------------------------------------------------------------
# Violation type catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ViolationType:
    label: str
    category: Category
    points: int


VIOLATION_TYPES: tuple[ViolationType, ...] = (
    # Ringan
    ViolationType("Terlambat masuk kelas", Category.LIGHT, 5),
    ViolationType("Tidak mengerjakan PR", Category.LIGHT, 5),
    ViolationType("Tidak membawa buku pelajaran", Category.LIGHT, 3),
    ViolationType("Ribut di kelas", Category.LIGHT, 5),
    ViolationType("Tidak memakai atribut lengkap", Category.LIGHT, 5),
    ViolationType("Membuang sampah sembarangan", Category.LIGHT, 5),
    # Sedang
    ViolationType("Tidak masuk tanpa keterangan", Category.MODERATE, 15),
    ViolationType("Keluar kelas tanpa izin", Category.MODERATE, 10),
    ViolationType("Menyontek saat ujian", Category.MODERATE, 20),
    ViolationType("Berbohong kepada guru", Category.MODERATE, 15),
    ViolationType("Merusak fasilitas sekolah", Category.MODERATE, 20),
    ViolationType("Membawa HP tanpa izin", Category.MODERATE, 15),
    ViolationType("Tidak mengikuti upacara", Category.MODERATE, 10),
    # Berat
    ViolationType("Berkelahi dengan teman", Category.SEVERE, 50),
    ViolationType("Membully teman", Category.SEVERE, 40),
    ViolationType("Merokok di area sekolah", Category.SEVERE, 50),
    ViolationType("Membawa barang terlarang", Category.SEVERE, 75),
    ViolationType("Memalsukan tanda tangan", Category.SEVERE, 30),
    ViolationType("Mencuri", Category.SEVERE, 75),
    ViolationType("Melawan/Kasar kepada guru", Category.SEVERE, 100),
)

_VIOLATION_TYPE_INDEX: dict[str, ViolationType] = {
    vt.label: vt for vt in VIOLATION_TYPES
}


def find_violation_type(label: str) -> Optional[ViolationType]:
    """Exact label lookup. Returns None for labels outside the catalog."""
    return _VIOLATION_TYPE_INDEX.get((label or "").strip())


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StudentRecord:
    student_number: str
    full_name: str
    sex: str = ""
    class_label: str = ""
    homeroom_teacher: str = ""
    parent_contact: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StudentRecord":
        known = {f.name for f in fields(cls)}
        return cls(**{k: str(v if v is not None else "") for k, v in data.items() if k in known})


@dataclass(frozen=True)
class ViolationRecord:
    stable_id: str
    student_number: str
    full_name: str
    violation_code: str
    created_at: datetime
    sex: str = ""
    class_label: str = ""
    homeroom_teacher: str = ""
    parent_contact: str = ""
    occurrence_date: str = ""
    violation_type_label: str = ""
    category: Category = Category.LIGHT
    point_value: int = 0
    location: str = ""
    description: str = ""
    follow_up_status: FollowUpStatus = FollowUpStatus.PENDING
    follow_up_result: str = ""
    reporter: str = ""

    @property
    def is_pending(self) -> bool:
        return self.follow_up_status is FollowUpStatus.PENDING

    def resolved(self, result: str) -> "ViolationRecord":
        return replace(
            self,
            follow_up_status=FollowUpStatus.RESOLVED,
            follow_up_result=result,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        data["follow_up_status"] = self.follow_up_status.value
        data["created_at"] = _format_timestamp(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ViolationRecord":
        """
        Rebuild a record from its cached JSON form.

        Raises KeyError / ValueError / TypeError on malformed payloads;
        callers treat that as cache corruption.
        """
        code = str(data.get("violation_code") or "")
        return cls(
            stable_id=str(data.get("stable_id") or code),
            student_number=str(data["student_number"]),
            full_name=str(data.get("full_name") or ""),
            violation_code=code,
            created_at=_parse_timestamp(data["created_at"]),
            sex=str(data.get("sex") or ""),
            class_label=str(data.get("class_label") or ""),
            homeroom_teacher=str(data.get("homeroom_teacher") or ""),
            parent_contact=str(data.get("parent_contact") or ""),
            occurrence_date=str(data.get("occurrence_date") or ""),
            violation_type_label=str(data.get("violation_type_label") or ""),
            category=parse_category(data.get("category")),
            point_value=max(int(data.get("point_value") or 0), 0),
            location=str(data.get("location") or ""),
            description=str(data.get("description") or ""),
            follow_up_status=parse_status(data.get("follow_up_status")),
            follow_up_result=str(data.get("follow_up_result") or ""),
            reporter=str(data.get("reporter") or ""),
        )


@dataclass(frozen=True)
class LocalWriteRecord:
    """A locally applied violation not yet confirmed by the sheet."""
    violation: ViolationRecord
    local_write_timestamp: Optional[datetime] = field(default=None)

    @property
    def violation_code(self) -> str:
        return self.violation.violation_code

    def to_dict(self) -> dict[str, Any]:
        data = self.violation.to_dict()
        data["local_write_timestamp"] = (
            _format_timestamp(self.local_write_timestamp)
            if self.local_write_timestamp is not None
            else None
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LocalWriteRecord":
        raw_ts = data.get("local_write_timestamp")
        return cls(
            violation=ViolationRecord.from_dict(data),
            local_write_timestamp=_parse_timestamp(raw_ts) if raw_ts else None,
        )


# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds")


def _parse_timestamp(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        value = raw
    else:
        value = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value
