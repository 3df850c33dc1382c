"""
SIMPAS Aggregation & Derived Views

Pure functions over the merged violation list. Nothing here mutates its
inputs or touches storage.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import Iterable, Optional, Sequence

import pandas as pd

from records import (
    CATEGORY_ORDER,
    Category,
    FollowUpStatus,
    StudentRecord,
    ViolationRecord,
)

UNRANKED_CLASS: int = 999
RECENT_LIMIT: int = 5
READABLE_LABEL_MAX: int = 10

ROMAN_NUMERALS: dict[str, int] = {
    "I": 1, "II": 2, "III": 3, "IV": 4, "V": 5, "VI": 6,
    "VII": 7, "VIII": 8, "IX": 9, "X": 10, "XI": 11, "XII": 12,
}

_NON_ALNUM = re.compile(r"[^A-Z0-9]")
_ROMAN_PREFIX = re.compile(r"^X{0,3}(?:IX|IV|V?I{0,3})")
_ARABIC_PREFIX = re.compile(r"^\d+")
_ROMAN_SPLIT = re.compile(r"^(X{0,3}(?:IX|IV|V?I{0,3}))(.+)$")
_NUMERIC_SPLIT = re.compile(r"^(\d+)(.+)$")
_NATURAL_CHUNK = re.compile(r"(\d+)")


# ---------------------------------------------------------------------------
# Per-student stats
# ---------------------------------------------------------------------------


@dataclass
class StudentStats:
    total_points: int = 0
    case_count: int = 0
    violations: list[ViolationRecord] = field(default_factory=list)


def student_stats(
    students: Iterable[StudentRecord],
    violations: Iterable[ViolationRecord],
) -> dict[str, StudentStats]:
    """
    Points and case counts per student number.

    Every known student starts at zero. Violations for unknown student
    numbers still accumulate under their own key.
    """
    stats: dict[str, StudentStats] = {s.student_number: StudentStats() for s in students}
    for v in violations:
        entry = stats.setdefault(v.student_number, StudentStats())
        entry.total_points += v.point_value
        entry.case_count += 1
        entry.violations.append(v)
    return stats


# ---------------------------------------------------------------------------
# Category histogram / recency / dashboard summary
# ---------------------------------------------------------------------------


def violations_frame(violations: Sequence[ViolationRecord]) -> pd.DataFrame:
    """Tabular view used by histograms, recap reports and the UI tables."""
    columns = [
        "violation_code", "student_number", "full_name", "class_label",
        "occurrence_date", "violation_type_label", "category", "point_value",
        "location", "follow_up_status", "follow_up_result", "reporter", "created_at",
    ]
    rows = [
        {
            "violation_code": v.violation_code,
            "student_number": v.student_number,
            "full_name": v.full_name,
            "class_label": v.class_label,
            "occurrence_date": v.occurrence_date,
            "violation_type_label": v.violation_type_label,
            "category": v.category.value,
            "point_value": v.point_value,
            "location": v.location,
            "follow_up_status": v.follow_up_status.value,
            "follow_up_result": v.follow_up_result,
            "reporter": v.reporter,
            "created_at": v.created_at,
        }
        for v in violations
    ]
    return pd.DataFrame(rows, columns=columns)


def category_histogram(violations: Sequence[ViolationRecord]) -> dict[Category, int]:
    """Counts per category in the fixed order Ringan, Sedang, Berat."""
    df = violations_frame(violations)
    counts = (
        df["category"]
        .value_counts()
        .reindex([c.value for c in CATEGORY_ORDER], fill_value=0)
    )
    return {c: int(counts[c.value]) for c in CATEGORY_ORDER}


def sort_by_recency(violations: Iterable[ViolationRecord]) -> list[ViolationRecord]:
    return sorted(violations, key=lambda v: v.created_at, reverse=True)


def recent_violations(
    violations: Iterable[ViolationRecord],
    limit: int = RECENT_LIMIT,
) -> list[ViolationRecord]:
    return sort_by_recency(violations)[:limit]


def pending_follow_ups(violations: Iterable[ViolationRecord]) -> list[ViolationRecord]:
    return [v for v in violations if v.is_pending]


def keyed_follow_ups(violations: Iterable[ViolationRecord]) -> list[tuple[str, ViolationRecord]]:
    """
    Pending queue with one unique key per entry.

    Sheet codes are not guaranteed unique, and decoded rows use the code
    as stable_id, so the queue position is part of the key.
    """
    return [(f"{i}_{v.stable_id}", v) for i, v in enumerate(pending_follow_ups(violations))]


@dataclass
class DashboardSummary:
    total: int
    students_involved: int
    pending: int
    resolved: int
    histogram: dict[Category, int]
    recent: list[ViolationRecord]


def dashboard_summary(
    violations: Sequence[ViolationRecord],
    recent_limit: int = RECENT_LIMIT,
) -> DashboardSummary:
    return DashboardSummary(
        total=len(violations),
        students_involved=len({v.student_number for v in violations}),
        pending=sum(1 for v in violations if v.is_pending),
        resolved=sum(1 for v in violations if v.follow_up_status is FollowUpStatus.RESOLVED),
        histogram=category_histogram(violations),
        recent=recent_violations(violations, recent_limit),
    )


# ---------------------------------------------------------------------------
# Class labels
# ---------------------------------------------------------------------------


def normalize_class(label: Optional[str]) -> str:
    """'7 A', '7-a' and '7A' all become '7A'."""
    if not label:
        return ""
    return _NON_ALNUM.sub("", str(label).upper())


def class_rank(label: str) -> int:
    """Grade level from a leading Roman (I-XII) or Arabic numeral."""
    normalized = normalize_class(label)
    roman = _ROMAN_PREFIX.match(normalized).group(0)
    if roman:
        return ROMAN_NUMERALS.get(roman, UNRANKED_CLASS)
    arabic = _ARABIC_PREFIX.match(normalized)
    if arabic:
        return int(arabic.group(0))
    return UNRANKED_CLASS


def _natural_key(text: str) -> tuple:
    return tuple(
        (0, int(chunk), "") if chunk.isdigit() else (1, 0, chunk)
        for chunk in _NATURAL_CHUNK.split(text)
        if chunk
    )


def compare_classes(a: str, b: str) -> int:
    rank_a, rank_b = class_rank(a), class_rank(b)
    if rank_a != rank_b:
        return -1 if rank_a < rank_b else 1
    key_a, key_b = _natural_key(normalize_class(a)), _natural_key(normalize_class(b))
    if key_a == key_b:
        return 0
    return -1 if key_a < key_b else 1


class_sort_key = cmp_to_key(compare_classes)


def format_class_label(class_id: str) -> str:
    """'VIIA' -> 'VII A', '7A' -> '7 A'; anything else unchanged."""
    match = _ROMAN_SPLIT.match(class_id)
    if match and match.group(1):
        return f"{match.group(1)} {match.group(2)}"
    match = _NUMERIC_SPLIT.match(class_id)
    if match:
        return f"{match.group(1)} {match.group(2)}"
    return class_id


@dataclass(frozen=True)
class ClassOption:
    value: str
    label: str


def class_options(students: Iterable[StudentRecord]) -> list[ClassOption]:
    """Distinct normalized classes, each with a readable label, in grade order."""
    labels: dict[str, str] = {}
    for s in students:
        class_id = normalize_class(s.class_label)
        if not class_id or class_id in labels:
            continue
        original = (s.class_label or "").strip()
        labels[class_id] = original if len(original) < READABLE_LABEL_MAX else format_class_label(class_id)

    ordered = sorted(labels, key=class_sort_key)
    return [ClassOption(value=cid, label=labels[cid]) for cid in ordered]


def filter_students(
    students: Iterable[StudentRecord],
    class_id: str = "",
    search: str = "",
) -> list[StudentRecord]:
    """Filter by normalized class and name/number search, then order by class and name."""
    term = (search or "").strip().lower()
    selected = []
    for s in students:
        if class_id and normalize_class(s.class_label) != class_id:
            continue
        if term and term not in (s.full_name or "").lower() and term not in (s.student_number or "").lower():
            continue
        selected.append(s)

    return sorted(
        selected,
        key=lambda s: (class_sort_key(s.class_label), (s.full_name or "").lower()),
    )
