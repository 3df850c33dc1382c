"""
SIMPAS Identity & Date Normalizer

Turns one decoded violation row into a ViolationRecord with a stable
identifier and a stable, row-order-preserving created_at.

RULES:
- Code column empty -> synthetic "SHEET-{row_index}".
- Date resolution: ISO-8601 first, then day/month/year, then
  year/month/day, then the current time. Never raises.
- created_at = base + row_index seconds, so later sheet rows always sort
  after earlier ones, even on identical or unparseable dates.
- created_at orders records only. The raw date text is kept for display.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from records import ViolationRecord, parse_category, parse_status, utc_now

logger = logging.getLogger(__name__)

SYNTHETIC_CODE_PREFIX: str = "SHEET-"

# Positional columns of the violation sheet
COL_NIS = 0
COL_NAME = 1
COL_SEX = 2
COL_CLASS = 3
COL_HOMEROOM = 4
COL_CONTACT = 5
COL_CODE = 6
COL_DATE = 7
COL_TYPE = 8
COL_CATEGORY = 9
COL_LOCATION = 10
COL_DESCRIPTION = 11
COL_STATUS = 12
COL_RESULT = 13
COL_POINTS = 14
COL_REPORTER = 15

_DATE_SPLIT = re.compile(r"[/-]")
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def resolve_violation_code(raw_code: str, row_index: int) -> str:
    code = (raw_code or "").strip()
    return code if code else f"{SYNTHETIC_CODE_PREFIX}{row_index}"


def _parse_int(raw: str) -> Optional[int]:
    match = _LEADING_INT.match(raw or "")
    if not match:
        return None
    return int(match.group(1))


def _parse_iso(text: str) -> Optional[datetime]:
    try:
        value = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _parse_heuristic(text: str) -> Optional[datetime]:
    parts = _DATE_SPLIT.split(text)
    if len(parts) != 3:
        return None
    p1, p2, p3 = (_parse_int(p) for p in parts)
    if p1 is None or p2 is None or p3 is None:
        return None

    try:
        if p1 <= 31 and p2 <= 12 and p3 > 1000:
            return datetime(p3, p2, p1, tzinfo=timezone.utc)
        if p1 > 1000 and p2 <= 12 and p3 <= 31:
            return datetime(p1, p2, p3, tzinfo=timezone.utc)
    except ValueError:
        # 31/02/2024 and friends: shape matched, calendar did not
        return None
    return None


def parse_occurrence_date(raw: str) -> Optional[datetime]:
    """
    Parse free-text sheet dates.

    Returns a UTC datetime, or None when no interpretation fits.
    """
    text = (raw or "").strip()
    if not text:
        return None
    return _parse_iso(text) or _parse_heuristic(text)


def stable_created_at(
    raw_date: str,
    row_index: int,
    now: Optional[datetime] = None,
) -> datetime:
    base = parse_occurrence_date(raw_date)
    if base is None:
        if raw_date and raw_date.strip():
            logger.debug("Unparseable date %r at row %d; using current time", raw_date, row_index)
        base = now or utc_now()
    return base + timedelta(seconds=row_index)


def parse_points(raw: str) -> int:
    value = _parse_int(raw)
    if value is None:
        return 0
    return max(value, 0)


def build_violation(
    values: Sequence[str],
    row_index: int,
    now: Optional[datetime] = None,
) -> ViolationRecord:
    """
    Build a ViolationRecord from positional sheet values.

    Parameters
    ----------
    values : sequence of str
        Decoded fields; columns past the end default to "".
    row_index : int
        1-based line position after the header.
    now : datetime, optional
        Clock used when the date cannot be parsed.
    """
    def col(i: int) -> str:
        return values[i] if i < len(values) else ""

    code = resolve_violation_code(col(COL_CODE), row_index)
    raw_date = col(COL_DATE)

    return ViolationRecord(
        stable_id=code,
        student_number=col(COL_NIS),
        full_name=col(COL_NAME),
        sex=col(COL_SEX),
        class_label=col(COL_CLASS),
        homeroom_teacher=col(COL_HOMEROOM),
        parent_contact=col(COL_CONTACT),
        violation_code=code,
        occurrence_date=raw_date,
        violation_type_label=col(COL_TYPE),
        category=parse_category(col(COL_CATEGORY)),
        location=col(COL_LOCATION),
        description=col(COL_DESCRIPTION),
        follow_up_status=parse_status(col(COL_STATUS)),
        follow_up_result=col(COL_RESULT),
        point_value=parse_points(col(COL_POINTS)),
        reporter=col(COL_REPORTER),
        created_at=stable_created_at(raw_date, row_index, now),
    )
