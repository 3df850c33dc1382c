"""
SIMPAS CSV Decoder

Decodes the two published spreadsheet exports (students, violations) into
typed records.

RULES:
- Line 0 is always a header and is discarded without inspection.
- Blank lines are skipped but still count toward the row index.
- A comma splits fields only outside a double-quoted span; "" inside a
  quoted field is one literal quote; fields are trimmed after unquoting.
- Rows that are too short, or whose key fields are empty, are dropped
  silently. Spreadsheet exports are messy; tolerance wins over strictness.

Public API:
  split_csv_line(line) -> list[str]
  decode(text, schema) -> list[StudentRecord] | list[ViolationRecord]
  decode_students(text), decode_violations(text, now=None)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, Optional, Sequence

from record_normalizer import build_violation
from records import StudentRecord, ViolationRecord, utc_now

logger = logging.getLogger(__name__)

STUDENT_MIN_FIELDS: int = 6
VIOLATION_MIN_FIELDS: int = 10


# ---------------------------------------------------------------------------
# Line splitting
# ---------------------------------------------------------------------------


def _unquote(raw: str) -> str:
    value = raw.strip()
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        value = value[1:-1].replace('""', '"')
    return value.strip()


def split_csv_line(line: str) -> list[str]:
    """
    Quote-aware split of one CSV line.

    >>> split_csv_line('"Smith, ""Al"" Jones",5')
    ['Smith, "Al" Jones', '5']
    """
    values: list[str] = []
    current: list[str] = []
    in_quotes = False

    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        if char == "," and not in_quotes:
            values.append("".join(current))
            current = []
        else:
            current.append(char)
    values.append("".join(current))

    return [_unquote(v) for v in values]


def iter_data_rows(text: str) -> Iterator[tuple[int, list[str]]]:
    """Yield (row_index, fields) for each non-blank line after the header."""
    lines = (text or "").split("\n")
    for index in range(1, len(lines)):
        line = lines[index].strip()
        if not line:
            continue
        yield index, split_csv_line(line)


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Schema:
    name: str
    min_fields: int
    required_columns: tuple[int, ...]
    build: Callable[[Sequence[str], int, datetime], object]
    from_dict: Callable[[dict], object]

    def accepts(self, values: Sequence[str]) -> bool:
        if len(values) < self.min_fields:
            return False
        return all(values[i] for i in self.required_columns)


def _build_student(values: Sequence[str], row_index: int, now: datetime) -> StudentRecord:
    return StudentRecord(
        student_number=values[0],
        full_name=values[1],
        sex=values[2],
        class_label=values[3],
        homeroom_teacher=values[4],
        parent_contact=values[5],
    )


STUDENT_SCHEMA = Schema(
    name="students",
    min_fields=STUDENT_MIN_FIELDS,
    required_columns=(0, 1),
    build=_build_student,
    from_dict=StudentRecord.from_dict,
)

VIOLATION_SCHEMA = Schema(
    name="violations",
    min_fields=VIOLATION_MIN_FIELDS,
    required_columns=(0,),
    build=build_violation,
    from_dict=ViolationRecord.from_dict,
)


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


def decode(text: str, schema: Schema, now: Optional[datetime] = None) -> list:
    """
    Decode a full CSV export with the given schema.

    The whole text is consumed at once; the result is a plain list that can
    be iterated any number of times. `now` is fixed for the whole decode so
    rows with unparseable dates still keep their relative order.
    """
    clock = now or utc_now()
    records = []
    dropped = 0
    for row_index, values in iter_data_rows(text):
        if not schema.accepts(values):
            dropped += 1
            continue
        records.append(schema.build(values, row_index, clock))

    if dropped:
        logger.debug("Dropped %d malformed %s rows", dropped, schema.name)
    return records


def decode_students(text: str) -> list[StudentRecord]:
    return decode(text, STUDENT_SCHEMA)


def decode_violations(text: str, now: Optional[datetime] = None) -> list[ViolationRecord]:
    return decode(text, VIOLATION_SCHEMA, now=now)
