"""
SIMPAS CSV Decoder Test Suite

Quote handling, header skipping and the row tolerance policy.
Deterministic: every decode uses a fixed clock.
"""

from datetime import datetime, timezone

import pytest

from csv_decoder import (
    STUDENT_SCHEMA,
    VIOLATION_SCHEMA,
    decode,
    decode_students,
    decode_violations,
    split_csv_line,
)
from records import Category, FollowUpStatus


NOW = datetime(2024, 6, 1, 8, 0, 0, tzinfo=timezone.utc)

STUDENT_HEADER = "nis,nama_lengkap,jenis_kelamin,kelas,nama_wali_kelas,kontak_ortu"
VIOLATION_HEADER = (
    "nis,nama,jk,kelas,wali,kontak,kode,tanggal,jenis,kategori,"
    "lokasi,deskripsi,status,hasil,poin,pelapor"
)
QUOTED_DESCRIPTION = '"Ribut, lempar ""kertas"""'


def violation_line(nis="1001", code="CPS-001", date="2024-03-15", **kw):
    fields = [
        nis, kw.get("name", "Budi Santoso"), "L", kw.get("kelas", "7A"), "Bu Sari", "0812",
        code, date, kw.get("jenis", "Terlambat masuk kelas"), kw.get("kategori", "Ringan"),
        kw.get("lokasi", "Gerbang"), kw.get("deskripsi", "Datang 07.30"),
        kw.get("status", "Menunggu Tindak Lanjut"), kw.get("hasil", ""), kw.get("poin", "5"),
        kw.get("pelapor", "Pak Andi"),
    ]
    return ",".join(fields)


# ---------------------------------------------------------------------------
# Quote-aware splitting
# ---------------------------------------------------------------------------

class TestSplitCsvLine:
    def test_embedded_comma_and_doubled_quotes(self):
        assert split_csv_line('"Smith, ""Al"" Jones",5') == ['Smith, "Al" Jones', "5"]

    def test_plain_fields_are_trimmed(self):
        assert split_csv_line(" a , b ,c ") == ["a", "b", "c"]

    def test_whitespace_inside_quotes_trimmed_after_unquoting(self):
        assert split_csv_line('"  padded  ",x') == ["padded", "x"]

    def test_empty_fields_preserved(self):
        assert split_csv_line("a,,c,") == ["a", "", "c", ""]

    def test_quoted_empty_field(self):
        assert split_csv_line('"",b') == ["", "b"]


# ---------------------------------------------------------------------------
# Header handling
# ---------------------------------------------------------------------------

class TestHeader:
    def test_header_always_discarded(self):
        # Header that looks exactly like data is still dropped
        text = "1001,Budi,L,7A,Bu Sari,0812\n1002,Ani,P,7B,Pak Joko,0813"
        students = decode_students(text)
        assert [s.student_number for s in students] == ["1002"]

    def test_header_only_yields_nothing(self):
        assert decode_students(STUDENT_HEADER) == []

    def test_empty_text_yields_nothing(self):
        assert decode_students("") == []
        assert decode_violations("", now=NOW) == []


# ---------------------------------------------------------------------------
# Student schema
# ---------------------------------------------------------------------------

class TestStudentSchema:
    def test_fields_mapped_positionally(self):
        text = f"{STUDENT_HEADER}\n1001,Budi Santoso,L,VII A,Bu Sari,08123"
        (s,) = decode_students(text)
        assert s.student_number == "1001"
        assert s.full_name == "Budi Santoso"
        assert s.sex == "L"
        assert s.class_label == "VII A"
        assert s.homeroom_teacher == "Bu Sari"
        assert s.parent_contact == "08123"

    def test_short_rows_dropped_silently(self):
        text = f"{STUDENT_HEADER}\n1001,Budi,L,7A,Bu Sari\n1002,Ani,P,7B,Pak Joko,0813"
        assert [s.student_number for s in decode_students(text)] == ["1002"]

    @pytest.mark.parametrize("row", [
        ",Budi,L,7A,Bu Sari,0812",
        "1001,,L,7A,Bu Sari,0812",
    ])
    def test_empty_key_fields_dropped(self, row):
        assert decode_students(f"{STUDENT_HEADER}\n{row}") == []

    def test_blank_lines_and_crlf_tolerated(self):
        text = f"{STUDENT_HEADER}\r\n\r\n1001,Budi,L,7A,Bu Sari,0812\r\n   \r\n"
        assert len(decode_students(text)) == 1

    def test_result_is_reiterable_list(self):
        text = f"{STUDENT_HEADER}\n1001,Budi,L,7A,Bu Sari,0812"
        students = decode(text, STUDENT_SCHEMA)
        assert list(students) == list(students)


# ---------------------------------------------------------------------------
# Violation schema
# ---------------------------------------------------------------------------

class TestViolationSchema:
    def test_full_row(self):
        text = f"{VIOLATION_HEADER}\n{violation_line(kategori='Berat', poin='50', status='Sudah Ditindak Lanjut', hasil='Orang tua dipanggil')}"
        (v,) = decode_violations(text, now=NOW)
        assert v.violation_code == "CPS-001"
        assert v.stable_id == "CPS-001"
        assert v.category is Category.SEVERE
        assert v.point_value == 50
        assert v.follow_up_status is FollowUpStatus.RESOLVED
        assert v.follow_up_result == "Orang tua dipanggil"
        assert v.reporter == "Pak Andi"
        assert v.occurrence_date == "2024-03-15"

    def test_minimum_ten_fields_with_defaults(self):
        row = "1001,Budi,L,7A,Bu Sari,0812,CPS-009,2024-03-15,Ribut di kelas,Ringan"
        (v,) = decode_violations(f"{VIOLATION_HEADER}\n{row}", now=NOW)
        assert v.location == ""
        assert v.description == ""
        assert v.follow_up_status is FollowUpStatus.PENDING
        assert v.follow_up_result == ""
        assert v.point_value == 0
        assert v.reporter == ""

    def test_fewer_than_ten_fields_dropped(self):
        row = "1001,Budi,L,7A,Bu Sari,0812,CPS-009,2024-03-15,Ribut di kelas"
        assert decode_violations(f"{VIOLATION_HEADER}\n{row}", now=NOW) == []

    def test_missing_student_number_dropped(self):
        text = f"{VIOLATION_HEADER}\n{violation_line(nis='')}"
        assert decode_violations(text, now=NOW) == []

    def test_unknown_enums_default(self):
        text = f"{VIOLATION_HEADER}\n{violation_line(kategori='Parah', status='???')}"
        (v,) = decode_violations(text, now=NOW)
        assert v.category is Category.LIGHT
        assert v.follow_up_status is FollowUpStatus.PENDING

    def test_quoted_description_with_commas(self):
        text = f'{VIOLATION_HEADER}\n{violation_line(deskripsi=QUOTED_DESCRIPTION)}'
        (v,) = decode_violations(text, now=NOW)
        assert v.description == 'Ribut, lempar "kertas"'

    def test_schema_minimums(self):
        assert STUDENT_SCHEMA.min_fields == 6
        assert VIOLATION_SCHEMA.min_fields == 10
