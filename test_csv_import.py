import pytest

import csv_import


def test_parse_csv_reports_column_mismatch():
    headers, rows, errors = csv_import.parse_csv(
        "\ufeffadmission_number,first_name,last_name\n"
        "AHS/0001, Aka ,Obi\n"
        "\n"
        "AHS/0002,Ben\n"
    )
    assert headers == ["admission_number", "first_name", "last_name"]
    assert rows == [{"admission_number": "AHS/0001", "first_name": "Aka", "last_name": "Obi"}]
    assert errors == ["Row 2: Column count mismatch (expected 3, got 2)"]


def test_parse_csv_keeps_blank_lines_inside_quoted_fields():
    headers, rows, errors = csv_import.parse_csv(
        "admission_number,first_name,address\n"
        'AHS/0001,Aka,"line1\n\nline3"\n'
        " , ,\n"
        "AHS/0002,Ben,Main Road\n"
    )
    assert errors == []
    assert [r["address"] for r in rows] == ["line1\n\nline3", "Main Road"]


def test_parse_csv_empty_file():
    assert csv_import.parse_csv("  \n\n") == ([], [], ["CSV file is empty"])


@pytest.mark.parametrize("raw,expected", [
    ("AHS/7", "AHS/0007"),
    ("ahs/0123", "AHS/0123"),
    (" AHS / 0042 ", "AHS/0042"),
])
def test_normalize_admission_number_pads_digits(raw, expected):
    assert csv_import.normalize_admission_number(raw, "ahs") == expected


@pytest.mark.parametrize("raw", ["XYZ/0001", "AHS0001", "AHS/12345", "AHS/", ""])
def test_normalize_admission_number_rejects_other_formats(raw):
    with pytest.raises(ValueError, match="AHS/0001"):
        csv_import.normalize_admission_number(raw, "AHS")


def test_normalize_school_code():
    assert csv_import.normalize_school_code(" ahs ") == "AHS"
    with pytest.raises(ValueError):
        csv_import.normalize_school_code("A1")


def test_login_id_from_admission():
    assert csv_import.login_id_from_admission("AHS/0007") == "AHS0007"
    with pytest.raises(ValueError, match="Invalid admission number format"):
        csv_import.login_id_from_admission("AHS/7")


def test_validate_student_row_messages():
    assert csv_import.validate_student_row({"admission_number": "AHS/1", "first_name": "", "last_name": "Obi"}, 3) \
        == "Row 3: Missing required field 'first_name'"
    assert csv_import.validate_student_row(
        {"admission_number": "AHS/1", "first_name": "Aka", "last_name": "Obi", "email": "nope"}, 4
    ) == "Row 4: Invalid email format 'nope'"
    assert csv_import.validate_student_row(
        {"admission_number": "AHS/1", "first_name": "Aka", "last_name": "Obi", "gender": "Female"}, 5
    ) is None


def test_build_student_records_flags_duplicates():
    rows = [
        {"admission_number": "AHS/1", "first_name": "Aka", "last_name": "Obi", "gender": "Male"},
        {"admission_number": "AHS/0001", "first_name": "Ben", "last_name": "Ade"},
    ]
    records, errors = csv_import.build_student_records(rows, "AHS", stream_id=4)
    assert len(records) == 1
    assert records[0]["admission_number"] == "AHS/0001"
    assert records[0]["gender"] == "male"
    assert records[0]["date_of_birth"] is None
    assert records[0]["stream_id"] == 4
    assert errors == [{"row": 3, "identifier": "AHS/0001",
                       "message": "Row 3: Duplicate admission number AHS/0001 in file"}]


def test_build_teacher_records_accepts_json_values():
    records, errors = csv_import.build_teacher_records([
        {"employee_number": 101, "first_name": "Tess", "last_name": "Ode", "email": " T@S.org ", "phone": None},
        "not a row",
        {"employee_number": "", "first_name": "Ray", "last_name": "Uzo"},
    ])
    assert records == [{
        "row": 2, "employee_number": "101", "first_name": "Tess", "last_name": "Ode", "email": "t@s.org",
        "phone": None, "gender": None, "qualification": None, "date_hired": None,
    }]
    assert [e["message"] for e in errors] == [
        "Row 3: Invalid row",
        "Row 4: Missing required field 'employee_number'",
    ]


def test_rows_to_csv_ignores_extra_keys():
    text = csv_import.rows_to_csv(["a", "b"], [{"a": 1, "b": "x,y", "c": "dropped"}])
    assert text.splitlines() == ["a,b", '1,"x,y"']
