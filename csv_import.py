"""CSV parsing and row validation for student/teacher batch uploads."""

import csv
import re
from io import StringIO

EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
LOGIN_ID_RE = re.compile(r'^[A-Z]{2,6}[0-9]{4}$')
SCHOOL_CODE_RE = re.compile(r'^[A-Z]{2,6}$')
GENDERS = {'male', 'female', 'other'}

STUDENT_REQUIRED = ['admission_number', 'first_name', 'last_name']
TEACHER_REQUIRED = ['employee_number', 'first_name', 'last_name']


def is_valid_email(value):
    return bool(EMAIL_RE.match((value or '').strip()))


def parse_csv(text):
    """
    Parse CSV text into (headers, rows, errors).
    Blank rows are skipped; rows with a different column count than the
    header are reported, not kept.
    """
    text = (text or '').lstrip('\ufeff')
    records = (values for values in csv.reader(StringIO(text)) if any(v.strip() for v in values))
    headers = next(records, None)
    if headers is None:
        return [], [], ['CSV file is empty']

    headers = [h.strip() for h in headers]
    rows = []
    errors = []
    for index, values in enumerate(records, start=1):
        if len(values) != len(headers):
            errors.append(
                f'Row {index}: Column count mismatch (expected {len(headers)}, got {len(values)})'
            )
            continue
        rows.append({header: value.strip() for header, value in zip(headers, values)})
    return headers, rows, errors


def _missing_field(row, required, line_number):
    for field in required:
        if not (row.get(field) or '').strip():
            return f"Row {line_number}: Missing required field '{field}'"
    return None


def validate_student_row(row, line_number):
    error = _missing_field(row, STUDENT_REQUIRED, line_number)
    if error:
        return error
    email = (row.get('email') or '').strip()
    if email and not is_valid_email(email):
        return f"Row {line_number}: Invalid email format '{email}'"
    gender = (row.get('gender') or '').strip().lower()
    if gender and gender not in GENDERS:
        return f"Row {line_number}: Invalid gender '{row.get('gender')}'"
    return None


def validate_teacher_row(row, line_number):
    error = _missing_field(row, TEACHER_REQUIRED, line_number)
    if error:
        return error
    email = (row.get('email') or '').strip()
    if email and not is_valid_email(email):
        return f"Row {line_number}: Invalid email format '{email}'"
    gender = (row.get('gender') or '').strip().lower()
    if gender and gender not in GENDERS:
        return f"Row {line_number}: Invalid gender '{row.get('gender')}'"
    return None


def normalize_school_code(value):
    code = (value or '').strip().upper()
    if not SCHOOL_CODE_RE.match(code):
        raise ValueError('School code must be 2 to 6 letters.')
    return code


def normalize_admission_number(value, school_code):
    """
    Admission numbers look like CODE/NNNN. The numeric part accepts 1-4
    digits and is zero-padded so every admission maps to a valid login ID.
    """
    code = normalize_school_code(school_code)
    text = (value or '').strip().upper().replace(' ', '')
    match = re.fullmatch(r'([A-Z]{2,6})/(\d{1,4})', text)
    if not match or match.group(1) != code:
        raise ValueError(f'Admission number must look like {code}/0001.')
    return f'{code}/{int(match.group(2)):04d}'


def login_id_from_admission(value):
    normalized = (value or '').replace('/', '').strip().upper()
    if not LOGIN_ID_RE.match(normalized):
        raise ValueError('Invalid admission number format')
    return normalized


def _blank_to_none(value):
    value = (value or '').strip()
    return value or None


def build_student_records(rows, school_code, stream_id=None):
    """Validate uploaded student rows into insertable records and row errors."""
    records = []
    errors = []
    seen = set()
    for index, row in enumerate(rows, start=2):
        identifier = (row.get('admission_number') or 'N/A').strip() or 'N/A'
        message = validate_student_row(row, index)
        if not message:
            try:
                admission = normalize_admission_number(row.get('admission_number'), school_code)
            except ValueError as exc:
                message = f'Row {index}: {exc}'
            else:
                if admission in seen:
                    message = f'Row {index}: Duplicate admission number {admission} in file'
        if message:
            errors.append({'row': index, 'identifier': identifier, 'message': message})
            continue
        seen.add(admission)
        records.append({
            'row': index,
            'admission_number': admission,
            'first_name': row['first_name'].strip(),
            'last_name': row['last_name'].strip(),
            'date_of_birth': _blank_to_none(row.get('date_of_birth')),
            'gender': _blank_to_none((row.get('gender') or '').lower()),
            'guardian_name': _blank_to_none(row.get('guardian_name')),
            'guardian_phone': _blank_to_none(row.get('guardian_phone')),
            'address': _blank_to_none(row.get('address')),
            'password': _blank_to_none(row.get('password')),
            'stream_id': stream_id,
        })
    return records, errors


def build_teacher_records(rows):
    """Validate teacher rows (from CSV or JSON) into upsertable records."""
    records = []
    errors = []
    for index, row in enumerate(rows, start=2):
        if not isinstance(row, dict):
            errors.append({'row': index, 'identifier': 'N/A', 'message': f'Row {index}: Invalid row'})
            continue
        row = {k: ('' if v is None else str(v)) for k, v in row.items()}
        identifier = (row.get('employee_number') or 'N/A').strip() or 'N/A'
        message = validate_teacher_row(row, index)
        if message:
            errors.append({'row': index, 'identifier': identifier, 'message': message})
            continue
        records.append({
            'row': index,
            'employee_number': row['employee_number'].strip(),
            'first_name': row['first_name'].strip(),
            'last_name': row['last_name'].strip(),
            'email': _blank_to_none((row.get('email') or '').lower()),
            'phone': _blank_to_none(row.get('phone')),
            'gender': _blank_to_none((row.get('gender') or '').lower()),
            'qualification': _blank_to_none(row.get('qualification')),
            'date_hired': _blank_to_none(row.get('date_hired')),
        })
    return records, errors


def rows_to_csv(headers, rows):
    """Serialize dict rows for download."""
    out = StringIO()
    writer = csv.DictWriter(out, fieldnames=headers, extrasaction='ignore')
    writer.writeheader()
    for row in rows:
        writer.writerow(row)
    return out.getvalue()
