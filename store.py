"""
Database reads and writes for every school entity.

Every function opens its own connection through `db_connection` and scopes
queries by school (directly or through the owning class/teacher), so route
handlers never build SQL themselves.
"""

import json
import logging

import psycopg2

from db import db_connection, db_execute

logger = logging.getLogger(__name__)


def _rows(c):
    return [dict(row) for row in c.fetchall() or []]


def _row(c):
    row = c.fetchone()
    return dict(row) if row else None


def _full_name(first, last):
    return f"{first or ''} {last or ''}".strip()


# ==================== SCHOOLS & PROFILES ====================

def get_school(school_id):
    """Fetch one school by id."""
    if not school_id:
        return None
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT * FROM schools WHERE id = ?', (school_id,))
        return _row(c)


def get_all_schools():
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT s.id, s.school_name, s.code, s.plan, s.created_at,
                      (SELECT COUNT(*) FROM students st WHERE st.school_id = s.id) AS student_count,
                      (SELECT COUNT(*) FROM teachers t WHERE t.school_id = s.id) AS teacher_count,
                      (SELECT p.email FROM profiles p
                        WHERE p.school_id = s.id AND p.role = 'admin'
                        ORDER BY p.id LIMIT 1) AS admin_email
               FROM schools s
               ORDER BY s.school_name'''
        )
        return _rows(c)


def create_school(school_name, code, plan, admin_email, admin_password_hash, admin_name=''):
    """Create a school and its first admin profile in one transaction."""
    try:
        with db_connection(commit=True) as conn:
            c = conn.cursor()
            db_execute(
                c,
                '''INSERT INTO schools (school_name, code, plan)
                   VALUES (?, ?, ?) RETURNING id''',
                (school_name, code, plan or 'free'),
            )
            school_id = c.fetchone()[0]
            create_profile_with_cursor(c, admin_email, admin_password_hash, 'admin', school_id, admin_name)
    except psycopg2.IntegrityError:
        raise ValueError('A school with this code or an account with this email already exists.')
    logger.info("School created: %s (%s)", school_name, code)
    return school_id


def update_grade_settings(school_id, cfg):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''UPDATE schools
               SET grade_a_min = ?, grade_b_min = ?, grade_c_min = ?, grade_d_min = ?,
                   grade_e_min = ?, pass_mark = ?, test_pass_percent = ?,
                   updated_at = CURRENT_TIMESTAMP
               WHERE id = ?''',
            (cfg['a'], cfg['b'], cfg['c'], cfg['d'], cfg['e'], cfg['pass_mark'],
             cfg['test_pass_percent'], school_id),
        )


def get_profile_by_email(email):
    """Fetch one profile by email (case-insensitive)."""
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT id, school_id, email, password_hash, full_name, role, last_login_at
               FROM profiles WHERE LOWER(email) = LOWER(?) LIMIT 1''',
            ((email or '').strip(),),
        )
        return _row(c)


def get_profile(profile_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            'SELECT id, school_id, email, password_hash, full_name, role, last_login_at FROM profiles WHERE id = ?',
            (profile_id,),
        )
        return _row(c)


def create_profile_with_cursor(c, email, password_hash, role, school_id, full_name=''):
    """Insert a login profile using an existing cursor; returns its id."""
    email = (email or '').strip().lower()
    db_execute(c, 'SELECT id FROM profiles WHERE LOWER(email) = ? LIMIT 1', (email,))
    if c.fetchone():
        raise ValueError(f'An account with email {email} already exists.')
    db_execute(
        c,
        '''INSERT INTO profiles (school_id, email, password_hash, full_name, role)
           VALUES (?, ?, ?, ?, ?) RETURNING id''',
        (school_id, email, password_hash, full_name or None, role),
    )
    return c.fetchone()[0]


def ensure_super_admin(email, password_hash):
    """Create the super admin profile when missing. Returns True if created."""
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT id, role FROM profiles WHERE LOWER(email) = LOWER(?)', (email,))
        row = c.fetchone()
        if row:
            if row[1] != 'super_admin':
                logger.warning(
                    "SUPER_ADMIN_EMAIL '%s' exists with role '%s'; skipping automatic role escalation.",
                    email, row[1],
                )
            return False
        create_profile_with_cursor(c, email, password_hash, 'super_admin', None, 'Super Admin')
        return True


def update_login_timestamps(profile_id):
    """Shift current_login_at -> last_login_at and set current_login_at=now."""
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''UPDATE profiles
               SET last_login_at = current_login_at,
                   current_login_at = CURRENT_TIMESTAMP
               WHERE id = ?''',
            (profile_id,),
        )


def set_profile_password(profile_id, password_hash):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            'UPDATE profiles SET password_hash = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?',
            (password_hash, profile_id),
        )
        return c.rowcount


# ==================== DASHBOARD ====================

def get_dashboard_counts(school_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT
                 (SELECT COUNT(*) FROM students WHERE school_id = ?) AS students,
                 (SELECT COUNT(*) FROM teachers WHERE school_id = ?) AS teachers,
                 (SELECT COUNT(*) FROM classes WHERE school_id = ?) AS classes,
                 (SELECT COUNT(*) FROM subjects WHERE school_id = ?) AS subjects,
                 (SELECT COUNT(*) FROM examinations WHERE school_id = ?) AS examinations''',
            (school_id,) * 5,
        )
        row = _row(c) or {}
    return {k: int(row.get(k) or 0) for k in ('students', 'teachers', 'classes', 'subjects', 'examinations')}


def get_recent_students(school_id, limit=5):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT id, admission_number, first_name, last_name, created_at
               FROM students WHERE school_id = ?
               ORDER BY created_at DESC, id DESC LIMIT ?''',
            (school_id, limit),
        )
        return _rows(c)


def get_recent_teachers(school_id, limit=5):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT id, employee_number, first_name, last_name, email, created_at
               FROM teachers WHERE school_id = ?
               ORDER BY created_at DESC, id DESC LIMIT ?''',
            (school_id, limit),
        )
        return _rows(c)


# ==================== CLASSES & STREAMS ====================

def list_classes(school_id):
    """Classes with class teacher name, stream and student counts."""
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT cl.id, cl.name, cl.grade_level, cl.class_teacher_id,
                      t.first_name AS teacher_first_name, t.last_name AS teacher_last_name,
                      (SELECT COUNT(*) FROM streams s WHERE s.class_id = cl.id) AS stream_count,
                      (SELECT COUNT(*) FROM students st
                         JOIN streams s ON s.id = st.stream_id
                        WHERE s.class_id = cl.id) AS student_count
               FROM classes cl
               LEFT JOIN teachers t ON t.id = cl.class_teacher_id
               WHERE cl.school_id = ?
               ORDER BY cl.grade_level NULLS LAST, cl.name''',
            (school_id,),
        )
        classes = _rows(c)
    for item in classes:
        item['class_teacher_name'] = _full_name(item.pop('teacher_first_name'), item.pop('teacher_last_name'))
    return classes


def get_class(school_id, class_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            'SELECT id, school_id, name, grade_level, class_teacher_id FROM classes WHERE id = ? AND school_id = ?',
            (class_id, school_id),
        )
        return _row(c)


def save_class(school_id, data, class_id=None):
    """Insert or update a class; the class teacher must belong to the school."""
    teacher_id = data.get('class_teacher_id') or None
    try:
        with db_connection(commit=True) as conn:
            c = conn.cursor()
            if teacher_id:
                db_execute(c, 'SELECT 1 FROM teachers WHERE id = ? AND school_id = ?', (teacher_id, school_id))
                if not c.fetchone():
                    raise ValueError('Selected class teacher is not registered in this school.')
            if class_id:
                db_execute(
                    c,
                    '''UPDATE classes
                       SET name = ?, grade_level = ?, class_teacher_id = ?, updated_at = CURRENT_TIMESTAMP
                       WHERE id = ? AND school_id = ?''',
                    (data['name'], data.get('grade_level'), teacher_id, class_id, school_id),
                )
                return class_id
            db_execute(
                c,
                '''INSERT INTO classes (school_id, name, grade_level, class_teacher_id)
                   VALUES (?, ?, ?, ?) RETURNING id''',
                (school_id, data['name'], data.get('grade_level'), teacher_id),
            )
            return c.fetchone()[0]
    except psycopg2.IntegrityError:
        raise ValueError(f"A class named {data['name']} already exists.")


def delete_class(school_id, class_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'DELETE FROM classes WHERE id = ? AND school_id = ?', (class_id, school_id))
        return c.rowcount


def list_classes_for_class_teacher(teacher_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            'SELECT id, name, grade_level FROM classes WHERE class_teacher_id = ? ORDER BY name',
            (teacher_id,),
        )
        return _rows(c)


def list_streams(class_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT s.id, s.class_id, s.name,
                      (SELECT COUNT(*) FROM students st WHERE st.stream_id = s.id) AS student_count
               FROM streams s WHERE s.class_id = ? ORDER BY s.name''',
            (class_id,),
        )
        return _rows(c)


def list_school_streams(school_id):
    """All streams of a school with their class names, for stream pickers."""
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT s.id, s.name, s.class_id, cl.name AS class_name
               FROM streams s JOIN classes cl ON cl.id = s.class_id
               WHERE cl.school_id = ?
               ORDER BY cl.name, s.name''',
            (school_id,),
        )
        return _rows(c)


def get_stream(school_id, stream_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT s.id, s.name, s.class_id, cl.name AS class_name
               FROM streams s JOIN classes cl ON cl.id = s.class_id
               WHERE s.id = ? AND cl.school_id = ?''',
            (stream_id, school_id),
        )
        return _row(c)


def add_stream(class_id, name):
    try:
        with db_connection(commit=True) as conn:
            c = conn.cursor()
            db_execute(c, 'INSERT INTO streams (class_id, name) VALUES (?, ?) RETURNING id', (class_id, name))
            return c.fetchone()[0]
    except psycopg2.IntegrityError:
        raise ValueError(f'Stream {name} already exists in this class.')


def delete_stream(class_id, stream_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'DELETE FROM streams WHERE id = ? AND class_id = ?', (stream_id, class_id))
        return c.rowcount


# ==================== SUBJECTS ====================

def list_subjects(school_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT id, name, code FROM subjects WHERE school_id = ? ORDER BY name', (school_id,))
        return _rows(c)


def get_subject(school_id, subject_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT id, name, code FROM subjects WHERE id = ? AND school_id = ?', (subject_id, school_id))
        return _row(c)


def save_subject(school_id, data, subject_id=None):
    try:
        with db_connection(commit=True) as conn:
            c = conn.cursor()
            if subject_id:
                db_execute(
                    c,
                    '''UPDATE subjects SET name = ?, code = ?, updated_at = CURRENT_TIMESTAMP
                       WHERE id = ? AND school_id = ?''',
                    (data['name'], data.get('code') or None, subject_id, school_id),
                )
                return subject_id
            db_execute(
                c,
                'INSERT INTO subjects (school_id, name, code) VALUES (?, ?, ?) RETURNING id',
                (school_id, data['name'], data.get('code') or None),
            )
            return c.fetchone()[0]
    except psycopg2.IntegrityError:
        raise ValueError(f"A subject named {data['name']} already exists.")


def delete_subject(school_id, subject_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'DELETE FROM subjects WHERE id = ? AND school_id = ?', (subject_id, school_id))
        return c.rowcount


# ==================== TEACHERS ====================

TEACHER_COLUMNS = ('employee_number', 'first_name', 'last_name', 'phone', 'email',
                   'gender', 'qualification', 'date_hired')


def list_teachers(school_id, search=''):
    where = ['school_id = ?']
    params = [school_id]
    if search:
        where.append('(LOWER(first_name || \' \' || last_name) LIKE ? OR LOWER(employee_number) LIKE ? '
                     'OR LOWER(COALESCE(email, \'\')) LIKE ?)')
        pattern = f'%{search.strip().lower()}%'
        params += [pattern, pattern, pattern]
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            f'''SELECT id, profile_id, employee_number, first_name, last_name, phone, email,
                       gender, qualification, date_hired
                FROM teachers WHERE {' AND '.join(where)}
                ORDER BY first_name, last_name''',
            tuple(params),
        )
        return _rows(c)


def get_teacher(school_id, teacher_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT * FROM teachers WHERE id = ? AND school_id = ?', (teacher_id, school_id))
        return _row(c)


def get_teacher_by_profile(profile_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT * FROM teachers WHERE profile_id = ? LIMIT 1', (profile_id,))
        return _row(c)


def save_teacher(school_id, data, teacher_id=None, password_hash=None):
    """
    Insert or update a teacher. A login profile is created for new teachers
    when an email and password hash are supplied.
    """
    values = tuple(data.get(col) or None for col in TEACHER_COLUMNS)
    try:
        with db_connection(commit=True) as conn:
            c = conn.cursor()
            if teacher_id:
                db_execute(
                    c,
                    '''UPDATE teachers
                       SET employee_number = ?, first_name = ?, last_name = ?, phone = ?, email = ?,
                           gender = ?, qualification = ?, date_hired = ?, updated_at = CURRENT_TIMESTAMP
                       WHERE id = ? AND school_id = ?''',
                    values + (teacher_id, school_id),
                )
                return teacher_id
            profile_id = None
            if data.get('email') and password_hash:
                profile_id = create_profile_with_cursor(
                    c, data['email'], password_hash, 'teacher', school_id,
                    _full_name(data.get('first_name'), data.get('last_name')),
                )
            db_execute(
                c,
                '''INSERT INTO teachers
                   (school_id, profile_id, employee_number, first_name, last_name, phone, email,
                    gender, qualification, date_hired)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?) RETURNING id''',
                (school_id, profile_id) + values,
            )
            return c.fetchone()[0]
    except psycopg2.IntegrityError:
        raise ValueError(f"Employee number {data.get('employee_number')} is already in use.")


def delete_teacher(school_id, teacher_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT profile_id FROM teachers WHERE id = ? AND school_id = ?', (teacher_id, school_id))
        row = c.fetchone()
        if not row:
            return 0
        db_execute(c, 'DELETE FROM teachers WHERE id = ? AND school_id = ?', (teacher_id, school_id))
        if row[0]:
            db_execute(c, 'DELETE FROM profiles WHERE id = ?', (row[0],))
        return 1


def upsert_teachers(school_id, records):
    """Batch upsert on (school_id, employee_number). Returns rows written."""
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        for record in records:
            db_execute(
                c,
                '''INSERT INTO teachers
                   (school_id, employee_number, first_name, last_name, phone, email,
                    gender, qualification, date_hired)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT (school_id, employee_number) DO UPDATE SET
                     first_name = excluded.first_name,
                     last_name = excluded.last_name,
                     phone = excluded.phone,
                     email = excluded.email,
                     gender = excluded.gender,
                     qualification = excluded.qualification,
                     date_hired = excluded.date_hired,
                     updated_at = CURRENT_TIMESTAMP''',
                (school_id,) + tuple(record.get(col) for col in TEACHER_COLUMNS),
            )
    return len(records)


def teacher_suggestions(school_id, class_id=None):
    """Teachers of a school with subject names; teachers assigned in `class_id` first."""
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT t.id, t.first_name, t.last_name, t.email, sub.name AS subject_name,
                      ts.class_id
               FROM teachers t
               LEFT JOIN teacher_subjects ts ON ts.teacher_id = t.id
               LEFT JOIN subjects sub ON sub.id = ts.subject_id
               WHERE t.school_id = ?
               ORDER BY t.first_name, t.last_name, sub.name''',
            (school_id,),
        )
        rows = _rows(c)
    teachers = {}
    for row in rows:
        item = teachers.setdefault(row['id'], {
            'id': row['id'],
            'name': _full_name(row['first_name'], row['last_name']),
            'email': row.get('email'),
            'subjects': [],
            'teaches_class': False,
        })
        if row.get('subject_name') and row['subject_name'] not in item['subjects']:
            item['subjects'].append(row['subject_name'])
        if class_id and row.get('class_id') == class_id:
            item['teaches_class'] = True
    return sorted(teachers.values(), key=lambda t: (not t['teaches_class'], t['name'].lower()))


# ==================== STUDENTS ====================

STUDENT_COLUMNS = ('stream_id', 'admission_number', 'first_name', 'last_name', 'date_of_birth',
                   'gender', 'guardian_name', 'guardian_phone', 'address')


def list_students(school_id, search='', class_id=None, stream_id=None):
    where = ['st.school_id = ?']
    params = [school_id]
    if search:
        pattern = f'%{search.strip().lower()}%'
        where.append("(LOWER(st.first_name || ' ' || st.last_name) LIKE ? OR LOWER(st.admission_number) LIKE ?)")
        params += [pattern, pattern]
    if class_id:
        where.append('s.class_id = ?')
        params.append(class_id)
    if stream_id:
        where.append('st.stream_id = ?')
        params.append(stream_id)
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            f'''SELECT st.id, st.admission_number, st.first_name, st.last_name, st.gender,
                       st.stream_id, s.name AS stream_name, cl.id AS class_id, cl.name AS class_name
                FROM students st
                LEFT JOIN streams s ON s.id = st.stream_id
                LEFT JOIN classes cl ON cl.id = s.class_id
                WHERE {' AND '.join(where)}
                ORDER BY st.admission_number''',
            tuple(params),
        )
        return _rows(c)


def get_student(school_id, student_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT st.*, s.name AS stream_name, cl.id AS class_id, cl.name AS class_name
               FROM students st
               LEFT JOIN streams s ON s.id = st.stream_id
               LEFT JOIN classes cl ON cl.id = s.class_id
               WHERE st.id = ? AND st.school_id = ?''',
            (student_id, school_id),
        )
        return _row(c)


def get_student_by_profile(profile_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT st.*, s.name AS stream_name, cl.id AS class_id, cl.name AS class_name
               FROM students st
               LEFT JOIN streams s ON s.id = st.stream_id
               LEFT JOIN classes cl ON cl.id = s.class_id
               WHERE st.profile_id = ? LIMIT 1''',
            (profile_id,),
        )
        return _row(c)


def _insert_student_with_cursor(c, school_id, data, login_email, password_hash):
    profile_id = None
    if login_email and password_hash:
        profile_id = create_profile_with_cursor(
            c, login_email, password_hash, 'student', school_id,
            _full_name(data.get('first_name'), data.get('last_name')),
        )
    db_execute(
        c,
        '''INSERT INTO students
           (school_id, profile_id, stream_id, admission_number, first_name, last_name,
            date_of_birth, gender, guardian_name, guardian_phone, address)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) RETURNING id''',
        (school_id, profile_id) + tuple(data.get(col) or None for col in STUDENT_COLUMNS),
    )
    return c.fetchone()[0]


def _sync_student_login_email(c, school_id, student_id, login_email):
    """Move the student's login profile to the email derived from its admission number."""
    login_email = login_email.strip().lower()
    db_execute(
        c,
        '''SELECT p.id, p.email FROM students s JOIN profiles p ON p.id = s.profile_id
           WHERE s.id = ? AND s.school_id = ?''',
        (student_id, school_id),
    )
    row = c.fetchone()
    if not row or (row[1] or '').lower() == login_email:
        return
    db_execute(c, 'SELECT id FROM profiles WHERE LOWER(email) = ? AND id <> ? LIMIT 1', (login_email, row[0]))
    if c.fetchone():
        raise ValueError(f'An account with email {login_email} already exists.')
    db_execute(
        c,
        'UPDATE profiles SET email = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?',
        (login_email, row[0]),
    )
    logger.info("Student %s login email changed to %s", student_id, login_email)


def save_student(school_id, data, student_id=None, login_email=None, password_hash=None):
    """Insert (with a student login profile) or update a student.

    On update, passing ``login_email`` keeps the login profile in step with an
    edited admission number.
    """
    try:
        with db_connection(commit=True) as conn:
            c = conn.cursor()
            if data.get('stream_id'):
                db_execute(
                    c,
                    '''SELECT 1 FROM streams s JOIN classes cl ON cl.id = s.class_id
                       WHERE s.id = ? AND cl.school_id = ?''',
                    (data['stream_id'], school_id),
                )
                if not c.fetchone():
                    raise ValueError('Selected stream does not belong to this school.')
            if student_id:
                if login_email:
                    _sync_student_login_email(c, school_id, student_id, login_email)
                db_execute(
                    c,
                    '''UPDATE students
                       SET stream_id = ?, admission_number = ?, first_name = ?, last_name = ?,
                           date_of_birth = ?, gender = ?, guardian_name = ?, guardian_phone = ?,
                           address = ?, updated_at = CURRENT_TIMESTAMP
                       WHERE id = ? AND school_id = ?''',
                    tuple(data.get(col) or None for col in STUDENT_COLUMNS) + (student_id, school_id),
                )
                return student_id
            return _insert_student_with_cursor(c, school_id, data, login_email, password_hash)
    except psycopg2.IntegrityError:
        raise ValueError(f"Admission number {data.get('admission_number')} is already registered.")


def delete_student(school_id, student_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT profile_id FROM students WHERE id = ? AND school_id = ?', (student_id, school_id))
        row = c.fetchone()
        if not row:
            return 0
        db_execute(c, 'DELETE FROM students WHERE id = ? AND school_id = ?', (student_id, school_id))
        if row[0]:
            db_execute(c, 'DELETE FROM profiles WHERE id = ?', (row[0],))
        return 1


def insert_students(school_id, records, email_for, hash_for):
    """
    Insert uploaded students one by one so a bad row does not sink the
    batch. `email_for(record)` and `hash_for(record)` supply login details.
    Returns a list of {row, identifier, ok, message}.
    """
    outcomes = []
    with db_connection() as conn:
        c = conn.cursor()
        for record in records:
            db_execute(c, 'SAVEPOINT student_row')
            try:
                _insert_student_with_cursor(c, school_id, record, email_for(record), hash_for(record))
            except (ValueError, psycopg2.Error) as exc:
                db_execute(c, 'ROLLBACK TO SAVEPOINT student_row')
                message = str(exc).strip().splitlines()[0] if str(exc).strip() else 'insert failed'
                if isinstance(exc, psycopg2.IntegrityError):
                    message = 'admission number already registered'
                outcomes.append({'row': record['row'], 'identifier': record['admission_number'],
                                 'ok': False, 'message': f"Row {record['row']}: Failed - {message}"})
            else:
                db_execute(c, 'RELEASE SAVEPOINT student_row')
                outcomes.append({'row': record['row'], 'identifier': record['admission_number'],
                                 'ok': True, 'message': f"Row {record['row']}: Success"})
        conn.commit()
    return outcomes


def list_students_for_class(class_id, stream_id=None):
    where = ['s.class_id = ?']
    params = [class_id]
    if stream_id:
        where.append('st.stream_id = ?')
        params.append(stream_id)
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            f'''SELECT st.id, st.admission_number, st.first_name, st.last_name,
                       st.stream_id, s.name AS stream_name
                FROM students st JOIN streams s ON s.id = st.stream_id
                WHERE {' AND '.join(where)}
                ORDER BY st.admission_number''',
            tuple(params),
        )
        return _rows(c)


# ==================== TERMS & EXAMINATIONS ====================

def list_terms(school_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            'SELECT id, name, code, start_date, end_date FROM terms WHERE school_id = ? ORDER BY start_date NULLS LAST, name',
            (school_id,),
        )
        return _rows(c)


def get_term(school_id, term_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            'SELECT id, name, code, start_date, end_date FROM terms WHERE id = ? AND school_id = ?',
            (term_id, school_id),
        )
        return _row(c)


def save_term(school_id, data, term_id=None):
    params = (data['name'], data['code'], data.get('start_date'), data.get('end_date'))
    try:
        with db_connection(commit=True) as conn:
            c = conn.cursor()
            if term_id:
                db_execute(
                    c,
                    '''UPDATE terms SET name = ?, code = ?, start_date = ?, end_date = ?,
                           updated_at = CURRENT_TIMESTAMP
                       WHERE id = ? AND school_id = ?''',
                    params + (term_id, school_id),
                )
                return term_id
            db_execute(
                c,
                '''INSERT INTO terms (name, code, start_date, end_date, school_id)
                   VALUES (?, ?, ?, ?, ?) RETURNING id''',
                params + (school_id,),
            )
            return c.fetchone()[0]
    except psycopg2.IntegrityError:
        raise ValueError(f"Term code {data['code']} is already in use.")


def delete_term(school_id, term_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'DELETE FROM terms WHERE id = ? AND school_id = ?', (term_id, school_id))
        return c.rowcount


def list_examinations(school_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT e.id, e.name, e.year, e.start_date, e.end_date, e.term_id, t.name AS term_name,
                      (SELECT COUNT(*) FROM results r WHERE r.examination_id = e.id) AS result_count
               FROM examinations e JOIN terms t ON t.id = e.term_id
               WHERE e.school_id = ?
               ORDER BY e.year DESC, e.start_date DESC NULLS LAST, e.name''',
            (school_id,),
        )
        return _rows(c)


def get_examination(school_id, examination_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT e.id, e.name, e.year, e.start_date, e.end_date, e.term_id, t.name AS term_name
               FROM examinations e JOIN terms t ON t.id = e.term_id
               WHERE e.id = ? AND e.school_id = ?''',
            (examination_id, school_id),
        )
        return _row(c)


def save_examination(school_id, data, examination_id=None):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT 1 FROM terms WHERE id = ? AND school_id = ?', (data['term_id'], school_id))
        if not c.fetchone():
            raise ValueError('Selected term does not belong to this school.')
        params = (data['term_id'], data['name'], data['year'], data.get('start_date'), data.get('end_date'))
        if examination_id:
            db_execute(
                c,
                '''UPDATE examinations
                   SET term_id = ?, name = ?, year = ?, start_date = ?, end_date = ?,
                       updated_at = CURRENT_TIMESTAMP
                   WHERE id = ? AND school_id = ?''',
                params + (examination_id, school_id),
            )
            return examination_id
        db_execute(
            c,
            '''INSERT INTO examinations (term_id, name, year, start_date, end_date, school_id)
               VALUES (?, ?, ?, ?, ?, ?) RETURNING id''',
            params + (school_id,),
        )
        return c.fetchone()[0]


def delete_examination(school_id, examination_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'DELETE FROM examinations WHERE id = ? AND school_id = ?', (examination_id, school_id))
        return c.rowcount


# ==================== TEACHER SUBJECTS ====================

def list_teacher_subjects(class_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT ts.id, ts.teacher_id, ts.subject_id, t.first_name, t.last_name,
                      sub.name AS subject_name, sub.code AS subject_code
               FROM teacher_subjects ts
               JOIN teachers t ON t.id = ts.teacher_id
               JOIN subjects sub ON sub.id = ts.subject_id
               WHERE ts.class_id = ?
               ORDER BY t.first_name, t.last_name, sub.name''',
            (class_id,),
        )
        return _rows(c)


def replace_class_assignments(class_id, pairs):
    """
    Replace all teacher/subject assignments of a class with `pairs`
    ((teacher_id, subject_id) tuples) in one transaction.
    """
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'DELETE FROM teacher_subjects WHERE class_id = ?', (class_id,))
        for teacher_id, subject_id in pairs:
            db_execute(
                c,
                '''INSERT INTO teacher_subjects (teacher_id, subject_id, class_id)
                   VALUES (?, ?, ?)
                   ON CONFLICT (teacher_id, subject_id, class_id) DO NOTHING''',
                (teacher_id, subject_id, class_id),
            )
    logger.info("Class %s assignments replaced (%d pairs).", class_id, len(pairs))


def list_assignments_for_teacher(teacher_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT ts.class_id, cl.name AS class_name, ts.subject_id, sub.name AS subject_name
               FROM teacher_subjects ts
               JOIN classes cl ON cl.id = ts.class_id
               JOIN subjects sub ON sub.id = ts.subject_id
               WHERE ts.teacher_id = ?
               ORDER BY cl.name, sub.name''',
            (teacher_id,),
        )
        return _rows(c)


def teacher_teaches(teacher_id, class_id, subject_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT 1 FROM teacher_subjects
               WHERE teacher_id = ? AND class_id = ? AND subject_id = ? LIMIT 1''',
            (teacher_id, class_id, subject_id),
        )
        return c.fetchone() is not None


# ==================== RESULTS ====================

def list_results_for_examination(school_id, examination_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT r.id, r.score, r.grade, r.remarks, r.student_id, r.subject_id,
                      st.first_name, st.last_name, st.admission_number, sub.name AS subject_name
               FROM results r
               JOIN students st ON st.id = r.student_id
               JOIN subjects sub ON sub.id = r.subject_id
               WHERE r.examination_id = ? AND st.school_id = ?
               ORDER BY st.admission_number, sub.name''',
            (examination_id, school_id),
        )
        rows = _rows(c)
    for row in rows:
        row['score'] = float(row['score'])
        row['student_name'] = _full_name(row['first_name'], row['last_name'])
    return rows


def list_results_for_student(student_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT r.id, r.score, r.grade, r.remarks, r.created_at, r.subject_id, r.examination_id,
                      sub.name AS subject_name, e.name AS examination_name, e.year, t.name AS term_name
               FROM results r
               JOIN subjects sub ON sub.id = r.subject_id
               JOIN examinations e ON e.id = r.examination_id
               JOIN terms t ON t.id = e.term_id
               WHERE r.student_id = ?
               ORDER BY e.year DESC, e.id DESC, sub.name''',
            (student_id,),
        )
        rows = _rows(c)
    for row in rows:
        row['score'] = float(row['score'])
    return rows


def list_results_for_teacher(teacher_id):
    """Exam results uploaded by a teacher, joined for analytics."""
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT r.id, r.score, r.grade, r.created_at, sub.name AS subject_name,
                      st.first_name, st.last_name, st.admission_number,
                      e.name AS examination_name, e.year, t.name AS term_name, cl.name AS class_name
               FROM results r
               JOIN subjects sub ON sub.id = r.subject_id
               JOIN examinations e ON e.id = r.examination_id
               JOIN terms t ON t.id = e.term_id
               JOIN students st ON st.id = r.student_id
               LEFT JOIN streams s ON s.id = st.stream_id
               LEFT JOIN classes cl ON cl.id = s.class_id
               WHERE r.teacher_id = ?
               ORDER BY r.created_at''',
            (teacher_id,),
        )
        rows = _rows(c)
    for row in rows:
        row['score'] = float(row['score'])
        row['student_name'] = _full_name(row['first_name'], row['last_name'])
    return rows


def get_existing_scores(examination_id, subject_id, student_ids):
    """Map student_id -> {score, grade, remarks} for one exam/subject."""
    if not student_ids:
        return {}
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT student_id, score, grade, remarks FROM results
               WHERE examination_id = ? AND subject_id = ? AND student_id = ANY(?)''',
            (examination_id, subject_id, list(student_ids)),
        )
        return {
            row['student_id']: {'score': float(row['score']), 'grade': row['grade'], 'remarks': row['remarks']}
            for row in _rows(c)
        }


def upsert_results(rows):
    """Upsert exam results on (student_id, subject_id, examination_id)."""
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        for row in rows:
            db_execute(
                c,
                '''INSERT INTO results (student_id, subject_id, examination_id, teacher_id, score, grade, remarks)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT (student_id, subject_id, examination_id) DO UPDATE SET
                     teacher_id = excluded.teacher_id,
                     score = excluded.score,
                     grade = excluded.grade,
                     remarks = excluded.remarks,
                     updated_at = CURRENT_TIMESTAMP''',
                (row['student_id'], row['subject_id'], row['examination_id'], row['teacher_id'],
                 row['score'], row['grade'], row.get('remarks')),
            )
    return len(rows)


def delete_result(result_id, teacher_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'DELETE FROM results WHERE id = ? AND teacher_id = ?', (result_id, teacher_id))
        return c.rowcount


def list_class_results(class_id, examination_id):
    """All subject results of a class for one examination."""
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT r.student_id, r.subject_id, r.score, r.grade,
                      st.first_name, st.last_name, st.admission_number, sub.name AS subject_name
               FROM results r
               JOIN students st ON st.id = r.student_id
               JOIN streams s ON s.id = st.stream_id
               JOIN subjects sub ON sub.id = r.subject_id
               WHERE s.class_id = ? AND r.examination_id = ?''',
            (class_id, examination_id),
        )
        rows = _rows(c)
    for row in rows:
        row['score'] = float(row['score'])
        row['student_name'] = _full_name(row['first_name'], row['last_name'])
    return rows


# ==================== TESTS ====================

def list_tests_for_teacher(teacher_id):
    """Teacher's tests with subject/class names and the list of marks."""
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT te.id, te.name, te.type, te.max_marks, te.created_at, te.class_id, te.stream_id,
                      te.subject_id, sub.name AS subject_name, cl.name AS class_name, s.name AS stream_name,
                      COALESCE(ARRAY_AGG(tr.marks) FILTER (WHERE tr.id IS NOT NULL), '{}') AS marks
               FROM tests te
               JOIN subjects sub ON sub.id = te.subject_id
               JOIN classes cl ON cl.id = te.class_id
               LEFT JOIN streams s ON s.id = te.stream_id
               LEFT JOIN test_results tr ON tr.test_id = te.id
               WHERE te.teacher_id = ?
               GROUP BY te.id, sub.name, cl.name, s.name
               ORDER BY te.created_at DESC''',
            (teacher_id,),
        )
        rows = _rows(c)
    for row in rows:
        row['max_marks'] = float(row['max_marks'])
        row['marks'] = [float(m) for m in (row.get('marks') or [])]
    return rows


def get_test(test_id, teacher_id=None):
    where = ['te.id = ?']
    params = [test_id]
    if teacher_id is not None:
        where.append('te.teacher_id = ?')
        params.append(teacher_id)
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            f'''SELECT te.*, sub.name AS subject_name, cl.name AS class_name
                FROM tests te
                JOIN subjects sub ON sub.id = te.subject_id
                JOIN classes cl ON cl.id = te.class_id
                WHERE {' AND '.join(where)}''',
            tuple(params),
        )
        row = _row(c)
    if row:
        row['max_marks'] = float(row['max_marks'])
    return row


def create_test(school_id, teacher_id, data):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''INSERT INTO tests (school_id, teacher_id, name, type, subject_id, class_id, stream_id, max_marks)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?) RETURNING id''',
            (school_id, teacher_id, data['name'], data['type'], data['subject_id'], data['class_id'],
             data.get('stream_id') or None, data['max_marks']),
        )
        return c.fetchone()[0]


def delete_test(test_id, teacher_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'DELETE FROM tests WHERE id = ? AND teacher_id = ?', (test_id, teacher_id))
        return c.rowcount


def list_test_results(test_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT tr.id, tr.student_id, tr.marks, tr.grade,
                      st.first_name, st.last_name, st.admission_number
               FROM test_results tr JOIN students st ON st.id = tr.student_id
               WHERE tr.test_id = ?
               ORDER BY st.admission_number''',
            (test_id,),
        )
        rows = _rows(c)
    for row in rows:
        row['marks'] = float(row['marks'])
        row['student_name'] = _full_name(row['first_name'], row['last_name'])
    return rows


def upsert_test_results(rows):
    """Upsert test marks on (student_id, test_id)."""
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        for row in rows:
            db_execute(
                c,
                '''INSERT INTO test_results (student_id, test_id, marks, grade)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT (student_id, test_id) DO UPDATE SET
                     marks = excluded.marks,
                     grade = excluded.grade,
                     updated_at = CURRENT_TIMESTAMP''',
                (row['student_id'], row['test_id'], row['marks'], row['grade']),
            )
    return len(rows)


def list_test_results_for_student(student_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT tr.id, tr.test_id, tr.marks, tr.grade, tr.created_at,
                      te.name AS test_name, te.type, te.max_marks, sub.name AS subject_name
               FROM test_results tr
               JOIN tests te ON te.id = tr.test_id
               JOIN subjects sub ON sub.id = te.subject_id
               WHERE tr.student_id = ?
               ORDER BY tr.created_at DESC''',
            (student_id,),
        )
        rows = _rows(c)
    for row in rows:
        row['marks'] = float(row['marks'])
        row['max_marks'] = float(row['max_marks'])
    return rows


# ==================== TIMETABLES ====================

def get_timetable_slots(class_id, stream_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            'SELECT time_slots FROM timetables WHERE class_id = ? AND stream_id = ?',
            (class_id, stream_id),
        )
        row = c.fetchone()
    if not row:
        return []
    slots = row[0]
    if isinstance(slots, str):
        slots = json.loads(slots or '[]')
    return list(slots or [])


def save_timetable_slots(class_id, stream_id, slots):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''INSERT INTO timetables (class_id, stream_id, time_slots)
               VALUES (?, ?, ?::jsonb)
               ON CONFLICT (class_id, stream_id) DO UPDATE SET
                 time_slots = excluded.time_slots,
                 updated_at = CURRENT_TIMESTAMP''',
            (class_id, stream_id, json.dumps(slots)),
        )


# ==================== BATCH IMPORTS ====================

def record_batch_import(school_id, imported_by, entity, total_rows, success_count, errors):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''INSERT INTO batch_imports
               (school_id, imported_by, entity, total_rows, success_count, error_count, errors)
               VALUES (?, ?, ?, ?, ?, ?, ?)''',
            (school_id, imported_by, entity, total_rows, success_count, len(errors), json.dumps(errors)),
        )
    logger.info(
        "Batch import of %s for school %s: %d ok, %d failed.",
        entity, school_id, success_count, len(errors),
    )
