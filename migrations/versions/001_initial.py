"""Initial schema for the school portal.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op


# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create all tables and indexes for the school portal."""

    op.execute('''CREATE TABLE IF NOT EXISTS schools (
                    id SERIAL PRIMARY KEY,
                    school_name TEXT NOT NULL,
                    code TEXT UNIQUE NOT NULL,
                    plan TEXT DEFAULT 'free',
                    grade_a_min INTEGER DEFAULT 80,
                    grade_b_min INTEGER DEFAULT 70,
                    grade_c_min INTEGER DEFAULT 60,
                    grade_d_min INTEGER DEFAULT 50,
                    grade_e_min INTEGER DEFAULT 40,
                    pass_mark INTEGER DEFAULT 50,
                    test_pass_percent INTEGER DEFAULT 40,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    # Login accounts; super_admin has no school
    op.execute('''CREATE TABLE IF NOT EXISTS profiles (
                    id SERIAL PRIMARY KEY,
                    school_id INTEGER REFERENCES schools(id) ON DELETE CASCADE,
                    email TEXT UNIQUE NOT NULL,
                    password_hash TEXT NOT NULL,
                    full_name TEXT,
                    role TEXT NOT NULL CHECK (role IN ('super_admin', 'admin', 'teacher', 'student')),
                    current_login_at TIMESTAMP,
                    last_login_at TIMESTAMP,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS teachers (
                    id SERIAL PRIMARY KEY,
                    school_id INTEGER NOT NULL REFERENCES schools(id) ON DELETE CASCADE,
                    profile_id INTEGER REFERENCES profiles(id) ON DELETE SET NULL,
                    employee_number TEXT NOT NULL,
                    first_name TEXT NOT NULL,
                    last_name TEXT NOT NULL,
                    phone TEXT,
                    email TEXT,
                    gender TEXT,
                    qualification TEXT,
                    date_hired DATE,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (school_id, employee_number)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS classes (
                    id SERIAL PRIMARY KEY,
                    school_id INTEGER NOT NULL REFERENCES schools(id) ON DELETE CASCADE,
                    class_teacher_id INTEGER REFERENCES teachers(id) ON DELETE SET NULL,
                    name TEXT NOT NULL,
                    grade_level INTEGER,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (school_id, name)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS streams (
                    id SERIAL PRIMARY KEY,
                    class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (class_id, name)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS students (
                    id SERIAL PRIMARY KEY,
                    school_id INTEGER NOT NULL REFERENCES schools(id) ON DELETE CASCADE,
                    stream_id INTEGER REFERENCES streams(id) ON DELETE SET NULL,
                    profile_id INTEGER REFERENCES profiles(id) ON DELETE SET NULL,
                    admission_number TEXT NOT NULL,
                    first_name TEXT NOT NULL,
                    last_name TEXT NOT NULL,
                    date_of_birth DATE,
                    gender TEXT,
                    guardian_name TEXT,
                    guardian_phone TEXT,
                    address TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (school_id, admission_number)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS subjects (
                    id SERIAL PRIMARY KEY,
                    school_id INTEGER NOT NULL REFERENCES schools(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    code TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (school_id, name)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS terms (
                    id SERIAL PRIMARY KEY,
                    school_id INTEGER NOT NULL REFERENCES schools(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    code TEXT NOT NULL,
                    start_date DATE,
                    end_date DATE,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (school_id, code)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS examinations (
                    id SERIAL PRIMARY KEY,
                    school_id INTEGER NOT NULL REFERENCES schools(id) ON DELETE CASCADE,
                    term_id INTEGER NOT NULL REFERENCES terms(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    year INTEGER NOT NULL,
                    start_date DATE,
                    end_date DATE,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    # One result per student/subject/examination
    op.execute('''CREATE TABLE IF NOT EXISTS results (
                    id SERIAL PRIMARY KEY,
                    student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
                    subject_id INTEGER NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
                    examination_id INTEGER NOT NULL REFERENCES examinations(id) ON DELETE CASCADE,
                    teacher_id INTEGER REFERENCES teachers(id) ON DELETE SET NULL,
                    score NUMERIC(5, 2) NOT NULL CHECK (score >= 0 AND score <= 100),
                    grade TEXT,
                    remarks TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (student_id, subject_id, examination_id)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS tests (
                    id SERIAL PRIMARY KEY,
                    school_id INTEGER NOT NULL REFERENCES schools(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    type TEXT NOT NULL CHECK (type IN ('quiz', 'cat', 'assignment', 'practical')),
                    subject_id INTEGER NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
                    teacher_id INTEGER NOT NULL REFERENCES teachers(id) ON DELETE CASCADE,
                    class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
                    stream_id INTEGER REFERENCES streams(id) ON DELETE SET NULL,
                    max_marks NUMERIC(6, 2) NOT NULL CHECK (max_marks > 0),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS test_results (
                    id SERIAL PRIMARY KEY,
                    student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
                    test_id INTEGER NOT NULL REFERENCES tests(id) ON DELETE CASCADE,
                    marks NUMERIC(6, 2) NOT NULL CHECK (marks >= 0),
                    grade TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (student_id, test_id)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS teacher_subjects (
                    id SERIAL PRIMARY KEY,
                    teacher_id INTEGER NOT NULL REFERENCES teachers(id) ON DELETE CASCADE,
                    subject_id INTEGER NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
                    class_id INTEGER REFERENCES classes(id) ON DELETE CASCADE,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (teacher_id, subject_id, class_id)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS timetables (
                    id SERIAL PRIMARY KEY,
                    class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
                    stream_id INTEGER NOT NULL REFERENCES streams(id) ON DELETE CASCADE,
                    time_slots JSONB NOT NULL DEFAULT '[]'::jsonb,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (class_id, stream_id)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS login_attempts (
                    endpoint TEXT NOT NULL,
                    username TEXT NOT NULL,
                    ip_address TEXT NOT NULL,
                    failures INTEGER DEFAULT 0,
                    first_failed_at TIMESTAMP,
                    last_failed_at TIMESTAMP,
                    locked_until TIMESTAMP,
                    PRIMARY KEY (endpoint, username, ip_address)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS batch_imports (
                    id SERIAL PRIMARY KEY,
                    school_id INTEGER NOT NULL REFERENCES schools(id) ON DELETE CASCADE,
                    imported_by INTEGER REFERENCES profiles(id) ON DELETE SET NULL,
                    entity TEXT NOT NULL,
                    total_rows INTEGER DEFAULT 0,
                    success_count INTEGER DEFAULT 0,
                    error_count INTEGER DEFAULT 0,
                    errors TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    # Create indexes for performance
    op.execute('CREATE INDEX IF NOT EXISTS idx_students_stream ON students(stream_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_results_examination ON results(examination_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_results_teacher ON results(teacher_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_tests_teacher ON tests(teacher_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_teacher_subjects_class ON teacher_subjects(class_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_login_attempts_locked_until ON login_attempts(locked_until)')


def downgrade() -> None:
    """Drop all tables (destructive)."""
    op.execute('DROP TABLE IF EXISTS batch_imports CASCADE')
    op.execute('DROP TABLE IF EXISTS login_attempts CASCADE')
    op.execute('DROP TABLE IF EXISTS timetables CASCADE')
    op.execute('DROP TABLE IF EXISTS teacher_subjects CASCADE')
    op.execute('DROP TABLE IF EXISTS test_results CASCADE')
    op.execute('DROP TABLE IF EXISTS tests CASCADE')
    op.execute('DROP TABLE IF EXISTS results CASCADE')
    op.execute('DROP TABLE IF EXISTS examinations CASCADE')
    op.execute('DROP TABLE IF EXISTS terms CASCADE')
    op.execute('DROP TABLE IF EXISTS subjects CASCADE')
    op.execute('DROP TABLE IF EXISTS students CASCADE')
    op.execute('DROP TABLE IF EXISTS streams CASCADE')
    op.execute('DROP TABLE IF EXISTS classes CASCADE')
    op.execute('DROP TABLE IF EXISTS teachers CASCADE')
    op.execute('DROP TABLE IF EXISTS profiles CASCADE')
    op.execute('DROP TABLE IF EXISTS schools CASCADE')
