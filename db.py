import logging
import os
from contextlib import contextmanager

import psycopg2
from dotenv import load_dotenv
from psycopg2.extras import DictCursor

load_dotenv()

logger = logging.getLogger(__name__)

PK_COLUMN_SQL = 'SERIAL PRIMARY KEY'

SCHEMA_STATEMENTS = [
    f'''CREATE TABLE IF NOT EXISTS schools (
            id {PK_COLUMN_SQL},
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
        )''',
    f'''CREATE TABLE IF NOT EXISTS profiles (
            id {PK_COLUMN_SQL},
            school_id INTEGER REFERENCES schools(id) ON DELETE CASCADE,
            email TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            full_name TEXT,
            role TEXT NOT NULL CHECK (role IN ('super_admin', 'admin', 'teacher', 'student')),
            current_login_at TIMESTAMP,
            last_login_at TIMESTAMP,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )''',
    f'''CREATE TABLE IF NOT EXISTS teachers (
            id {PK_COLUMN_SQL},
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
        )''',
    f'''CREATE TABLE IF NOT EXISTS classes (
            id {PK_COLUMN_SQL},
            school_id INTEGER NOT NULL REFERENCES schools(id) ON DELETE CASCADE,
            class_teacher_id INTEGER REFERENCES teachers(id) ON DELETE SET NULL,
            name TEXT NOT NULL,
            grade_level INTEGER,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (school_id, name)
        )''',
    f'''CREATE TABLE IF NOT EXISTS streams (
            id {PK_COLUMN_SQL},
            class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (class_id, name)
        )''',
    f'''CREATE TABLE IF NOT EXISTS students (
            id {PK_COLUMN_SQL},
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
        )''',
    f'''CREATE TABLE IF NOT EXISTS subjects (
            id {PK_COLUMN_SQL},
            school_id INTEGER NOT NULL REFERENCES schools(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            code TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (school_id, name)
        )''',
    f'''CREATE TABLE IF NOT EXISTS terms (
            id {PK_COLUMN_SQL},
            school_id INTEGER NOT NULL REFERENCES schools(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            code TEXT NOT NULL,
            start_date DATE,
            end_date DATE,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (school_id, code)
        )''',
    f'''CREATE TABLE IF NOT EXISTS examinations (
            id {PK_COLUMN_SQL},
            school_id INTEGER NOT NULL REFERENCES schools(id) ON DELETE CASCADE,
            term_id INTEGER NOT NULL REFERENCES terms(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            year INTEGER NOT NULL,
            start_date DATE,
            end_date DATE,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )''',
    f'''CREATE TABLE IF NOT EXISTS results (
            id {PK_COLUMN_SQL},
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
        )''',
    f'''CREATE TABLE IF NOT EXISTS tests (
            id {PK_COLUMN_SQL},
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
        )''',
    f'''CREATE TABLE IF NOT EXISTS test_results (
            id {PK_COLUMN_SQL},
            student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
            test_id INTEGER NOT NULL REFERENCES tests(id) ON DELETE CASCADE,
            marks NUMERIC(6, 2) NOT NULL CHECK (marks >= 0),
            grade TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (student_id, test_id)
        )''',
    f'''CREATE TABLE IF NOT EXISTS teacher_subjects (
            id {PK_COLUMN_SQL},
            teacher_id INTEGER NOT NULL REFERENCES teachers(id) ON DELETE CASCADE,
            subject_id INTEGER NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
            class_id INTEGER REFERENCES classes(id) ON DELETE CASCADE,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (teacher_id, subject_id, class_id)
        )''',
    f'''CREATE TABLE IF NOT EXISTS timetables (
            id {PK_COLUMN_SQL},
            class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
            stream_id INTEGER NOT NULL REFERENCES streams(id) ON DELETE CASCADE,
            time_slots JSONB NOT NULL DEFAULT '[]'::jsonb,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (class_id, stream_id)
        )''',
    '''CREATE TABLE IF NOT EXISTS login_attempts (
            endpoint TEXT NOT NULL,
            username TEXT NOT NULL,
            ip_address TEXT NOT NULL,
            failures INTEGER DEFAULT 0,
            first_failed_at TIMESTAMP,
            last_failed_at TIMESTAMP,
            locked_until TIMESTAMP,
            PRIMARY KEY (endpoint, username, ip_address)
        )''',
    f'''CREATE TABLE IF NOT EXISTS batch_imports (
            id {PK_COLUMN_SQL},
            school_id INTEGER NOT NULL REFERENCES schools(id) ON DELETE CASCADE,
            imported_by INTEGER REFERENCES profiles(id) ON DELETE SET NULL,
            entity TEXT NOT NULL,
            total_rows INTEGER DEFAULT 0,
            success_count INTEGER DEFAULT 0,
            error_count INTEGER DEFAULT 0,
            errors TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )''',
    'CREATE INDEX IF NOT EXISTS idx_students_stream ON students(stream_id)',
    'CREATE INDEX IF NOT EXISTS idx_results_examination ON results(examination_id)',
    'CREATE INDEX IF NOT EXISTS idx_results_teacher ON results(teacher_id)',
    'CREATE INDEX IF NOT EXISTS idx_tests_teacher ON tests(teacher_id)',
    'CREATE INDEX IF NOT EXISTS idx_teacher_subjects_class ON teacher_subjects(class_id)',
    'CREATE INDEX IF NOT EXISTS idx_login_attempts_locked_until ON login_attempts(locked_until)',
]


def _adapt_query(query):
    return query.replace('?', '%s')


def db_execute(cursor, query, params=None):
    if params is None:
        return cursor.execute(_adapt_query(query))
    return cursor.execute(_adapt_query(query), params)


def get_db():
    """Create a PostgreSQL DB connection."""
    database_url = os.environ.get('DATABASE_URL', '').strip()
    if not database_url:
        raise RuntimeError("DATABASE_URL not found. Set it in .env")
    return psycopg2.connect(database_url, cursor_factory=DictCursor, connect_timeout=10)


@contextmanager
def db_connection(commit=False):
    """Context manager for DB connections with optional commit."""
    conn = get_db()
    try:
        yield conn
        if commit:
            conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db():
    """
    Creates all required tables in PostgreSQL if they don't exist.
    """
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        for statement in SCHEMA_STATEMENTS:
            db_execute(c, statement)
    logger.info("Database schema ensured (%d statements).", len(SCHEMA_STATEMENTS))


def show_profiles():
    """List profiles with their roles."""
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, "SELECT email, role FROM profiles ORDER BY id")
        for row in c.fetchall():
            print(row[0], row[1])


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
    print("✅ Database initialized successfully.")
    show_profiles()
