"""
School Portal

A Flask web application for school administrators, teachers and students:
classes and streams, subjects, terms and examinations, teacher tests,
examination results and per-role dashboards over them.
"""

import logging
import os

from dotenv import load_dotenv
from flask import Flask, flash, redirect, render_template, request, session, url_for
from flask_wtf.csrf import CSRFError, CSRFProtect

import auth
import store
from db import init_db

load_dotenv()

app = Flask(__name__, template_folder='frontend/templates', static_folder='static')
ALLOW_INSECURE_DEFAULTS = os.environ.get('ALLOW_INSECURE_DEFAULTS', '').strip().lower() in ('1', 'true', 'yes')
secret_key = os.environ.get('SECRET_KEY')
if not secret_key:
    if ALLOW_INSECURE_DEFAULTS:
        secret_key = 'dev-secret-key-change-me'
    else:
        raise RuntimeError("SECRET_KEY is required in production. Set SECRET_KEY or enable ALLOW_INSECURE_DEFAULTS for local development.")
if not ALLOW_INSECURE_DEFAULTS and len(secret_key) < 32:
    raise RuntimeError("SECRET_KEY is too short. Use at least 32 characters in production.")
app.secret_key = secret_key
app.config['WTF_CSRF_TIME_LIMIT'] = None
app.config['MAX_CONTENT_LENGTH'] = 2 * 1024 * 1024

csrf = CSRFProtect(app)

DATABASE_URL = os.environ.get('DATABASE_URL', '').strip()
if not DATABASE_URL.startswith(('postgres://', 'postgresql://')):
    raise RuntimeError("PostgreSQL is required. Set DATABASE_URL to a postgresql:// connection string.")
SUPER_ADMIN_EMAIL = os.environ.get('SUPER_ADMIN_EMAIL', 'admin@schoolportal.local').strip().lower()
SUPER_ADMIN_PASSWORD = os.environ.get('SUPER_ADMIN_PASSWORD', '').strip()
if not SUPER_ADMIN_PASSWORD:
    raise RuntimeError("SUPER_ADMIN_PASSWORD is required. Set it in environment variables.")
if len(SUPER_ADMIN_PASSWORD) < 12:
    raise RuntimeError("SUPER_ADMIN_PASSWORD is too short. Use at least 12 characters.")
DEFAULT_STUDENT_PASSWORD = os.environ.get('DEFAULT_STUDENT_PASSWORD', '').strip()
if not DEFAULT_STUDENT_PASSWORD:
    raise RuntimeError("DEFAULT_STUDENT_PASSWORD is required. Set it in environment variables.")
if not ALLOW_INSECURE_DEFAULTS and len(DEFAULT_STUDENT_PASSWORD) < 8:
    raise RuntimeError("DEFAULT_STUDENT_PASSWORD is too short. Use at least 8 characters in production.")
STUDENT_EMAIL_DOMAIN = os.environ.get('STUDENT_EMAIL_DOMAIN', 'schoolportal.app').strip().lower()

app.config['DEFAULT_STUDENT_PASSWORD'] = DEFAULT_STUDENT_PASSWORD
app.config['STUDENT_EMAIL_DOMAIN'] = STUDENT_EMAIL_DOMAIN

# Set up logging
LOG_FILE = os.environ.get('LOG_FILE', 'app.log')
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').strip().upper()
logging.basicConfig(filename=LOG_FILE, level=getattr(logging, LOG_LEVEL, logging.INFO),
                    format='%(asctime)s - %(levelname)s - %(message)s')
if ALLOW_INSECURE_DEFAULTS:
    logging.warning("ALLOW_INSECURE_DEFAULTS is enabled. Development-only fallbacks may be active.")

from admin_routes import admin_bp  # noqa: E402
from api_routes import api_bp  # noqa: E402
from student_routes import student_bp  # noqa: E402
from teacher_routes import teacher_bp  # noqa: E402

app.register_blueprint(admin_bp)
app.register_blueprint(teacher_bp)
app.register_blueprint(student_bp)
app.register_blueprint(api_bp)
csrf.exempt(api_bp)


def login_email_for(username):
    """Student login IDs (e.g. AHS0001) map to their generated profile email."""
    username = (username or '').strip().lower()
    if username and '@' not in username:
        return f'{username}@{STUDENT_EMAIL_DOMAIN}'
    return username


# Initialize database (can be disabled when schema is managed by migrations).
RUN_STARTUP_DDL = os.environ.get('RUN_STARTUP_DDL', '1').strip().lower() in ('1', 'true', 'yes')
if RUN_STARTUP_DDL:
    init_db()
else:
    logging.warning("RUN_STARTUP_DDL is disabled. Ensure schema is already migrated before startup.")


def create_super_admin():
    """Ensure super admin account exists; do not reset password on every startup."""
    created = store.ensure_super_admin(SUPER_ADMIN_EMAIL, auth.hash_password(SUPER_ADMIN_PASSWORD))
    if created:
        logging.info("Super admin user created: %s", SUPER_ADMIN_EMAIL)


RUN_STARTUP_BOOTSTRAP = os.environ.get('RUN_STARTUP_BOOTSTRAP', '1').strip().lower() in ('1', 'true', 'yes')
if RUN_STARTUP_BOOTSTRAP:
    create_super_admin()
else:
    logging.warning("RUN_STARTUP_BOOTSTRAP is disabled. Super admin bootstrap skipped.")

# ==================== ROUTES ====================


@app.route('/')
def home():
    if session.get('role') in auth.ROLES:
        return redirect(url_for(auth.dashboard_endpoint_for_role(session['role'])))
    return render_template('shared/login.html')


@app.errorhandler(CSRFError)
def csrf_error(error):
    """Handle CSRF token errors."""
    if 'user_id' in session:
        flash('Form token expired/invalid. Please retry your last action.', 'error')
        return redirect(request.referrer or url_for('home'))
    flash('Your session has expired. Please login again.', 'error')
    return redirect(url_for('login'))


@app.errorhandler(404)
def not_found(error):
    return render_template('shared/404.html'), 404


@app.errorhandler(413)
def upload_too_large(error):
    flash('Uploaded file is too large (2 MB max).', 'error')
    return redirect(request.referrer or url_for('home'))


@app.route('/login', methods=['GET', 'POST'])
def login():
    """Single login for all roles; students may use their login ID."""
    if request.method == 'POST':
        username = request.form.get('username', '').strip().lower()
        password = request.form.get('password', '')

        if not username or not password:
            flash('Please enter username and password.', 'error')
            return render_template('shared/login.html')
        client_ip = auth.get_client_ip()
        blocked, wait_minutes = auth.is_login_blocked('login', username, client_ip)
        if blocked:
            flash(f'Too many failed login attempts. Try again in about {wait_minutes} minute(s).', 'error')
            return render_template('shared/login.html')

        user = store.get_profile_by_email(login_email_for(username))

        if user and auth.check_password(user['password_hash'], password):
            role = user.get('role')
            if role not in auth.ROLES:
                auth.register_failed_login('login', username, client_ip)
                flash('Invalid account role configuration. Contact system administrator.', 'error')
                return render_template('shared/login.html')
            school_id = user.get('school_id')
            if role != 'super_admin' and (not school_id or not store.get_school(school_id)):
                flash('Account is not linked to a valid school. Contact administrator.', 'error')
                return render_template('shared/login.html')

            store.update_login_timestamps(user['id'])
            auth.clear_failed_login('login', username, client_ip)
            session.clear()
            session['user_id'] = user['id']
            session['email'] = user['email']
            session['full_name'] = user.get('full_name') or ''
            session['role'] = role
            session['school_id'] = school_id
            logging.info("Login: %s (%s)", user['email'], role)
            return redirect(url_for(auth.dashboard_endpoint_for_role(role)))

        auth.register_failed_login('login', username, client_ip)
        logging.warning("Failed login for %s from %s", username, client_ip)
        flash('Invalid username or password.', 'error')

    return render_template('shared/login.html')


@app.route('/logout')
def logout():
    session.clear()
    return redirect(url_for('home'))

# ==================== MAIN ====================


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    debug = os.environ.get('FLASK_DEBUG', '0').strip().lower() in ('1', 'true', 'yes')
    app.run(host='0.0.0.0', port=port, debug=debug)
