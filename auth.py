"""Passwords, role guards and login throttling."""

import logging
import os
from datetime import datetime, timedelta
from functools import wraps

from flask import flash, redirect, request, session, url_for
from werkzeug.security import check_password_hash, generate_password_hash

from db import db_connection, db_execute

logger = logging.getLogger(__name__)

LOGIN_MAX_ATTEMPTS = 4
LOGIN_LOCK_MINUTES = 15

ROLES = ('super_admin', 'admin', 'teacher', 'student')
ROLE_DASHBOARDS = {
    'super_admin': 'admin.overview',
    'admin': 'admin.overview',
    'teacher': 'teacher.overview',
    'student': 'student.overview',
}


def hash_password(password):
    """Hash a password."""
    return generate_password_hash(password)


def check_password(hashed, password):
    """Verify a password."""
    return check_password_hash(hashed, password)


def dashboard_endpoint_for_role(role):
    return ROLE_DASHBOARDS.get(role, 'login')


def current_school_id():
    return session.get('school_id')


def role_required(*roles):
    """Redirect to login unless the session role is one of `roles`."""
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if session.get('role') not in roles:
                if 'user_id' in session:
                    flash('You do not have access to that page.', 'error')
                return redirect(url_for('login'))
            return view(*args, **kwargs)
        return wrapped
    return decorator


def get_client_ip():
    """Best-effort client IP extraction."""
    trust_proxy = os.environ.get('TRUST_PROXY_HEADERS', '').strip().lower() in ('1', 'true', 'yes')
    xff = (request.headers.get('X-Forwarded-For') or '').strip()
    if trust_proxy and xff:
        for part in xff.split(','):
            ip = (part or '').strip()
            if ip:
                return ip
    return (request.remote_addr or '').strip() or 'unknown'


def _key(endpoint, username, ip_address):
    return (
        (endpoint or '').strip().lower(),
        (username or '').strip().lower(),
        (ip_address or '').strip(),
    )


def is_login_blocked(endpoint, username, ip_address):
    """Return (blocked, wait_minutes)."""
    purge_old_login_attempts()
    key = _key(endpoint, username, ip_address)
    now = datetime.now()
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT failures, locked_until
               FROM login_attempts
               WHERE endpoint = ? AND username = ? AND ip_address = ?
               LIMIT 1''',
            key,
        )
        row = c.fetchone()
    if not row:
        return False, 0
    locked_until = row[1]
    if locked_until and locked_until > now:
        remaining = locked_until - now
        wait_minutes = max(1, int(remaining.total_seconds() // 60) + (1 if remaining.total_seconds() % 60 else 0))
        return True, wait_minutes
    return False, 0


def register_failed_login(endpoint, username, ip_address):
    """Track a failed login and lock after max attempts."""
    purge_old_login_attempts()
    key = _key(endpoint, username, ip_address)
    now = datetime.now()
    window_start = now - timedelta(minutes=LOGIN_LOCK_MINUTES)
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT failures, last_failed_at, locked_until
               FROM login_attempts
               WHERE endpoint = ? AND username = ? AND ip_address = ?
               LIMIT 1''',
            key,
        )
        row = c.fetchone()
        if not row:
            db_execute(
                c,
                '''INSERT INTO login_attempts
                   (endpoint, username, ip_address, failures, first_failed_at, last_failed_at, locked_until)
                   VALUES (?, ?, ?, ?, ?, ?, ?)''',
                key + (1, now, now, None),
            )
            return
        failures, last_failed_at, current_locked_until = int(row[0] or 0), row[1], row[2]
        if current_locked_until and current_locked_until > now:
            return
        restarted = not last_failed_at or last_failed_at < window_start
        failures = 1 if restarted else failures + 1
        new_locked_until = now + timedelta(minutes=LOGIN_LOCK_MINUTES) if failures >= LOGIN_MAX_ATTEMPTS else None
        if new_locked_until:
            logger.warning("Login locked for %s from %s after %d failures.", key[1], key[2], failures)
        if restarted:
            db_execute(
                c,
                '''UPDATE login_attempts
                   SET failures = ?, last_failed_at = ?, locked_until = ?, first_failed_at = ?
                   WHERE endpoint = ? AND username = ? AND ip_address = ?''',
                (failures, now, new_locked_until, now) + key,
            )
        else:
            db_execute(
                c,
                '''UPDATE login_attempts
                   SET failures = ?, last_failed_at = ?, locked_until = ?
                   WHERE endpoint = ? AND username = ? AND ip_address = ?''',
                (failures, now, new_locked_until) + key,
            )


def clear_failed_login(endpoint, username, ip_address):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''DELETE FROM login_attempts
               WHERE endpoint = ? AND username = ? AND ip_address = ?''',
            _key(endpoint, username, ip_address),
        )


def purge_old_login_attempts():
    """Delete stale login-attempt rows to keep table size small."""
    cutoff = datetime.now() - timedelta(days=7)
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''DELETE FROM login_attempts
               WHERE (locked_until IS NOT NULL AND locked_until < ?)
                  OR (locked_until IS NULL AND last_failed_at IS NOT NULL AND last_failed_at < ?)''',
            (cutoff, cutoff),
        )
