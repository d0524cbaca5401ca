"""JSON endpoints used by the dashboard pages (session-authenticated, CSRF-exempt)."""

import logging

import psycopg2
from flask import Blueprint, jsonify, request, session

import auth
import csv_import
import store
import timetable

logger = logging.getLogger(__name__)

api_bp = Blueprint('api', __name__, url_prefix='/api')

STAFF_ROLES = ('admin', 'super_admin', 'teacher')
ADMIN_ROLES = ('admin', 'super_admin')


# =====================================================
# AUTH HELPER
# =====================================================
def api_identity(roles=None):
    """Return (school_id, error_response)."""
    role = session.get('role')
    school_id = auth.current_school_id()
    if 'user_id' not in session or role not in auth.ROLES or not school_id:
        return None, (jsonify({"error": "Unauthorized"}), 401)
    if roles and role not in roles:
        return None, (jsonify({"error": "Forbidden"}), 403)
    return school_id, None


def _class_and_stream(school_id, class_id, stream_id):
    if not store.get_class(school_id, class_id):
        return False
    return any(s['id'] == stream_id for s in store.list_streams(class_id))


# =====================================================
# TIMETABLE
# =====================================================
@api_bp.get("/timetable/<int:class_id>/<int:stream_id>")
def timetable_list(class_id, stream_id):
    school_id, error = api_identity()
    if error:
        return error
    if not _class_and_stream(school_id, class_id, stream_id):
        return jsonify({"error": "Class or stream not found"}), 404
    slots = timetable.sort_slots(store.get_timetable_slots(class_id, stream_id))
    return jsonify({"slots": slots})


@api_bp.post("/timetable/<int:class_id>/<int:stream_id>")
def timetable_add(class_id, stream_id):
    school_id, error = api_identity(ADMIN_ROLES)
    if error:
        return error
    if not _class_and_stream(school_id, class_id, stream_id):
        return jsonify({"error": "Class or stream not found"}), 404
    try:
        slots, slot = timetable.add_slot(store.get_timetable_slots(class_id, stream_id), request.get_json(silent=True))
        store.save_timetable_slots(class_id, stream_id, slots)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    except psycopg2.Error:
        logger.exception("Saving timetable failed for class %s stream %s", class_id, stream_id)
        return jsonify({"error": "Database error"}), 500
    return jsonify({"slot": slot}), 201


@api_bp.put("/timetable/<int:class_id>/<int:stream_id>/<slot_id>")
def timetable_update(class_id, stream_id, slot_id):
    school_id, error = api_identity(ADMIN_ROLES)
    if error:
        return error
    if not _class_and_stream(school_id, class_id, stream_id):
        return jsonify({"error": "Class or stream not found"}), 404
    try:
        slots, slot = timetable.update_slot(
            store.get_timetable_slots(class_id, stream_id), slot_id, request.get_json(silent=True)
        )
        store.save_timetable_slots(class_id, stream_id, slots)
    except KeyError:
        return jsonify({"error": "Slot not found"}), 404
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    except psycopg2.Error:
        logger.exception("Saving timetable failed for class %s stream %s", class_id, stream_id)
        return jsonify({"error": "Database error"}), 500
    return jsonify({"slot": slot})


@api_bp.delete("/timetable/<int:class_id>/<int:stream_id>/<slot_id>")
def timetable_delete(class_id, stream_id, slot_id):
    school_id, error = api_identity(ADMIN_ROLES)
    if error:
        return error
    if not _class_and_stream(school_id, class_id, stream_id):
        return jsonify({"error": "Class or stream not found"}), 404
    try:
        slots = timetable.remove_slot(store.get_timetable_slots(class_id, stream_id), slot_id)
        store.save_timetable_slots(class_id, stream_id, slots)
    except KeyError:
        return jsonify({"error": "Slot not found"}), 404
    except psycopg2.Error:
        logger.exception("Saving timetable failed for class %s stream %s", class_id, stream_id)
        return jsonify({"error": "Database error"}), 500
    return jsonify({"message": "Slot deleted"})


# =====================================================
# LOOKUPS
# =====================================================
@api_bp.get("/suggestions/teachers/<int:school_id>/<int:class_id>")
def teacher_suggestions(school_id, class_id):
    session_school_id, error = api_identity(STAFF_ROLES)
    if error:
        return error
    if school_id != session_school_id or not store.get_class(school_id, class_id):
        return jsonify({"error": "Class not found"}), 404
    return jsonify({"teachers": store.teacher_suggestions(school_id, class_id)})


@api_bp.get("/classes/<int:class_id>")
def class_detail(class_id):
    school_id, error = api_identity()
    if error:
        return error
    cls = store.get_class(school_id, class_id)
    if not cls:
        return jsonify({"error": "Class not found"}), 404
    return jsonify({
        "id": cls['id'],
        "name": cls['name'],
        "grade_level": cls.get('grade_level'),
        "streams": [{"id": s['id'], "name": s['name']} for s in store.list_streams(class_id)],
    })


# =====================================================
# TEACHER BATCH UPLOAD
# =====================================================
@api_bp.post("/teachers/batch")
def teachers_batch():
    school_id, error = api_identity(ADMIN_ROLES)
    if error:
        return error
    data = request.get_json(silent=True)
    rows = data.get("teachers") if isinstance(data, dict) else data
    if not isinstance(rows, list) or not rows:
        return jsonify({"error": "A non-empty list of teachers is required"}), 400

    records, errors = csv_import.build_teacher_records(rows)
    success_count = 0
    if records:
        try:
            success_count = store.upsert_teachers(school_id, records)
        except psycopg2.Error:
            logger.exception("Teacher batch upsert failed for school %s", school_id)
            return jsonify({"error": "Database error"}), 500
    store.record_batch_import(school_id, session.get('user_id'), 'teachers', len(rows), success_count,
                              [e['message'] for e in errors])
    return jsonify({
        "successCount": success_count,
        "errorCount": len(errors),
        "errors": errors,
    })
