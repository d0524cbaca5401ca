"""Administrator dashboard: school setup, people, examinations and result analysis."""

import logging
from functools import wraps

from flask import Blueprint, Response, abort, current_app, flash, redirect, render_template, request, session, url_for

import auth
import csv_import
import grading
import store
import timetable
from forms import (ClassForm, ExaminationForm, GradeSettingsForm, SchoolForm, StreamForm, StudentForm, SubjectForm,
                   TeacherForm, TermForm, attempt_write, first_error, form_values)

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__, url_prefix='/dashboard')

ADMIN_ROLES = ('admin', 'super_admin')
RESULT_EXPORT_HEADERS = ['admission_number', 'student_name', 'subject_name', 'score', 'grade', 'remarks']


def person_name(row):
    return f"{row.get('first_name') or ''} {row.get('last_name') or ''}".strip()


def school_admin_page(view):
    """Admin page bound to the session's school; the school row is passed first."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        school = store.get_school(auth.current_school_id())
        if not school:
            if session.get('role') == 'super_admin':
                flash('Sign in with a school admin account to manage a school.', 'error')
                return redirect(url_for('admin.schools'))
            return redirect(url_for('login'))
        return view(school, *args, **kwargs)
    return auth.role_required(*ADMIN_ROLES)(wrapped)


def _student_login_email(admission_number):
    login_id = csv_import.login_id_from_admission(admission_number)
    return f"{login_id.lower()}@{current_app.config['STUDENT_EMAIL_DOMAIN']}"


# ==================== OVERVIEW ====================

@admin_bp.route('/')
@auth.role_required(*ADMIN_ROLES)
def overview():
    if session.get('role') == 'super_admin' and not auth.current_school_id():
        return redirect(url_for('admin.schools'))
    school = store.get_school(auth.current_school_id())
    if not school:
        return redirect(url_for('login'))
    return render_template(
        'admin/overview.html',
        school=school,
        counts=store.get_dashboard_counts(school['id']),
        recent_students=store.get_recent_students(school['id']),
        recent_teachers=store.get_recent_teachers(school['id']),
    )


# ==================== CLASSES & STREAMS ====================

def _class_form(school, data=None):
    form = ClassForm(data=data)
    form.class_teacher_id.choices = [('', 'None')] + [
        (t['id'], person_name(t)) for t in store.list_teachers(school['id'])
    ]
    return form


@admin_bp.route('/classes')
@school_admin_page
def classes(school):
    return render_template('admin/classes.html', classes=store.list_classes(school['id']))


@admin_bp.route('/classes/new', methods=['GET', 'POST'])
@school_admin_page
def class_new(school):
    form = _class_form(school)
    if form.validate_on_submit():
        ok, _ = attempt_write(lambda: store.save_class(school['id'], form_values(form)),
                              f'Class {form.name.data} created.')
        if ok:
            return redirect(url_for('admin.classes'))
    elif request.method == 'POST':
        flash(first_error(form), 'error')
    return render_template('shared/form.html', form=form, title='New class', cancel_url=url_for('admin.classes'))


@admin_bp.route('/classes/<int:class_id>/edit', methods=['GET', 'POST'])
@school_admin_page
def class_edit(school, class_id):
    cls = store.get_class(school['id'], class_id)
    if not cls:
        abort(404)
    form = _class_form(school, data=cls)
    if form.validate_on_submit():
        ok, _ = attempt_write(lambda: store.save_class(school['id'], form_values(form), class_id=class_id),
                              'Class updated.')
        if ok:
            return redirect(url_for('admin.classes'))
    elif request.method == 'POST':
        flash(first_error(form), 'error')
    return render_template('shared/form.html', form=form, title=f"Edit {cls['name']}",
                           cancel_url=url_for('admin.classes'))


@admin_bp.route('/classes/<int:class_id>/delete', methods=['POST'])
@school_admin_page
def class_delete(school, class_id):
    if not store.get_class(school['id'], class_id):
        abort(404)
    attempt_write(lambda: store.delete_class(school['id'], class_id), 'Class deleted.')
    return redirect(url_for('admin.classes'))


@admin_bp.route('/classes/<int:class_id>/streams', methods=['GET', 'POST'])
@school_admin_page
def class_streams(school, class_id):
    cls = store.get_class(school['id'], class_id)
    if not cls:
        abort(404)
    form = StreamForm()
    if form.validate_on_submit():
        ok, _ = attempt_write(lambda: store.add_stream(class_id, form.name.data), f'Stream {form.name.data} added.')
        if ok:
            return redirect(url_for('admin.class_streams', class_id=class_id))
    elif request.method == 'POST':
        flash(first_error(form), 'error')
    return render_template('admin/streams.html', cls=cls, form=form, streams=store.list_streams(class_id))


@admin_bp.route('/classes/<int:class_id>/streams/<int:stream_id>/delete', methods=['POST'])
@school_admin_page
def stream_delete(school, class_id, stream_id):
    if not store.get_class(school['id'], class_id):
        abort(404)
    ok, deleted = attempt_write(lambda: store.delete_stream(class_id, stream_id), None)
    if ok:
        flash('Stream deleted.' if deleted else 'Stream not found.', 'success' if deleted else 'error')
    return redirect(url_for('admin.class_streams', class_id=class_id))


@admin_bp.route('/classes/<int:class_id>/assign-subjects', methods=['GET', 'POST'])
@school_admin_page
def assign_subjects(school, class_id):
    """Pick subjects per teacher for a class; saving replaces the class's assignments."""
    cls = store.get_class(school['id'], class_id)
    if not cls:
        abort(404)
    teachers = store.list_teachers(school['id'])
    subjects = store.list_subjects(school['id'])
    subject_ids = {s['id'] for s in subjects}

    if request.method == 'POST':
        pairs = []
        for teacher in teachers:
            for raw in request.form.getlist(f"subjects_{teacher['id']}"):
                try:
                    subject_id = int(raw)
                except (TypeError, ValueError):
                    continue
                if subject_id in subject_ids:
                    pairs.append((teacher['id'], subject_id))
        ok, _ = attempt_write(lambda: store.replace_class_assignments(class_id, pairs),
                              f"Subject assignments saved for {cls['name']}.")
        if ok:
            return redirect(url_for('admin.assign_subjects', class_id=class_id))

    assigned = {}
    for row in store.list_teacher_subjects(class_id):
        assigned.setdefault(row['teacher_id'], set()).add(row['subject_id'])
    return render_template('admin/assign_subjects.html', cls=cls, teachers=teachers,
                           subjects=subjects, assigned=assigned)


# ==================== STUDENTS ====================

def _student_form(school, data=None):
    form = StudentForm(data=data)
    form.stream_id.choices = [('', 'Unassigned')] + [
        (s['id'], f"{s['class_name']} {s['name']}") for s in store.list_school_streams(school['id'])
    ]
    return form


@admin_bp.route('/students')
@school_admin_page
def students(school):
    search = request.args.get('q', '').strip()
    class_id = request.args.get('class_id', type=int)
    stream_id = request.args.get('stream_id', type=int)
    return render_template(
        'admin/students.html',
        students=store.list_students(school['id'], search=search, class_id=class_id, stream_id=stream_id),
        classes=store.list_classes(school['id']),
        streams=store.list_school_streams(school['id']),
        search=search, class_id=class_id, stream_id=stream_id,
    )


@admin_bp.route('/students/new', methods=['GET', 'POST'])
@school_admin_page
def student_new(school):
    form = _student_form(school)
    if form.validate_on_submit():
        try:
            data = form_values(form)
            data['admission_number'] = csv_import.normalize_admission_number(data['admission_number'], school['code'])
            login_email = _student_login_email(data['admission_number'])
        except ValueError as exc:
            flash(str(exc), 'error')
        else:
            password_hash = auth.hash_password(current_app.config['DEFAULT_STUDENT_PASSWORD'])
            ok, student_id = attempt_write(
                lambda: store.save_student(school['id'], data, login_email=login_email, password_hash=password_hash),
                f"Student {data['admission_number']} registered. Login ID: "
                f"{csv_import.login_id_from_admission(data['admission_number'])}",
            )
            if ok:
                logger.info("Student %s created in school %s", data['admission_number'], school['id'])
                return redirect(url_for('admin.student_view', student_id=student_id))
    elif request.method == 'POST':
        flash(first_error(form), 'error')
    return render_template('shared/form.html', form=form, title='New student',
                           hint=f"Admission numbers look like {school['code']}/0001.",
                           cancel_url=url_for('admin.students'))


@admin_bp.route('/students/<int:student_id>')
@school_admin_page
def student_view(school, student_id):
    student = store.get_student(school['id'], student_id)
    if not student:
        abort(404)
    cfg = grading.grade_config_for_school(school)
    results = store.list_results_for_student(student_id)
    return render_template(
        'admin/student_view.html',
        student=student,
        results=results,
        summary=grading.summarize_scores([r['score'] for r in results], cfg['pass_mark']),
    )


@admin_bp.route('/students/<int:student_id>/edit', methods=['GET', 'POST'])
@school_admin_page
def student_edit(school, student_id):
    student = store.get_student(school['id'], student_id)
    if not student:
        abort(404)
    form = _student_form(school, data=student)
    if form.validate_on_submit():
        try:
            data = form_values(form)
            data['admission_number'] = csv_import.normalize_admission_number(data['admission_number'], school['code'])
            login_email = _student_login_email(data['admission_number'])
        except ValueError as exc:
            flash(str(exc), 'error')
        else:
            ok, _ = attempt_write(
                lambda: store.save_student(school['id'], data, student_id=student_id, login_email=login_email),
                'Student updated.',
            )
            if ok:
                return redirect(url_for('admin.student_view', student_id=student_id))
    elif request.method == 'POST':
        flash(first_error(form), 'error')
    return render_template('shared/form.html', form=form, title=f"Edit {person_name(student)}",
                           cancel_url=url_for('admin.student_view', student_id=student_id))


@admin_bp.route('/students/<int:student_id>/delete', methods=['POST'])
@school_admin_page
def student_delete(school, student_id):
    if not store.get_student(school['id'], student_id):
        abort(404)
    attempt_write(lambda: store.delete_student(school['id'], student_id), 'Student deleted.')
    return redirect(url_for('admin.students'))


def _read_upload():
    """Return decoded CSV text from the `file` upload, or None after flashing why."""
    upload = request.files.get('file')
    if not upload or not upload.filename:
        flash('Please choose a CSV file to upload.', 'error')
        return None
    if not upload.filename.lower().endswith('.csv'):
        flash('Only .csv files are supported.', 'error')
        return None
    try:
        return upload.read().decode('utf-8-sig')
    except UnicodeDecodeError:
        flash('CSV file must be UTF-8 encoded.', 'error')
        return None


def _upload_problem(headers, rows, parse_errors, required):
    """Reason a parsed upload cannot be imported at all, or None."""
    if not headers:
        return parse_errors[0] if parse_errors else 'CSV file is empty'
    missing = [h for h in required if h not in headers]
    if missing:
        return f"Missing required columns: {', '.join(missing)}"
    if not rows:
        return parse_errors[0] if parse_errors else 'CSV file has no data rows.'
    return None


@admin_bp.route('/students/batch', methods=['GET', 'POST'])
@school_admin_page
def students_batch(school):
    """CSV upload of students into one stream, with a per-row report."""
    streams = store.list_school_streams(school['id'])
    if request.method == 'GET':
        return render_template('admin/batch_upload.html', entity='students', streams=streams,
                               required=csv_import.STUDENT_REQUIRED)

    stream_id = request.form.get('stream_id', type=int)
    if stream_id and not any(s['id'] == stream_id for s in streams):
        abort(404)
    text = _read_upload()
    if text is None:
        return redirect(url_for('admin.students_batch'))
    headers, rows, parse_errors = csv_import.parse_csv(text)
    problem = _upload_problem(headers, rows, parse_errors, csv_import.STUDENT_REQUIRED)
    if problem:
        flash(problem, 'error')
        return redirect(url_for('admin.students_batch'))

    records, row_errors = csv_import.build_student_records(rows, school['code'], stream_id)
    default_hash = auth.hash_password(current_app.config['DEFAULT_STUDENT_PASSWORD'])
    outcomes = []
    if records:
        ok, outcomes = attempt_write(
            lambda: store.insert_students(
                school['id'], records,
                lambda r: _student_login_email(r['admission_number']),
                lambda r: auth.hash_password(r['password']) if r.get('password') else default_hash,
            ),
            None,
        )
        outcomes = outcomes or []
    errors = parse_errors + [e['message'] for e in row_errors] + [o['message'] for o in outcomes if not o['ok']]
    success_count = sum(1 for o in outcomes if o['ok'])
    store.record_batch_import(school['id'], session.get('user_id'), 'students', len(rows), success_count, errors)
    flash(f'{success_count} student(s) imported, {len(errors)} error(s).', 'success' if success_count else 'error')
    return render_template('admin/batch_report.html', entity='students', success_count=success_count,
                           errors=errors, outcomes=outcomes, back_url=url_for('admin.students'))


# ==================== TEACHERS ====================

@admin_bp.route('/teachers')
@school_admin_page
def teachers(school):
    search = request.args.get('q', '').strip()
    return render_template('admin/teachers.html', teachers=store.list_teachers(school['id'], search=search),
                           search=search)


@admin_bp.route('/teachers/new', methods=['GET', 'POST'])
@school_admin_page
def teacher_new(school):
    form = TeacherForm()
    if form.validate_on_submit():
        data = form_values(form)
        password = data.pop('password', None)
        if password and not data.get('email'):
            flash('Email is required to create a teacher login.', 'error')
        else:
            password_hash = auth.hash_password(password) if password else None
            ok, teacher_id = attempt_write(
                lambda: store.save_teacher(school['id'], data, password_hash=password_hash),
                f"Teacher {person_name(data)} added.",
            )
            if ok:
                return redirect(url_for('admin.teacher_view', teacher_id=teacher_id))
    elif request.method == 'POST':
        flash(first_error(form), 'error')
    return render_template('shared/form.html', form=form, title='New teacher', cancel_url=url_for('admin.teachers'))


@admin_bp.route('/teachers/<int:teacher_id>')
@school_admin_page
def teacher_view(school, teacher_id):
    teacher = store.get_teacher(school['id'], teacher_id)
    if not teacher:
        abort(404)
    return render_template('admin/teacher_view.html', teacher=teacher,
                           assignments=store.list_assignments_for_teacher(teacher_id),
                           class_teacher_of=store.list_classes_for_class_teacher(teacher_id))


@admin_bp.route('/teachers/<int:teacher_id>/edit', methods=['GET', 'POST'])
@school_admin_page
def teacher_edit(school, teacher_id):
    teacher = store.get_teacher(school['id'], teacher_id)
    if not teacher:
        abort(404)
    form = TeacherForm(data=teacher)
    del form.password
    if form.validate_on_submit():
        ok, _ = attempt_write(lambda: store.save_teacher(school['id'], form_values(form), teacher_id=teacher_id),
                              'Teacher updated.')
        if ok:
            return redirect(url_for('admin.teacher_view', teacher_id=teacher_id))
    elif request.method == 'POST':
        flash(first_error(form), 'error')
    return render_template('shared/form.html', form=form, title=f"Edit {person_name(teacher)}",
                           cancel_url=url_for('admin.teacher_view', teacher_id=teacher_id))


@admin_bp.route('/teachers/<int:teacher_id>/delete', methods=['POST'])
@school_admin_page
def teacher_delete(school, teacher_id):
    if not store.get_teacher(school['id'], teacher_id):
        abort(404)
    attempt_write(lambda: store.delete_teacher(school['id'], teacher_id), 'Teacher deleted.')
    return redirect(url_for('admin.teachers'))


@admin_bp.route('/teachers/batch', methods=['GET', 'POST'])
@school_admin_page
def teachers_batch(school):
    """CSV upload of teachers; rows upsert on employee number."""
    if request.method == 'GET':
        return render_template('admin/batch_upload.html', entity='teachers', streams=[],
                               required=csv_import.TEACHER_REQUIRED)
    text = _read_upload()
    if text is None:
        return redirect(url_for('admin.teachers_batch'))
    headers, rows, parse_errors = csv_import.parse_csv(text)
    problem = _upload_problem(headers, rows, parse_errors, csv_import.TEACHER_REQUIRED)
    if problem:
        flash(problem, 'error')
        return redirect(url_for('admin.teachers_batch'))

    records, row_errors = csv_import.build_teacher_records(rows)
    errors = parse_errors + [e['message'] for e in row_errors]
    success_count = 0
    if records:
        ok, written = attempt_write(lambda: store.upsert_teachers(school['id'], records), None)
        success_count = written if ok else 0
        if not ok:
            errors.append('Database error while saving teachers. No rows were saved.')
    store.record_batch_import(school['id'], session.get('user_id'), 'teachers', len(rows), success_count, errors)
    flash(f'{success_count} teacher(s) imported, {len(errors)} error(s).', 'success' if success_count else 'error')
    return render_template('admin/batch_report.html', entity='teachers', success_count=success_count,
                           errors=errors, outcomes=[], back_url=url_for('admin.teachers'))


# ==================== SUBJECTS ====================

@admin_bp.route('/subjects', methods=['GET', 'POST'])
@school_admin_page
def subjects(school):
    form = SubjectForm()
    if form.validate_on_submit():
        ok, _ = attempt_write(lambda: store.save_subject(school['id'], form_values(form)),
                              f'Subject {form.name.data} added.')
        if ok:
            return redirect(url_for('admin.subjects'))
    elif request.method == 'POST':
        flash(first_error(form), 'error')
    return render_template('admin/subjects.html', form=form, subjects=store.list_subjects(school['id']))


@admin_bp.route('/subjects/<int:subject_id>/edit', methods=['GET', 'POST'])
@school_admin_page
def subject_edit(school, subject_id):
    subject = store.get_subject(school['id'], subject_id)
    if not subject:
        abort(404)
    form = SubjectForm(data=subject)
    if form.validate_on_submit():
        ok, _ = attempt_write(lambda: store.save_subject(school['id'], form_values(form), subject_id=subject_id),
                              'Subject updated.')
        if ok:
            return redirect(url_for('admin.subjects'))
    elif request.method == 'POST':
        flash(first_error(form), 'error')
    return render_template('shared/form.html', form=form, title=f"Edit {subject['name']}",
                           cancel_url=url_for('admin.subjects'))


@admin_bp.route('/subjects/<int:subject_id>/delete', methods=['POST'])
@school_admin_page
def subject_delete(school, subject_id):
    if not store.get_subject(school['id'], subject_id):
        abort(404)
    attempt_write(lambda: store.delete_subject(school['id'], subject_id), 'Subject deleted.')
    return redirect(url_for('admin.subjects'))


# ==================== TERMS ====================

@admin_bp.route('/terms', methods=['GET', 'POST'])
@school_admin_page
def terms(school):
    form = TermForm()
    if form.validate_on_submit():
        ok, _ = attempt_write(lambda: store.save_term(school['id'], form_values(form)),
                              f'Term {form.name.data} added.')
        if ok:
            return redirect(url_for('admin.terms'))
    elif request.method == 'POST':
        flash(first_error(form), 'error')
    return render_template('admin/terms.html', form=form, terms=store.list_terms(school['id']))


@admin_bp.route('/terms/<int:term_id>/edit', methods=['GET', 'POST'])
@school_admin_page
def term_edit(school, term_id):
    term = store.get_term(school['id'], term_id)
    if not term:
        abort(404)
    form = TermForm(data=term)
    if form.validate_on_submit():
        ok, _ = attempt_write(lambda: store.save_term(school['id'], form_values(form), term_id=term_id),
                              'Term updated.')
        if ok:
            return redirect(url_for('admin.terms'))
    elif request.method == 'POST':
        flash(first_error(form), 'error')
    return render_template('shared/form.html', form=form, title=f"Edit {term['name']}", cancel_url=url_for('admin.terms'))


@admin_bp.route('/terms/<int:term_id>/delete', methods=['POST'])
@school_admin_page
def term_delete(school, term_id):
    if not store.get_term(school['id'], term_id):
        abort(404)
    attempt_write(lambda: store.delete_term(school['id'], term_id), 'Term deleted.')
    return redirect(url_for('admin.terms'))


# ==================== EXAMINATIONS ====================

def _examination_form(school, data=None):
    form = ExaminationForm(data=data)
    form.term_id.choices = [(t['id'], t['name']) for t in store.list_terms(school['id'])]
    return form


@admin_bp.route('/examinations', methods=['GET', 'POST'])
@school_admin_page
def examinations(school):
    form = _examination_form(school)
    if not form.term_id.choices and request.method == 'GET':
        flash('Create a term before adding examinations.', 'error')
    if form.validate_on_submit():
        ok, _ = attempt_write(lambda: store.save_examination(school['id'], form_values(form)),
                              f'Examination {form.name.data} added.')
        if ok:
            return redirect(url_for('admin.examinations'))
    elif request.method == 'POST':
        flash(first_error(form), 'error')
    return render_template('admin/examinations.html', form=form, examinations=store.list_examinations(school['id']))


@admin_bp.route('/examinations/<int:examination_id>/edit', methods=['GET', 'POST'])
@school_admin_page
def examination_edit(school, examination_id):
    exam = store.get_examination(school['id'], examination_id)
    if not exam:
        abort(404)
    form = _examination_form(school, data=exam)
    if form.validate_on_submit():
        ok, _ = attempt_write(
            lambda: store.save_examination(school['id'], form_values(form), examination_id=examination_id),
            'Examination updated.',
        )
        if ok:
            return redirect(url_for('admin.examinations'))
    elif request.method == 'POST':
        flash(first_error(form), 'error')
    return render_template('shared/form.html', form=form, title=f"Edit {exam['name']}",
                           cancel_url=url_for('admin.examinations'))


@admin_bp.route('/examinations/<int:examination_id>/delete', methods=['POST'])
@school_admin_page
def examination_delete(school, examination_id):
    if not store.get_examination(school['id'], examination_id):
        abort(404)
    attempt_write(lambda: store.delete_examination(school['id'], examination_id), 'Examination deleted.')
    return redirect(url_for('admin.examinations'))


# ==================== RESULT ANALYSIS ====================

def _filtered_results(school):
    exams = store.list_examinations(school['id'])
    exam_id = request.args.get('examination_id', type=int)
    exam = next((e for e in exams if e['id'] == exam_id), None) or (exams[0] if exams else None)
    filters = {
        'q': request.args.get('q', '').strip(),
        'subject': request.args.get('subject', 'all'),
        'grade': request.args.get('grade', 'all'),
    }
    rows = store.list_results_for_examination(school['id'], exam['id']) if exam else []
    needle = filters['q'].lower()
    if needle:
        rows = [r for r in rows
                if needle in r['student_name'].lower() or needle in (r['admission_number'] or '').lower()]
    rows = grading.filter_rows(rows, subject_name=filters['subject'], grade=filters['grade'])
    return exams, exam, rows, filters


@admin_bp.route('/results')
@school_admin_page
def result_analysis(school):
    exams, exam, rows, filters = _filtered_results(school)
    cfg = grading.grade_config_for_school(school)
    all_rows = store.list_results_for_examination(school['id'], exam['id']) if exam else []
    return render_template(
        'admin/result_analysis.html',
        examinations=exams,
        examination=exam,
        rows=rows,
        filters=filters,
        subject_names=grading.distinct_values(all_rows, 'subject_name'),
        totals={
            'students': len({r['student_id'] for r in rows}),
            'subjects': len({r['subject_id'] for r in rows}),
        },
        summary=grading.summarize_scores([r['score'] for r in rows], cfg['pass_mark']),
        distribution=grading.grade_distribution(r['grade'] for r in rows),
        by_subject=grading.group_average(rows, 'subject_name', 'score'),
        rankings=grading.rank_students(rows),
        grades=grading.GRADE_ORDER,
    )


@admin_bp.route('/results/export')
@school_admin_page
def result_export(school):
    _, exam, rows, _ = _filtered_results(school)
    if not exam:
        flash('No examination to export.', 'error')
        return redirect(url_for('admin.result_analysis'))
    body = csv_import.rows_to_csv(RESULT_EXPORT_HEADERS, rows)
    filename = f"results_{exam['name'].replace(' ', '_')}_{exam['year']}.csv"
    return Response(body, mimetype='text/csv',
                    headers={'Content-Disposition': f'attachment; filename="{filename}"'})


# ==================== TIMETABLE ====================

@admin_bp.route('/timetable')
@school_admin_page
def timetable_page(school):
    classes_list = store.list_classes(school['id'])
    class_id = request.args.get('class_id', type=int)
    cls = next((c for c in classes_list if c['id'] == class_id), None) or (classes_list[0] if classes_list else None)
    streams = store.list_streams(cls['id']) if cls else []
    stream_id = request.args.get('stream_id', type=int)
    stream = next((s for s in streams if s['id'] == stream_id), None) or (streams[0] if streams else None)
    slots = store.get_timetable_slots(cls['id'], stream['id']) if cls and stream else []
    return render_template(
        'admin/timetable.html',
        classes=classes_list, cls=cls, streams=streams, stream=stream,
        days=timetable.DAYS, slots_by_day=timetable.slots_by_day(slots),
        teachers=store.list_teachers(school['id']), subjects=store.list_subjects(school['id']),
    )


# ==================== SETTINGS ====================

@admin_bp.route('/settings', methods=['GET', 'POST'])
@school_admin_page
def settings(school):
    form = GradeSettingsForm(data=school)
    if form.validate_on_submit():
        cfg = {
            'a': form.grade_a_min.data,
            'b': form.grade_b_min.data,
            'c': form.grade_c_min.data,
            'd': form.grade_d_min.data,
            'e': form.grade_e_min.data,
            'pass_mark': form.pass_mark.data,
            'test_pass_percent': form.test_pass_percent.data,
        }
        ok, _ = attempt_write(
            lambda: store.update_grade_settings(school['id'], grading.validate_grade_config(cfg)),
            'Grade settings saved.',
        )
        if ok:
            logger.info("Grade settings updated for school %s", school['id'])
            return redirect(url_for('admin.settings'))
    elif request.method == 'POST':
        flash(first_error(form), 'error')
    return render_template('admin/settings.html', form=form, school=school)


# ==================== SUPER ADMIN ====================

@admin_bp.route('/schools', methods=['GET', 'POST'])
@auth.role_required('super_admin')
def schools():
    form = SchoolForm()
    if form.validate_on_submit():
        ok, _ = attempt_write(
            lambda: store.create_school(
                form.school_name.data, form.code.data, form.plan.data, form.admin_email.data,
                auth.hash_password(form.admin_password.data), form.admin_name.data,
            ),
            f'School {form.school_name.data} created with admin {form.admin_email.data}.',
        )
        if ok:
            return redirect(url_for('admin.schools'))
    elif request.method == 'POST':
        flash(first_error(form), 'error')
    return render_template('super/schools.html', form=form, schools=store.get_all_schools())
