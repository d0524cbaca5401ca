"""Student dashboard: own results, tests, examinations, analytics and profile."""

import logging
import math
from functools import wraps

from flask import Blueprint, flash, redirect, render_template, request, session, url_for

import auth
import grading
import store
from forms import ChangePasswordForm, attempt_write, first_error

logger = logging.getLogger(__name__)

student_bp = Blueprint('student', __name__, url_prefix='/student-dashboard')

RESULTS_PER_PAGE = 10
RESULT_SORTS = {
    'recent': (lambda r: (r.get('year') or 0, r.get('examination_id') or 0), True),
    'subject': (lambda r: (r.get('subject_name') or '').lower(), False),
    'score_desc': (lambda r: r['score'], True),
    'score_asc': (lambda r: r['score'], False),
}


def student_page(view):
    """Student-only page; the school row and the student row are passed first."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        student = store.get_student_by_profile(session.get('user_id'))
        school = store.get_school(auth.current_school_id())
        if not student or not school:
            flash('Student record not found for this account. Contact your school admin.', 'error')
            return redirect(url_for('login'))
        return view(school, student, *args, **kwargs)
    return auth.role_required('student')(wrapped)


def results_summary(rows, cfg):
    """Average, highest, best subject and overall grade over result rows."""
    summary = grading.summarize_scores([r['score'] for r in rows], cfg['pass_mark'])
    by_subject = grading.group_average(rows, 'subject_name', 'score')
    best, worst = grading.best_and_worst(by_subject, 'subject_name')
    summary.update({
        'best_subject': best,
        'worst_subject': worst,
        'grade': grading.grade_from_score(summary['average'], cfg) if rows else '-',
        'remarks': grading.remarks_from_score(summary['average']) if rows else '-',
    })
    return summary


@student_bp.route('/')
@student_page
def overview(school, student):
    cfg = grading.grade_config_for_school(school)
    rows = store.list_results_for_student(student['id'])
    return render_template(
        'student/overview.html',
        student=student,
        school=school,
        recent_results=rows[:5],
        summary=results_summary(rows, cfg),
    )


@student_bp.route('/results')
@student_page
def results(school, student):
    """Own examination results with filters, sorting and pagination."""
    cfg = grading.grade_config_for_school(school)
    rows = store.list_results_for_student(student['id'])
    examination_id = request.args.get('examination_id', type=int)
    subject = request.args.get('subject', 'all')
    sort = request.args.get('sort', 'recent')
    if sort not in RESULT_SORTS:
        sort = 'recent'

    filtered = grading.filter_rows(rows, examination_id=examination_id, subject_name=subject)
    key, reverse = RESULT_SORTS[sort]
    filtered.sort(key=key, reverse=reverse)

    total_pages = max(1, math.ceil(len(filtered) / RESULTS_PER_PAGE))
    page = min(max(1, request.args.get('page', 1, type=int)), total_pages)
    start = (page - 1) * RESULTS_PER_PAGE

    examinations = {}
    for row in rows:
        examinations.setdefault(row['examination_id'], f"{row['examination_name']} ({row['year']})")
    return render_template(
        'student/results.html',
        results=filtered[start:start + RESULTS_PER_PAGE],
        summary=results_summary(filtered, cfg),
        examinations=sorted(examinations.items()),
        subjects=sorted(grading.distinct_values(rows, 'subject_name')),
        selected={'examination_id': examination_id, 'subject': subject, 'sort': sort},
        page=page,
        total_pages=total_pages,
        total=len(filtered),
    )


@student_bp.route('/tests')
@student_page
def test_results(school, student):
    """Own test marks, each with the class statistics of that test."""
    cfg = grading.grade_config_for_school(school)
    rows = store.list_test_results_for_student(student['id'])
    for row in rows:
        class_marks = [r['marks'] for r in store.list_test_results(row['test_id'])]
        row['percentage'] = grading.percentage(row['marks'], row['max_marks'])
        row['stats'] = grading.test_statistics(class_marks, row['max_marks'], cfg['test_pass_percent'])
        row['passed'] = row['marks'] >= row['stats']['passing_marks']
    return render_template('student/test_results.html', results=rows)


@student_bp.route('/examinations')
@student_page
def examinations(school, student):
    return render_template('student/examinations.html', examinations=store.list_examinations(school['id']))


@student_bp.route('/analytics')
@student_page
def analytics(school, student):
    """Tests and exams on one percentage scale, overall and per subject."""
    cfg = grading.grade_config_for_school(school)
    normalized = grading.normalize_performance(
        store.list_test_results_for_student(student['id']),
        store.list_results_for_student(student['id']),
    )
    overall = grading.summarize_scores([n['percentage'] for n in normalized], cfg['pass_mark'])
    by_subject = grading.group_average(normalized, 'subject', 'percentage')
    for item in by_subject:
        item['grade'] = grading.grade_from_score(item['average'], cfg)
    return render_template(
        'student/analytics.html',
        overall=overall,
        by_subject=by_subject,
        test_count=sum(1 for n in normalized if n['source'] == 'test'),
        exam_count=sum(1 for n in normalized if n['source'] == 'exam'),
    )


@student_bp.route('/profile', methods=['GET', 'POST'])
@student_page
def profile(school, student):
    form = ChangePasswordForm()
    if form.validate_on_submit():
        account = store.get_profile(session.get('user_id'))
        if not account or not auth.check_password(account['password_hash'], form.current_password.data):
            flash('Current password is incorrect.', 'error')
        else:
            ok, _ = attempt_write(
                lambda: store.set_profile_password(account['id'], auth.hash_password(form.new_password.data)),
                'Password changed.',
            )
            if ok:
                logger.info("Student %s changed password", student['admission_number'])
                return redirect(url_for('student.profile'))
    elif request.method == 'POST':
        flash(first_error(form), 'error')
    return render_template('student/profile.html', student=student, school=school, form=form)
