"""Teacher dashboard: examination results, tests, class-teacher views and analytics."""

import logging
from functools import wraps

from flask import Blueprint, abort, flash, redirect, render_template, request, session, url_for

import auth
import grading
import store
from forms import TestForm, attempt_write, first_error, form_values

logger = logging.getLogger(__name__)

teacher_bp = Blueprint('teacher', __name__, url_prefix='/teacher-dashboard')


def teacher_page(view):
    """Teacher-only page; the school row and the teacher row are passed first."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        teacher = store.get_teacher_by_profile(session.get('user_id'))
        school = store.get_school(auth.current_school_id())
        if not teacher or not school:
            flash('Teacher record not found for this account. Contact your school admin.', 'error')
            return redirect(url_for('login'))
        return view(school, teacher, *args, **kwargs)
    return auth.role_required('teacher')(wrapped)


def _assigned_classes(assignments):
    """Group assignment rows into [{id, name, subjects: [{id, name}]}]."""
    classes = {}
    for row in assignments:
        item = classes.setdefault(row['class_id'], {'id': row['class_id'], 'name': row['class_name'], 'subjects': []})
        item['subjects'].append({'id': row['subject_id'], 'name': row['subject_name']})
    return list(classes.values())


@teacher_bp.route('/')
@teacher_page
def overview(school, teacher):
    assignments = store.list_assignments_for_teacher(teacher['id'])
    classes = _assigned_classes(assignments)
    student_count = 0
    for cls in classes:
        cls['streams'] = store.list_streams(cls['id'])
        student_count += sum(int(s.get('student_count') or 0) for s in cls['streams'])
    return render_template(
        'teacher/overview.html',
        teacher=teacher,
        school=school,
        classes=classes,
        counts={
            'students': student_count,
            'subjects': len({a['subject_id'] for a in assignments}),
            'tests': len(store.list_tests_for_teacher(teacher['id'])),
            'results': len(store.list_results_for_teacher(teacher['id'])),
        },
        class_teacher_of=store.list_classes_for_class_teacher(teacher['id']),
    )


# ==================== EXAMINATION RESULTS ====================

@teacher_bp.route('/results/upload', methods=['GET', 'POST'])
@teacher_page
def upload_results(school, teacher):
    """Score grid for one examination / class / subject the teacher is assigned to."""
    cfg = grading.grade_config_for_school(school)
    assignments = store.list_assignments_for_teacher(teacher['id'])
    examinations = store.list_examinations(school['id'])
    source = request.form if request.method == 'POST' else request.args
    examination_id = source.get('examination_id', type=int)
    class_id = source.get('class_id', type=int)
    subject_id = source.get('subject_id', type=int)

    exam = next((e for e in examinations if e['id'] == examination_id), None)
    assignment = next((a for a in assignments if a['class_id'] == class_id and a['subject_id'] == subject_id), None)
    students = []
    existing = {}
    if exam and assignment:
        students = store.list_students_for_class(class_id)
        existing = store.get_existing_scores(exam['id'], subject_id, [s['id'] for s in students])
    elif examination_id and class_id and subject_id:
        flash('You are not assigned to teach this subject in that class.', 'error')

    if request.method == 'POST' and exam and assignment:
        rows = []
        errors = []
        for student in students:
            raw = (request.form.get(f"score_{student['id']}") or '').strip()
            if not raw:
                continue
            try:
                score = grading.validate_score(raw, 100, label=f"Score for {student['admission_number']}")
            except ValueError as exc:
                errors.append(str(exc))
                continue
            remarks = (request.form.get(f"remarks_{student['id']}") or '').strip()
            rows.append({
                'student_id': student['id'],
                'subject_id': subject_id,
                'examination_id': exam['id'],
                'teacher_id': teacher['id'],
                'score': score,
                'grade': grading.grade_from_score(score, cfg),
                'remarks': remarks or grading.remarks_from_score(score),
            })
        if errors:
            for message in errors[:5]:
                flash(message, 'error')
        elif not rows:
            flash('Please enter at least one score.', 'error')
        else:
            ok, saved = attempt_write(lambda: store.upsert_results(rows), f'{len(rows)} result(s) saved.')
            if ok:
                logger.info("Teacher %s saved %d results for exam %s subject %s",
                            teacher['id'], saved, exam['id'], subject_id)
                return redirect(url_for('teacher.upload_results', examination_id=exam['id'],
                                        class_id=class_id, subject_id=subject_id))

    return render_template(
        'teacher/upload_results.html',
        examinations=examinations,
        assignments=assignments,
        examination=exam,
        assignment=assignment,
        students=students,
        existing=existing,
    )


@teacher_bp.route('/results')
@teacher_page
def results(school, teacher):
    rows = store.list_results_for_teacher(teacher['id'])
    return render_template('teacher/results.html', results=list(reversed(rows)))


@teacher_bp.route('/results/<int:result_id>/delete', methods=['POST'])
@teacher_page
def result_delete(school, teacher, result_id):
    ok, deleted = attempt_write(lambda: store.delete_result(result_id, teacher['id']), None)
    if ok:
        flash('Result deleted.' if deleted else 'Result not found.', 'success' if deleted else 'error')
    return redirect(url_for('teacher.results'))


# ==================== TESTS ====================

def _test_form(teacher):
    form = TestForm()
    classes = _assigned_classes(store.list_assignments_for_teacher(teacher['id']))
    subjects = {}
    streams = [('', 'All streams')]
    for cls in classes:
        for subject in cls['subjects']:
            subjects[subject['id']] = subject['name']
        streams += [(s['id'], f"{cls['name']} {s['name']}") for s in store.list_streams(cls['id'])]
    form.subject_id.choices = sorted(subjects.items(), key=lambda item: item[1])
    form.class_id.choices = [(c['id'], c['name']) for c in classes]
    form.stream_id.choices = streams
    return form


@teacher_bp.route('/tests')
@teacher_page
def tests(school, teacher):
    cfg = grading.grade_config_for_school(school)
    items = store.list_tests_for_teacher(teacher['id'])
    for item in items:
        item['stats'] = grading.test_statistics(item['marks'], item['max_marks'], cfg['test_pass_percent'])
    return render_template('teacher/tests.html', tests=items)


@teacher_bp.route('/tests/new', methods=['GET', 'POST'])
@teacher_page
def test_new(school, teacher):
    form = _test_form(teacher)
    if form.validate_on_submit():
        data = form_values(form)
        if not store.teacher_teaches(teacher['id'], data['class_id'], data['subject_id']):
            flash('You are not assigned to teach this subject in that class.', 'error')
        elif data['stream_id'] and not any(s['id'] == data['stream_id'] for s in store.list_streams(data['class_id'])):
            flash('That stream does not belong to the selected class.', 'error')
        else:
            ok, test_id = attempt_write(lambda: store.create_test(school['id'], teacher['id'], data),
                                        f"Test {data['name']} created.")
            if ok:
                return redirect(url_for('teacher.test_marks', test_id=test_id))
    elif request.method == 'POST':
        flash(first_error(form), 'error')
    return render_template('shared/form.html', form=form, title='New test', cancel_url=url_for('teacher.tests'))


@teacher_bp.route('/tests/<int:test_id>/delete', methods=['POST'])
@teacher_page
def test_delete(school, teacher, test_id):
    if not store.get_test(test_id, teacher_id=teacher['id']):
        abort(404)
    attempt_write(lambda: store.delete_test(test_id, teacher['id']), 'Test deleted.')
    return redirect(url_for('teacher.tests'))


@teacher_bp.route('/tests/<int:test_id>/marks', methods=['GET', 'POST'])
@teacher_page
def test_marks(school, teacher, test_id):
    test = store.get_test(test_id, teacher_id=teacher['id'])
    if not test:
        abort(404)
    cfg = grading.grade_config_for_school(school)
    students = store.list_students_for_class(test['class_id'], test.get('stream_id'))
    existing = {r['student_id']: r for r in store.list_test_results(test_id)}

    if request.method == 'POST':
        rows = []
        errors = []
        for student in students:
            raw = (request.form.get(f"marks_{student['id']}") or '').strip()
            if not raw:
                continue
            try:
                marks = grading.validate_score(raw, test['max_marks'], label=f"Marks for {student['admission_number']}")
            except ValueError as exc:
                errors.append(str(exc))
                continue
            rows.append({
                'student_id': student['id'],
                'test_id': test_id,
                'marks': marks,
                'grade': grading.grade_from_marks(marks, test['max_marks'], cfg),
            })
        if errors:
            for message in errors[:5]:
                flash(message, 'error')
        elif not rows:
            flash('Please enter marks for at least one student.', 'error')
        else:
            ok, _ = attempt_write(lambda: store.upsert_test_results(rows), f'{len(rows)} mark(s) saved.')
            if ok:
                return redirect(url_for('teacher.test_stats', test_id=test_id))

    return render_template('teacher/test_marks.html', test=test, students=students, existing=existing)


@teacher_bp.route('/tests/<int:test_id>')
@teacher_page
def test_stats(school, teacher, test_id):
    test = store.get_test(test_id, teacher_id=teacher['id'])
    if not test:
        abort(404)
    cfg = grading.grade_config_for_school(school)
    results_list = store.list_test_results(test_id)
    for row in results_list:
        row['percentage'] = grading.percentage(row['marks'], test['max_marks'])
    return render_template(
        'teacher/test_stats.html',
        test=test,
        results=results_list,
        stats=grading.test_statistics([r['marks'] for r in results_list], test['max_marks'],
                                      cfg['test_pass_percent']),
        distribution=grading.grade_distribution(r['grade'] for r in results_list),
    )


# ==================== CLASS TEACHER ====================

@teacher_bp.route('/class-results')
@teacher_page
def class_results(school, teacher):
    """Students x subjects grid for a class the teacher is class teacher of."""
    classes = store.list_classes_for_class_teacher(teacher['id'])
    examinations = store.list_examinations(school['id'])
    class_id = request.args.get('class_id', type=int)
    exam_id = request.args.get('examination_id', type=int)
    cls = next((c for c in classes if c['id'] == class_id), None) or (classes[0] if classes else None)
    exam = next((e for e in examinations if e['id'] == exam_id), None) or (examinations[0] if examinations else None)

    rows = store.list_class_results(cls['id'], exam['id']) if cls and exam else []
    subjects = sorted(grading.distinct_values(rows, 'subject_name'))
    scores = {}
    for row in rows:
        scores.setdefault(row['student_id'], {})[row['subject_name']] = row['score']
    return render_template(
        'teacher/class_results.html',
        classes=classes,
        examinations=examinations,
        cls=cls,
        examination=exam,
        subjects=subjects,
        scores=scores,
        rankings=grading.rank_students(rows),
        subject_averages=grading.group_average(rows, 'subject_name', 'score'),
    )


# ==================== ANALYTICS ====================

ANALYTICS_FILTERS = (
    ('year', 'year'),
    ('term', 'term'),
    ('type', 'assessment_type'),
    ('subject', 'subject_name'),
    ('class', 'class_name'),
)


@teacher_bp.route('/analytics')
@teacher_page
def analytics(school, teacher):
    rows = grading.performance_rows(
        store.list_tests_for_teacher(teacher['id']),
        store.list_results_for_teacher(teacher['id']),
    )
    selected = {param: request.args.get(param, 'all') for param, _ in ANALYTICS_FILTERS}
    filtered = grading.filter_rows(rows, **{column: selected[param] for param, column in ANALYTICS_FILTERS})
    options = {param: grading.distinct_values(rows, column) for param, column in ANALYTICS_FILTERS}
    return render_template(
        'teacher/analytics.html',
        rows=filtered,
        selected=selected,
        options=options,
        summary=grading.analytics_summary(filtered),
    )
