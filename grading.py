"""
Grade banding and score aggregation used by the dashboards.

Scores for examinations are stored as percentages (0-100). Test marks are
stored raw and converted with `percentage()` before banding.
"""

import math
from datetime import datetime

GRADE_ORDER = ['A', 'B', 'C', 'D', 'E', 'F']

DEFAULT_GRADE_CONFIG = {
    'a': 80,
    'b': 70,
    'c': 60,
    'd': 50,
    'e': 40,
    'pass_mark': 50,
    'test_pass_percent': 40,
}

REMARK_BANDS = [
    (90, 'Excellent'),
    (80, 'Very Good'),
    (70, 'Good'),
    (60, 'Satisfactory'),
    (50, 'Needs Improvement'),
]


def safe_float(value, default):
    """Parse float safely while preserving valid zero values."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return float(default)


def safe_int(value, default):
    """Parse integer safely while preserving valid zero values."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return int(default)


def grade_config_for_school(school):
    """Get grade thresholds for a school row."""
    school = school or {}
    cfg = {}
    for key, column in (('a', 'grade_a_min'), ('b', 'grade_b_min'), ('c', 'grade_c_min'),
                        ('d', 'grade_d_min'), ('e', 'grade_e_min')):
        cfg[key] = safe_int(school.get(column), DEFAULT_GRADE_CONFIG[key])
    cfg['pass_mark'] = safe_int(school.get('pass_mark'), DEFAULT_GRADE_CONFIG['pass_mark'])
    cfg['test_pass_percent'] = safe_int(
        school.get('test_pass_percent'), DEFAULT_GRADE_CONFIG['test_pass_percent']
    )
    return cfg


def validate_grade_config(cfg):
    """Thresholds must be within 0-100 and strictly descending from A to E."""
    values = [cfg[k] for k in ('a', 'b', 'c', 'd', 'e')]
    for value in values + [cfg['pass_mark'], cfg['test_pass_percent']]:
        if value < 0 or value > 100:
            raise ValueError('Grade thresholds and pass marks must be between 0 and 100.')
    for higher, lower in zip(values, values[1:]):
        if higher <= lower:
            raise ValueError('Grade thresholds must decrease from A to E.')
    return cfg


def grade_from_score(score, cfg=None):
    """Get letter grade from a percentage score."""
    cfg = cfg or DEFAULT_GRADE_CONFIG
    score = safe_float(score, 0)
    if score >= cfg['a']:
        return 'A'
    if score >= cfg['b']:
        return 'B'
    if score >= cfg['c']:
        return 'C'
    if score >= cfg['d']:
        return 'D'
    if score >= cfg['e']:
        return 'E'
    return 'F'


def remarks_from_score(score):
    score = safe_float(score, 0)
    for minimum, remark in REMARK_BANDS:
        if score >= minimum:
            return remark
    return 'Fail'


def status_from_score(score, cfg=None):
    """Get pass/fail status from score."""
    cfg = cfg or DEFAULT_GRADE_CONFIG
    return 'Pass' if safe_float(score, 0) >= cfg['pass_mark'] else 'Fail'


def percentage(marks, max_marks):
    """Marks as a percentage of max marks (a missing max counts as 100)."""
    max_marks = safe_float(max_marks, 100)
    if max_marks <= 0:
        max_marks = 100.0
    return safe_float(marks, 0) / max_marks * 100


def grade_from_marks(marks, max_marks, cfg=None):
    return grade_from_score(percentage(marks, max_marks), cfg)


def validate_score(value, max_value=100, label='Score'):
    """Parse a submitted score; raise ValueError with a user-facing message."""
    if value is None or str(value).strip() == '':
        raise ValueError(f'{label} is required.')
    try:
        score = float(value)
    except (TypeError, ValueError):
        raise ValueError(f'{label} must be a number.')
    if not math.isfinite(score):
        raise ValueError(f'{label} is invalid.')
    if score < 0 or score > float(max_value):
        raise ValueError(f'{label} must be between 0 and {float(max_value):g}.')
    return score


def summarize_scores(values, pass_mark=None):
    """Count/average/highest/lowest/pass rate over a list of numbers."""
    if pass_mark is None:
        pass_mark = DEFAULT_GRADE_CONFIG['pass_mark']
    numbers = [float(v) for v in values if v is not None]
    if not numbers:
        return {
            'count': 0,
            'average': 0.0,
            'highest': 0.0,
            'lowest': 0.0,
            'pass_count': 0,
            'pass_rate': 0.0,
        }
    pass_count = sum(1 for v in numbers if v >= pass_mark)
    return {
        'count': len(numbers),
        'average': sum(numbers) / len(numbers),
        'highest': max(numbers),
        'lowest': min(numbers),
        'pass_count': pass_count,
        'pass_rate': pass_count / len(numbers) * 100,
    }


def grade_distribution(grades):
    """Count grades; missing grades are reported as 'Ungraded'."""
    grades = list(grades)
    counts = {}
    for grade in grades:
        key = grade or 'Ungraded'
        counts[key] = counts.get(key, 0) + 1

    def sort_key(item):
        grade = item[0]
        if grade in GRADE_ORDER:
            return (0, GRADE_ORDER.index(grade), grade)
        return (1, 0, grade)

    total = len(grades)
    return [
        {'grade': grade, 'count': count, 'percentage': count / total * 100}
        for grade, count in sorted(counts.items(), key=sort_key)
    ]


def group_average(rows, key, value):
    """Average `value` per distinct `key`, keeping first-seen group order."""
    groups = {}
    for row in rows:
        score = row.get(value)
        if score is None:
            continue
        groups.setdefault(row.get(key), []).append(float(score))
    summary = []
    for name, scores in groups.items():
        summary.append({
            key: name,
            'count': len(scores),
            'average': sum(scores) / len(scores),
            'highest': max(scores),
            'lowest': min(scores),
        })
    return summary


def best_and_worst(groups, key, value='average'):
    """Names of the groups with the highest and lowest value."""
    if not groups:
        return None, None
    best = max(groups, key=lambda g: g[value])
    worst = min(groups, key=lambda g: g[value])
    return best[key], worst[key]


def rank_students(rows):
    """
    Per-student summary over result rows (student_id, student_name, score),
    sorted by average descending. Equal averages share a position.
    """
    def same_score(a, b):
        return abs(float(a or 0) - float(b or 0)) <= 1e-9

    summaries = {}
    for row in rows:
        sid = row.get('student_id')
        if sid is None or row.get('score') is None:
            continue
        score = float(row['score'])
        summary = summaries.get(sid)
        if not summary:
            summary = summaries[sid] = {
                'student_id': sid,
                'student_name': row.get('student_name', ''),
                'admission_number': row.get('admission_number', ''),
                'subjects_count': 0,
                'total_score': 0.0,
                'highest_score': score,
                'lowest_score': score,
            }
        summary['subjects_count'] += 1
        summary['total_score'] += score
        summary['highest_score'] = max(summary['highest_score'], score)
        summary['lowest_score'] = min(summary['lowest_score'], score)

    ranked = []
    for summary in summaries.values():
        summary['average_score'] = summary['total_score'] / summary['subjects_count']
        ranked.append(summary)
    ranked.sort(key=lambda s: s['average_score'], reverse=True)

    prev_score = None
    current_pos = 0
    for index, summary in enumerate(ranked, 1):
        if prev_score is None or not same_score(summary['average_score'], prev_score):
            current_pos = index
        summary['position'] = current_pos
        prev_score = summary['average_score']
    return ranked


def test_statistics(marks, max_marks, pass_percent=None):
    """Class statistics for one test; pass threshold is a share of max marks."""
    if pass_percent is None:
        pass_percent = DEFAULT_GRADE_CONFIG['test_pass_percent']
    numbers = [float(m) for m in marks if m is not None]
    passing_marks = safe_float(max_marks, 100) * pass_percent / 100
    if not numbers:
        return {'count': 0, 'average': 0.0, 'highest': 0.0, 'pass_rate': 0.0, 'passing_marks': passing_marks}
    passed = sum(1 for m in numbers if m >= passing_marks)
    return {
        'count': len(numbers),
        'average': sum(numbers) / len(numbers),
        'highest': max(numbers),
        'pass_rate': passed / len(numbers) * 100,
        'passing_marks': passing_marks,
    }


def normalize_performance(test_rows, exam_rows):
    """
    Put test marks and exam scores on one percentage scale.
    Test rows carry marks/max_marks, exam rows carry a percentage score.
    """
    normalized = []
    for row in test_rows:
        normalized.append({
            'subject': row.get('subject_name') or 'Unknown',
            'source': 'test',
            'percentage': percentage(row.get('marks'), row.get('max_marks')),
        })
    for row in exam_rows:
        normalized.append({
            'subject': row.get('subject_name') or 'Unknown',
            'source': 'exam',
            'percentage': safe_float(row.get('score'), 0),
        })
    return normalized


def _date_parts(value):
    if isinstance(value, datetime):
        stamp = value
    else:
        try:
            stamp = datetime.fromisoformat(str(value))
        except (TypeError, ValueError):
            return '', ''
    return stamp.strftime('%Y-%m-%d'), str(stamp.year)


def performance_rows(tests, exam_results):
    """
    Teacher analytics rows: one per test (aggregated over its marks) and
    one per examination result.
    """
    rows = []
    for test in tests:
        marks = [float(m) for m in (test.get('marks') or []) if m is not None]
        date, year = _date_parts(test.get('created_at'))
        rows.append({
            'subject_name': test.get('subject_name') or '',
            'class_name': test.get('class_name') or '',
            'assessment_name': test.get('name') or '',
            'assessment_type': test.get('type') or 'test',
            'max_marks': safe_float(test.get('max_marks'), 100),
            'submissions': len(marks),
            'avg_score': round(sum(marks) / len(marks), 1) if marks else None,
            'top_score': max(marks) if marks else None,
            'lowest_score': min(marks) if marks else None,
            'date': date,
            'year': year,
            'term': 'Not specified',
        })
    for result in exam_results:
        score = safe_float(result.get('score'), 0)
        date, _ = _date_parts(result.get('created_at'))
        rows.append({
            'subject_name': result.get('subject_name') or '',
            'class_name': result.get('class_name') or '-',
            'assessment_name': result.get('examination_name') or '',
            'assessment_type': 'exam',
            'max_marks': 100.0,
            'submissions': 1,
            'avg_score': score,
            'top_score': score,
            'lowest_score': score,
            'date': date,
            'year': str(result.get('year') or ''),
            'term': result.get('term_name') or 'Not specified',
        })
    return rows


def filter_rows(rows, **filters):
    """Keep rows matching every filter whose value is not empty or 'all'."""
    active = {k: v for k, v in filters.items() if v not in (None, '', 'all')}
    return [row for row in rows if all(str(row.get(k)) == str(v) for k, v in active.items())]


def distinct_values(rows, key):
    seen = []
    for row in rows:
        value = row.get(key)
        if value and value not in seen:
            seen.append(value)
    return seen


def monthly_trend(rows):
    """Average score per YYYY-MM, oldest month first."""
    months = {}
    for row in rows:
        if row.get('avg_score') is None or not row.get('date'):
            continue
        month = row['date'][:7]
        bucket = months.setdefault(month, {'total': 0.0, 'count': 0})
        bucket['total'] += float(row['avg_score'])
        bucket['count'] += 1
    return [
        {'month': month, 'average': data['total'] / data['count'], 'count': data['count']}
        for month, data in sorted(months.items())
    ]


def analytics_summary(rows):
    """Headline numbers for the teacher analytics page."""
    scored = [r for r in rows if r.get('avg_score') is not None]
    by_subject = group_average(scored, 'subject_name', 'avg_score')
    best, worst = best_and_worst(by_subject, 'subject_name')
    return {
        'total_assessments': len(rows),
        'total_submissions': sum(r.get('submissions', 0) for r in rows),
        'average_score': (sum(float(r['avg_score']) for r in scored) / len(scored)) if scored else 0.0,
        'best_subject': best,
        'worst_subject': worst,
        'by_subject': by_subject,
        'by_class': group_average(scored, 'class_name', 'avg_score'),
        'by_type': group_average(scored, 'assessment_type', 'avg_score'),
        'monthly': monthly_trend(scored),
    }
