"""Flask-WTF forms for the dashboard CRUD pages."""

import logging

import psycopg2
from flask import flash
from flask_wtf import FlaskForm
from wtforms import (DateField, FloatField, IntegerField, PasswordField, SelectField, StringField,
                     TextAreaField, ValidationError, validators)

from csv_import import EMAIL_RE, SCHOOL_CODE_RE

GENDER_CHOICES = [('', 'Not set'), ('male', 'Male'), ('female', 'Female'), ('other', 'Other')]
TEST_TYPE_CHOICES = [('quiz', 'Quiz'), ('cat', 'CAT'), ('assignment', 'Assignment'), ('practical', 'Practical')]
PLAN_CHOICES = [('free', 'Free'), ('basic', 'Basic'), ('premium', 'Premium')]

logger = logging.getLogger(__name__)


def strip_filter(value):
    return value.strip() if isinstance(value, str) else value


def optional_int(value):
    if value in (None, '', 'None'):
        return None
    return int(value)


def form_values(form):
    """form.data without the CSRF token."""
    return {k: v for k, v in form.data.items() if k != 'csrf_token'}


def _end_after_start(form, field):
    start = form.start_date.data
    if start and field.data and field.data < start:
        raise ValidationError('End date must be on or after the start date.')


class ClassForm(FlaskForm):
    name = StringField('Class name', filters=[strip_filter],
                       validators=[validators.DataRequired(), validators.Length(max=50)])
    grade_level = IntegerField('Grade level', validators=[validators.Optional(), validators.NumberRange(min=1, max=20)])
    class_teacher_id = SelectField('Class teacher', coerce=optional_int, choices=[('', 'None')])


class StreamForm(FlaskForm):
    name = StringField('Stream name', filters=[strip_filter],
                       validators=[validators.DataRequired(), validators.Length(max=30)])


class SubjectForm(FlaskForm):
    name = StringField('Subject name', filters=[strip_filter],
                       validators=[validators.DataRequired(), validators.Length(max=100)])
    code = StringField('Code', filters=[strip_filter],
                       validators=[validators.Optional(), validators.Length(max=10)])


class TermForm(FlaskForm):
    name = StringField('Term name', filters=[strip_filter],
                       validators=[validators.DataRequired(), validators.Length(max=50)])
    code = StringField('Code', filters=[strip_filter],
                       validators=[validators.DataRequired(), validators.Length(max=10)])
    start_date = DateField('Start date', validators=[validators.Optional()])
    end_date = DateField('End date', validators=[validators.Optional(), _end_after_start])


class ExaminationForm(FlaskForm):
    term_id = SelectField('Term', coerce=int, validators=[validators.DataRequired()])
    name = StringField('Examination name', filters=[strip_filter],
                       validators=[validators.DataRequired(), validators.Length(max=100)])
    year = IntegerField('Year', validators=[validators.DataRequired(), validators.NumberRange(min=2000, max=2100)])
    start_date = DateField('Start date', validators=[validators.Optional()])
    end_date = DateField('End date', validators=[validators.Optional(), _end_after_start])


class StudentForm(FlaskForm):
    admission_number = StringField('Admission number', filters=[strip_filter],
                                   validators=[validators.DataRequired()])
    first_name = StringField('First name', filters=[strip_filter],
                             validators=[validators.DataRequired(), validators.Length(max=50)])
    last_name = StringField('Last name', filters=[strip_filter],
                            validators=[validators.DataRequired(), validators.Length(max=50)])
    date_of_birth = DateField('Date of birth', validators=[validators.Optional()])
    gender = SelectField('Gender', choices=GENDER_CHOICES)
    guardian_name = StringField('Guardian name', filters=[strip_filter])
    guardian_phone = StringField('Guardian phone', filters=[strip_filter])
    address = TextAreaField('Address', filters=[strip_filter])
    stream_id = SelectField('Stream', coerce=optional_int, choices=[('', 'Unassigned')])


class TeacherForm(FlaskForm):
    employee_number = StringField('Employee number', filters=[strip_filter],
                                  validators=[validators.DataRequired(), validators.Length(max=30)])
    first_name = StringField('First name', filters=[strip_filter],
                             validators=[validators.DataRequired(), validators.Length(max=50)])
    last_name = StringField('Last name', filters=[strip_filter],
                            validators=[validators.DataRequired(), validators.Length(max=50)])
    email = StringField('Email', filters=[strip_filter],
                        validators=[validators.Optional(), validators.Regexp(EMAIL_RE, message='Invalid email format.')])
    phone = StringField('Phone', filters=[strip_filter])
    gender = SelectField('Gender', choices=GENDER_CHOICES)
    qualification = StringField('Qualification', filters=[strip_filter])
    date_hired = DateField('Date hired', validators=[validators.Optional()])
    password = PasswordField('Login password', validators=[validators.Optional(), validators.Length(min=8)])


class TestForm(FlaskForm):
    name = StringField('Test name', filters=[strip_filter],
                       validators=[validators.DataRequired(), validators.Length(max=100)])
    type = SelectField('Type', choices=TEST_TYPE_CHOICES)
    subject_id = SelectField('Subject', coerce=int, validators=[validators.DataRequired()])
    class_id = SelectField('Class', coerce=int, validators=[validators.DataRequired()])
    stream_id = SelectField('Stream', coerce=optional_int, choices=[('', 'All streams')], validate_choice=False)
    max_marks = FloatField('Maximum marks', validators=[validators.InputRequired()])

    def validate_max_marks(self, field):
        if field.data is None or field.data <= 0:
            raise ValidationError('Maximum marks must be greater than 0.')


class SchoolForm(FlaskForm):
    school_name = StringField('School name', filters=[strip_filter],
                              validators=[validators.DataRequired(), validators.Length(max=150)])
    code = StringField('School code', filters=[strip_filter, lambda v: v.upper() if isinstance(v, str) else v],
                       validators=[validators.DataRequired(),
                                   validators.Regexp(SCHOOL_CODE_RE, message='School code must be 2 to 6 letters.')])
    plan = SelectField('Plan', choices=PLAN_CHOICES)
    admin_name = StringField('Admin name', filters=[strip_filter])
    admin_email = StringField('Admin email', filters=[strip_filter],
                              validators=[validators.DataRequired(),
                                          validators.Regexp(EMAIL_RE, message='Invalid email format.')])
    admin_password = PasswordField('Admin password', validators=[validators.DataRequired(), validators.Length(min=8)])


class GradeSettingsForm(FlaskForm):
    grade_a_min = IntegerField('A from', validators=[validators.InputRequired(), validators.NumberRange(min=0, max=100)])
    grade_b_min = IntegerField('B from', validators=[validators.InputRequired(), validators.NumberRange(min=0, max=100)])
    grade_c_min = IntegerField('C from', validators=[validators.InputRequired(), validators.NumberRange(min=0, max=100)])
    grade_d_min = IntegerField('D from', validators=[validators.InputRequired(), validators.NumberRange(min=0, max=100)])
    grade_e_min = IntegerField('E from', validators=[validators.InputRequired(), validators.NumberRange(min=0, max=100)])
    pass_mark = IntegerField('Pass mark', validators=[validators.InputRequired(), validators.NumberRange(min=0, max=100)])
    test_pass_percent = IntegerField('Test pass percent',
                                     validators=[validators.InputRequired(), validators.NumberRange(min=0, max=100)])


class ChangePasswordForm(FlaskForm):
    current_password = PasswordField('Current password', validators=[validators.DataRequired()])
    new_password = PasswordField('New password', validators=[validators.DataRequired(), validators.Length(min=8)])
    confirm_password = PasswordField('Confirm password',
                                     validators=[validators.EqualTo('new_password', message='Passwords do not match.')])


def first_error(form):
    """First validation message of a form, prefixed with the field label."""
    for name, messages in form.errors.items():
        if messages:
            field = getattr(form, name, None)
            label = field.label.text if field is not None else name
            return f'{label}: {messages[0]}'
    return 'Please check the form and try again.'


def attempt_write(write, success):
    """
    Run a store write and flash the outcome.
    Returns (ok, result); validation messages are shown as-is, database
    failures are logged and reported generically.
    """
    try:
        result = write()
    except ValueError as exc:
        flash(str(exc), 'error')
        return False, None
    except psycopg2.Error:
        logger.exception("Database write failed")
        flash('Database error. Please try again.', 'error')
        return False, None
    if success:
        flash(success, 'success')
    return True, result
