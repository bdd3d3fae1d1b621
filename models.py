from datetime import datetime, timedelta

import pytz
from flask_sqlalchemy import SQLAlchemy

from backend import status_engine
from backend.recurrence import (
    Occurrence,
    RecurrenceRule,
    WeeklySlot,
    expand_rule_utc,
    next_rule_occurrence,
    validate_rule,
    validate_weekly_slot,
)
from backend.errors import ValidationError
from backend.time_helpers import resolve_timezone, utc_to_local

db = SQLAlchemy()

ROLE_STUDENT = 'Student'
ROLE_TEACHER = 'Teacher'
ROLE_ADMIN = 'Admin'
ALLOWED_ROLES = {ROLE_STUDENT, ROLE_TEACHER, ROLE_ADMIN}
STAFF_ROLES = {ROLE_TEACHER, ROLE_ADMIN}

EVENT_KINDS = {'busy', 'preferred'}

SERIES_EVENT = 'event'
SERIES_LECTURE = 'lecture'

SOURCE_ASSIGNMENT = 'assignment'
SOURCE_QUIZ = 'quiz'

RETAKE_PENDING = 'pending'
RETAKE_APPROVED = 'approved'
RETAKE_DENIED = 'denied'

ATTEMPT_IN_PROGRESS = 'in-progress'
ATTEMPT_SUBMITTED = 'submitted'


def utcnow():
    return datetime.now(pytz.UTC).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


group_members = db.Table(
    'group_members',
    db.Column('group_id', db.Integer, db.ForeignKey('group.id'), primary_key=True),
    db.Column('user_id', db.Integer, db.ForeignKey('user.id'), primary_key=True),
)

assignment_template_groups = db.Table(
    'assignment_template_groups',
    db.Column('template_id', db.Integer, db.ForeignKey('assignment_template.id'), primary_key=True),
    db.Column('group_id', db.Integer, db.ForeignKey('group.id'), primary_key=True),
)

quiz_template_groups = db.Table(
    'quiz_template_groups',
    db.Column('template_id', db.Integer, db.ForeignKey('quiz_template.id'), primary_key=True),
    db.Column('group_id', db.Integer, db.ForeignKey('group.id'), primary_key=True),
)


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=True)
    role = db.Column(db.String(20), nullable=False, default=ROLE_STUDENT)  # Student | Teacher | Admin
    created_at = db.Column(db.DateTime, default=utcnow)

    groups = db.relationship('Group', secondary=group_members, back_populates='members')

    def is_staff(self):
        return self.role in STAFF_ROLES

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'role': self.role,
            'group_ids': [g.id for g in self.groups],
        }


class Group(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    members = db.relationship('User', secondary=group_members, back_populates='groups')

    def students(self):
        return [m for m in self.members if m.role == ROLE_STUDENT]

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'member_ids': [m.id for m in self.members],
        }


class CalendarEvent(db.Model):
    """
    Personal availability entry (busy or preferred).

    Either a single absolute [start_time, end_time) pair in UTC, or a weekly
    slot: day_of_week plus "HH:MM" local times. is_recurring selects which
    branch is meaningful.
    """
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    group_id = db.Column(db.Integer, db.ForeignKey('group.id'), nullable=True, index=True)
    creator_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    kind = db.Column(db.String(20), nullable=False)  # busy | preferred
    title = db.Column(db.String(200), nullable=True)
    is_recurring = db.Column(db.Boolean, default=False, nullable=False)
    start_time = db.Column(db.DateTime, nullable=True)
    end_time = db.Column(db.DateTime, nullable=True)
    day_of_week = db.Column(db.String(10), nullable=True)  # monday..sunday
    recurring_start_time = db.Column(db.String(5), nullable=True)  # HH:MM
    recurring_end_time = db.Column(db.String(5), nullable=True)  # HH:MM
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.Index('ix_calendar_event_user_range', 'user_id', 'start_time', 'end_time'),
    )

    def weekly_slot(self):
        return WeeklySlot(
            day_of_week=self.day_of_week,
            start=self.recurring_start_time,
            end=self.recurring_end_time,
        )

    def validate(self):
        if self.kind not in EVENT_KINDS:
            raise ValidationError('Invalid event type')
        if self.is_recurring:
            validate_weekly_slot(self.day_of_week, self.recurring_start_time, self.recurring_end_time)
            return
        if not self.start_time or not self.end_time:
            raise ValidationError('Single events require start and end times')
        if self.start_time >= self.end_time:
            raise ValidationError('End time must be after start time')

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'group_id': self.group_id,
            'type': self.kind,
            'title': self.title,
            'is_recurring': self.is_recurring,
            'start_time': _iso(self.start_time),
            'end_time': _iso(self.end_time),
            'day_of_week': self.day_of_week,
            'recurring_start_time': self.recurring_start_time,
            'recurring_end_time': self.recurring_end_time,
        }


class RecurrenceException(db.Model):
    """Marker suppressing one occurrence of an event or lecture series."""
    id = db.Column(db.Integer, primary_key=True)
    series_kind = db.Column(db.String(20), nullable=False)  # event | lecture
    series_id = db.Column(db.Integer, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    day = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        db.UniqueConstraint('series_kind', 'series_id', 'day', name='uq_recurrence_exception'),
    )

    @property
    def title(self):
        # legacy clients match deletion markers by this title
        return f'DELETED: {self.series_id}'

    def to_dict(self):
        return {
            'id': self.id,
            'series_kind': self.series_kind,
            'series_id': self.series_id,
            'exception_date': self.day.isoformat(),
            'title': self.title,
        }


class Lecture(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(120), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)
    timezone = db.Column(db.String(64), nullable=False, default='UTC')
    is_recurring = db.Column(db.Boolean, default=False, nullable=False)
    rule_freq = db.Column(db.String(10), nullable=True)  # DAILY | WEEKLY | MONTHLY | YEARLY
    rule_interval = db.Column(db.Integer, nullable=True)
    rule_byweekday = db.Column(db.String(30), nullable=True)  # "MO,WE"
    rule_dtstart = db.Column(db.DateTime, nullable=True)
    rule_until = db.Column(db.Date, nullable=True)
    rule_count = db.Column(db.Integer, nullable=True)
    group_id = db.Column(db.Integer, db.ForeignKey('group.id'), nullable=False, index=True)
    instructor_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    meeting_url = db.Column(db.String(300), nullable=True)
    status = db.Column(db.String(20), default=status_engine.LECTURE_SCHEDULED)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    group = db.relationship('Group')

    __table_args__ = (
        db.Index('ix_lecture_group_start', 'group_id', 'start_time'),
        db.Index('ix_lecture_instructor_start', 'instructor_id', 'start_time'),
    )

    @property
    def duration(self):
        return self.end_time - self.start_time

    def tzinfo(self):
        tz = resolve_timezone(self.timezone)
        if tz is None:
            raise ValidationError(f'Unknown timezone: {self.timezone}')
        return tz

    def recurrence_rule(self):
        """
        The lecture's rule in its own timezone's wall-clock time, anchored at
        the local time of day of the first occurrence.
        """
        if not self.is_recurring:
            return None
        tz = self.tzinfo()
        local_start = utc_to_local(self.start_time, tz)
        anchor = utc_to_local(self.rule_dtstart, tz).date() if self.rule_dtstart else local_start.date()
        return RecurrenceRule(
            freq=self.rule_freq,
            dtstart=datetime.combine(anchor, local_start.time()),
            interval=self.rule_interval or 1,
            byweekday=tuple(c for c in (self.rule_byweekday or '').split(',') if c),
            until=self.rule_until,
            count=self.rule_count,
        )

    def stored_rule(self):
        """The rule as persisted (UTC dtstart), suitable for set_recurrence."""
        if not self.is_recurring:
            return None
        return RecurrenceRule(
            freq=self.rule_freq,
            dtstart=self.rule_dtstart or self.start_time,
            interval=self.rule_interval or 1,
            byweekday=tuple(c for c in (self.rule_byweekday or '').split(',') if c),
            until=self.rule_until,
            count=self.rule_count,
        )

    def occurrences_between(self, window_start, window_end):
        """UTC occurrences meeting the window, keyed by local day; exceptions are not applied."""
        if not self.is_recurring:
            if self.start_time < window_end and self.end_time > window_start:
                day = utc_to_local(self.start_time, self.tzinfo()).date()
                return [Occurrence(day=day, start=self.start_time, end=self.end_time)]
            return []
        return expand_rule_utc(self.recurrence_rule(), self.duration, window_start, window_end, self.tzinfo())

    def skipped_days(self):
        if self.id is None:
            return set()
        rows = RecurrenceException.query.filter_by(series_kind=SERIES_LECTURE, series_id=self.id).all()
        return {row.day for row in rows}

    def set_recurrence(self, rule):
        if rule is None:
            self.is_recurring = False
            self.rule_freq = self.rule_interval = self.rule_byweekday = None
            self.rule_dtstart = self.rule_until = self.rule_count = None
            return
        rule = validate_rule(
            rule.freq, rule.dtstart,
            interval=rule.interval, byweekday=rule.byweekday,
            until=rule.until, count=rule.count,
        )
        self.is_recurring = True
        self.rule_freq = rule.freq
        self.rule_interval = rule.interval
        self.rule_byweekday = ','.join(rule.byweekday) or None
        self.rule_dtstart = rule.dtstart
        self.rule_until = rule.until
        self.rule_count = rule.count

    def refresh_status(self, now=None):
        """
        A series follows its running or next occurrence and only completes
        after the last one has ended.
        """
        now = now or utcnow()
        start, end = self.start_time, self.end_time
        if self.is_recurring and self.status != status_engine.LECTURE_CANCELLED:
            upcoming = next_rule_occurrence(
                self.recurrence_rule(), self.duration, now, self.tzinfo(), skip_days=self.skipped_days()
            )
            if upcoming is None:
                self.status = status_engine.LECTURE_COMPLETED
                return self.status
            start, end = upcoming.start, upcoming.end
        self.status = status_engine.compute_lecture_status(now, start, end, current=self.status)
        return self.status

    def to_dict(self):
        data = {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'start_time': _iso(self.start_time),
            'end_time': _iso(self.end_time),
            'timezone': self.timezone,
            'is_recurring': self.is_recurring,
            'recurrence_rule': None,
            'group_id': self.group_id,
            'group_name': self.group.name if self.group else None,
            'instructor_id': self.instructor_id,
            'meeting_url': self.meeting_url,
            'status': self.status,
            'duration_minutes': int(self.duration.total_seconds() // 60),
        }
        if self.is_recurring:
            data['recurrence_rule'] = {
                'freq': self.rule_freq,
                'interval': self.rule_interval,
                'byweekday': [c for c in (self.rule_byweekday or '').split(',') if c],
                'dtstart': _iso(self.rule_dtstart),
                'until': _iso(self.rule_until),
                'count': self.rule_count,
            }
        return data


class AssignmentTemplate(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(120), nullable=False)
    instructions = db.Column(db.Text, nullable=True)
    points = db.Column(db.Integer, nullable=False, default=100)
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)
    allow_late_submissions = db.Column(db.Boolean, default=False, nullable=False)
    creator_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    groups = db.relationship('Group', secondary=assignment_template_groups)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'instructions': self.instructions,
            'points': self.points,
            'start_time': _iso(self.start_time),
            'end_time': _iso(self.end_time),
            'allow_late_submissions': self.allow_late_submissions,
            'creator_id': self.creator_id,
            'group_ids': [g.id for g in self.groups],
        }


class QuizTemplate(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    points = db.Column(db.Integer, nullable=False, default=0)
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)
    time_limit_minutes = db.Column(db.Integer, nullable=True)
    max_attempts = db.Column(db.Integer, nullable=False, default=1)
    allow_late_submissions = db.Column(db.Boolean, default=False, nullable=False)
    questions = db.Column(db.JSON, nullable=False, default=list)  # [{text, options, correct_option, points}]
    creator_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    groups = db.relationship('Group', secondary=quiz_template_groups)

    def to_dict(self, include_answers=False):
        questions = []
        for idx, q in enumerate(self.questions or []):
            item = {
                'index': idx,
                'text': q.get('text'),
                'options': q.get('options') or [],
                'points': q.get('points', 1),
            }
            if include_answers:
                item['correct_option'] = q.get('correct_option')
            questions.append(item)
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'points': self.points,
            'start_time': _iso(self.start_time),
            'end_time': _iso(self.end_time),
            'time_limit_minutes': self.time_limit_minutes,
            'max_attempts': self.max_attempts,
            'allow_late_submissions': self.allow_late_submissions,
            'questions': questions,
            'group_ids': [g.id for g in self.groups],
        }


class WorkItemMixin:
    """Columns and lifecycle shared by per-student assignment and quiz records."""
    status = db.Column(db.String(20), default=status_engine.UPCOMING, index=True)
    available_from = db.Column(db.DateTime, nullable=False)
    due_date = db.Column(db.DateTime, nullable=False, index=True)
    template_title = db.Column(db.String(120), nullable=False)
    template_points = db.Column(db.Integer, nullable=False)
    submitted_at = db.Column(db.DateTime, nullable=True)
    is_late = db.Column(db.Boolean, default=False, nullable=False)
    score = db.Column(db.Float, nullable=True)
    feedback = db.Column(db.Text, nullable=True)
    graded_by_id = db.Column(db.Integer, nullable=True)
    graded_at = db.Column(db.DateTime, nullable=True)
    viewed_by_student = db.Column(db.Boolean, default=False, nullable=False)
    status_last_updated = db.Column(db.DateTime, default=utcnow)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def has_submission(self):
        return self.submitted_at is not None

    def has_grade(self):
        return self.score is not None

    def is_in_progress(self):
        return False

    def compute_status(self, now=None):
        return status_engine.compute_status(
            now or utcnow(),
            self.available_from,
            self.due_date,
            self.has_submission(),
            self.has_grade(),
            in_progress=self.is_in_progress(),
        )

    def refresh_status(self, now=None):
        """Rewrite the cached status; True when it changed."""
        now = now or utcnow()
        new_status = self.compute_status(now)
        if new_status != self.status:
            self.status = new_status
            self.status_last_updated = now
            return True
        return False

    def allows_late(self):
        return bool(self.template and self.template.allow_late_submissions)

    def can_submit(self, now=None):
        now = now or utcnow()
        return status_engine.can_submit(self.compute_status(now), now, self.due_date, allow_late=self.allows_late())

    def can_unsubmit(self, now=None):
        now = now or utcnow()
        return status_engine.can_unsubmit(self.compute_status(now), now, self.due_date)

    def clear_submission(self):
        self.submitted_at = None
        self.is_late = False

    def clear_grade(self):
        self.score = None
        self.feedback = None
        self.graded_by_id = None
        self.graded_at = None

    def _base_dict(self):
        return {
            'id': self.id,
            'template_id': self.template_id,
            'student_id': self.student_id,
            'course_id': self.course_id,
            'title': self.template_title,
            'points': self.template_points,
            'status': self.status,
            'available_from': _iso(self.available_from),
            'due_date': _iso(self.due_date),
            'submission': {
                'submitted_at': _iso(self.submitted_at),
                'is_late': self.is_late,
            },
            'grade': {
                'score': self.score,
                'feedback': self.feedback,
                'graded_by': self.graded_by_id,
                'graded_at': _iso(self.graded_at),
                'percentage': (self.score / self.template_points * 100)
                if self.score is not None and self.template_points else None,
            },
            'viewed_by_student': self.viewed_by_student,
            'status_last_updated': _iso(self.status_last_updated),
        }


class StudentAssignment(WorkItemMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(db.Integer, db.ForeignKey('assignment_template.id'), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    course_id = db.Column(db.Integer, db.ForeignKey('group.id'), nullable=False)
    files = db.Column(db.JSON, nullable=True)
    submission_history = db.Column(db.JSON, nullable=False, default=list)
    seen_by_teacher = db.Column(db.Boolean, default=False, nullable=False)

    template = db.relationship('AssignmentTemplate')

    __table_args__ = (
        db.Index('ix_student_assignment_student_status', 'student_id', 'status'),
    )

    def to_dict(self):
        data = self._base_dict()
        data['submission']['files'] = self.files or []
        data['submission_history'] = self.submission_history or []
        data['can_submit'] = self.can_submit()
        data['can_unsubmit'] = self.can_unsubmit()
        data['seen_by_teacher'] = self.seen_by_teacher
        return data


class StudentQuiz(WorkItemMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(db.Integer, db.ForeignKey('quiz_template.id'), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    course_id = db.Column(db.Integer, db.ForeignKey('group.id'), nullable=False)
    answers = db.Column(db.JSON, nullable=True)
    in_progress = db.Column(db.Boolean, default=False, nullable=False)
    last_attempt_id = db.Column(db.Integer, nullable=True)
    extra_attempts = db.Column(db.Integer, default=0, nullable=False)  # granted by approved retakes

    template = db.relationship('QuizTemplate')
    attempts = db.relationship(
        'QuizAttempt',
        backref='student_quiz',
        lazy=True,
        cascade="all, delete-orphan",
        order_by="QuizAttempt.attempt_number",
    )

    __table_args__ = (
        db.Index('ix_student_quiz_student_status', 'student_id', 'status'),
    )

    def is_in_progress(self):
        return self.in_progress

    def can_start(self, now=None):
        return status_engine.can_start(self.compute_status(now))

    def submitted_attempts(self):
        return [a for a in self.attempts if a.status == ATTEMPT_SUBMITTED]

    def in_progress_attempt(self):
        for attempt in self.attempts:
            if attempt.status == ATTEMPT_IN_PROGRESS:
                return attempt
        return None

    def attempts_remaining(self):
        allowed = (self.template.max_attempts if self.template else 1) + (self.extra_attempts or 0)
        return max(allowed - len(self.submitted_attempts()), 0)

    def to_dict(self):
        data = self._base_dict()
        data['submission']['answers'] = self.answers or []
        data['last_attempt_id'] = self.last_attempt_id
        data['attempt_count'] = len(self.attempts)
        data['attempts_remaining'] = self.attempts_remaining()
        data['can_start'] = self.can_start()
        return data


class QuizAttempt(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    student_quiz_id = db.Column(db.Integer, db.ForeignKey('student_quiz.id'), nullable=False, index=True)
    attempt_number = db.Column(db.Integer, nullable=False)
    started_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    submitted_at = db.Column(db.DateTime, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=ATTEMPT_IN_PROGRESS)
    answers = db.Column(db.JSON, nullable=False, default=list)
    score = db.Column(db.Float, nullable=False, default=0)
    is_late = db.Column(db.Boolean, default=False, nullable=False)

    def expires_at(self):
        """The attempt closes at the due date or when the time limit runs out."""
        record = self.student_quiz
        deadline = record.due_date
        limit = record.template.time_limit_minutes if record.template else None
        if limit:
            deadline = min(deadline, self.started_at + timedelta(minutes=limit))
        return deadline

    def to_dict(self):
        return {
            'id': self.id,
            'student_quiz_id': self.student_quiz_id,
            'attempt_number': self.attempt_number,
            'started_at': _iso(self.started_at),
            'submitted_at': _iso(self.submitted_at),
            'status': self.status,
            'answers': self.answers or [],
            'score': self.score,
            'is_late': self.is_late,
        }


class PointsLedger(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    course_id = db.Column(db.Integer, db.ForeignKey('group.id'), nullable=False)
    source_type = db.Column(db.String(20), nullable=False)  # assignment | quiz
    source_id = db.Column(db.Integer, nullable=False)
    source_title = db.Column(db.String(120), nullable=True)
    points_earned = db.Column(db.Float, nullable=False)
    points_possible = db.Column(db.Float, nullable=False)
    awarded_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        db.UniqueConstraint('source_id', 'source_type', name='uq_points_ledger_source'),
        db.Index('ix_points_ledger_student_course', 'student_id', 'course_id'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'student_id': self.student_id,
            'course_id': self.course_id,
            'source_type': self.source_type,
            'source_id': self.source_id,
            'source_title': self.source_title,
            'points_earned': self.points_earned,
            'points_possible': self.points_possible,
            'awarded_at': _iso(self.awarded_at),
        }


class RetakeRequest(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    target_kind = db.Column(db.String(20), nullable=False)  # quiz | assignment
    target_id = db.Column(db.Integer, nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    course_id = db.Column(db.Integer, db.ForeignKey('group.id'), nullable=False)
    reason = db.Column(db.String(2000), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=RETAKE_PENDING, index=True)
    reviewed_by_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)
    review_notes = db.Column(db.String(1000), nullable=True)
    new_due_date = db.Column(db.DateTime, nullable=True)
    response_time_hours = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        db.Index('ix_retake_target', 'target_kind', 'target_id'),
        db.Index(
            'uq_retake_pending',
            'target_kind', 'target_id', 'student_id',
            unique=True,
            sqlite_where=db.text("status = 'pending'"),
            postgresql_where=db.text("status = 'pending'"),
        ),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'target_kind': self.target_kind,
            'target_id': self.target_id,
            'student_id': self.student_id,
            'course_id': self.course_id,
            'reason': self.reason,
            'status': self.status,
            'reviewed_by': self.reviewed_by_id,
            'reviewed_at': _iso(self.reviewed_at),
            'review_notes': self.review_notes,
            'new_due_date': _iso(self.new_due_date),
            'response_time_hours': self.response_time_hours,
            'created_at': _iso(self.created_at),
        }
