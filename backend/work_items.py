"""
Lifecycle operations on quizzes and assignments.

Templates fan out into one per-student record per Student member of the
target groups. Every multi-step write runs through run_in_transaction, so a
failure at any step leaves nothing half-written. Validation happens before
the transaction starts.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Union

from sqlalchemy.exc import IntegrityError

from backend import status_engine
from backend.errors import AuthorizationError, NotFoundError, ValidationError
from backend.transactions import run_in_transaction
from models import (
    ATTEMPT_IN_PROGRESS,
    ATTEMPT_SUBMITTED,
    AssignmentTemplate,
    Group,
    PointsLedger,
    QuizAttempt,
    QuizTemplate,
    RETAKE_APPROVED,
    RETAKE_DENIED,
    RETAKE_PENDING,
    ROLE_STUDENT,
    RetakeRequest,
    SOURCE_ASSIGNMENT,
    SOURCE_QUIZ,
    StudentAssignment,
    StudentQuiz,
    User,
    db,
    utcnow,
)

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 2000
MAX_NOTES_LENGTH = 1000


# --- Retake targets ---------------------------------------------------------

@dataclass(frozen=True)
class QuizTarget:
    student_quiz_id: int
    kind = SOURCE_QUIZ


@dataclass(frozen=True)
class AssignmentTarget:
    student_assignment_id: int
    kind = SOURCE_ASSIGNMENT


RetakeTarget = Union[QuizTarget, AssignmentTarget]


def target_of(request):
    """Rebuild the typed target of a stored retake request."""
    if request.target_kind == SOURCE_QUIZ:
        return QuizTarget(request.target_id)
    if request.target_kind == SOURCE_ASSIGNMENT:
        return AssignmentTarget(request.target_id)
    raise ValueError(f'Unknown retake target kind: {request.target_kind!r}')


def _target_id(target):
    if isinstance(target, QuizTarget):
        return target.student_quiz_id
    if isinstance(target, AssignmentTarget):
        return target.student_assignment_id
    raise TypeError(f'Unsupported retake target: {target!r}')


def load_target(target):
    if isinstance(target, QuizTarget):
        return db.session.get(StudentQuiz, target.student_quiz_id)
    if isinstance(target, AssignmentTarget):
        return db.session.get(StudentAssignment, target.student_assignment_id)
    raise TypeError(f'Unsupported retake target: {target!r}')


# --- Template creation ------------------------------------------------------

def _require_window(start, end):
    if not isinstance(start, datetime) or not isinstance(end, datetime):
        raise ValidationError('Missing required fields')
    if end <= start:
        raise ValidationError('End time must be after start time')


def _load_groups(group_ids):
    ids = []
    for raw in group_ids or []:
        try:
            value = int(raw)
        except (TypeError, ValueError):
            raise ValidationError(f'Invalid group id: {raw}')
        if value not in ids:
            ids.append(value)
    if not ids:
        raise ValidationError('At least one group is required')
    groups = []
    for group_id in ids:
        group = db.session.get(Group, group_id)
        if not group:
            raise NotFoundError(f'Group {group_id} not found')
        groups.append(group)
    return groups


def students_for_groups(groups):
    """[(student, group)] with each student once, under the first group listing them."""
    seen = set()
    pairs = []
    for group in groups:
        for member in sorted(group.members, key=lambda m: m.id):
            if member.role != ROLE_STUDENT or member.id in seen:
                continue
            seen.add(member.id)
            pairs.append((member, group))
    return pairs


def _require_points(value, default):
    if value is None or value == '':
        return default
    try:
        points = int(value)
    except (TypeError, ValueError):
        raise ValidationError('Points must be a whole number')
    if points < 0:
        raise ValidationError('Points cannot be negative')
    return points


def create_assignment(fields, group_ids, creator, now=None):
    """Template plus one StudentAssignment per student; returns (template, records)."""
    now = now or utcnow()
    title = (fields.get('title') or '').strip()
    if not title:
        raise ValidationError('Missing required fields')
    start, end = fields.get('start_time'), fields.get('end_time')
    _require_window(start, end)
    points = _require_points(fields.get('points'), 100)
    groups = _load_groups(group_ids)

    def work():
        template = AssignmentTemplate(
            title=title,
            instructions=fields.get('instructions'),
            points=points,
            start_time=start,
            end_time=end,
            allow_late_submissions=bool(fields.get('allow_late_submissions')),
            creator_id=creator.id,
        )
        template.groups = groups
        db.session.add(template)
        db.session.flush()

        records = []
        for student, group in students_for_groups(groups):
            record = StudentAssignment(
                template_id=template.id,
                student_id=student.id,
                course_id=group.id,
                available_from=start,
                due_date=end,
                template_title=title,
                template_points=points,
                submission_history=[],
            )
            record.template = template
            record.refresh_status(now)
            db.session.add(record)
            records.append(record)
        return template, records

    template, records = run_in_transaction(work)
    logger.info(f"Created assignment template {template.id} for {len(records)} students")
    return template, records


def _validate_questions(raw):
    if not isinstance(raw, list) or not raw:
        raise ValidationError('A quiz needs at least one question')
    questions = []
    for idx, q in enumerate(raw):
        if not isinstance(q, dict) or not (q.get('text') or '').strip():
            raise ValidationError(f'Question {idx + 1} needs text')
        options = q.get('options')
        if not isinstance(options, list) or len(options) < 2:
            raise ValidationError(f'Question {idx + 1} needs at least two options')
        correct = q.get('correct_option')
        if not isinstance(correct, int) or isinstance(correct, bool) or not (0 <= correct < len(options)):
            raise ValidationError(f'Question {idx + 1} has an invalid correct option')
        points = _require_points(q.get('points'), 1)
        questions.append({
            'text': q['text'].strip(),
            'options': [str(o) for o in options],
            'correct_option': correct,
            'points': points,
        })
    return questions


def _require_time_limit(value):
    if value is not None and (not isinstance(value, int) or isinstance(value, bool) or value < 1):
        raise ValidationError('Time limit must be a positive number of minutes')
    return value


def _require_max_attempts(value):
    value = value or 1
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ValidationError('Max attempts must be at least 1')
    return value


def create_quiz(fields, group_ids, creator, now=None):
    """Quiz template plus one StudentQuiz per student; returns (template, records)."""
    now = now or utcnow()
    title = (fields.get('title') or '').strip()
    if not title:
        raise ValidationError('Missing required fields')
    start, end = fields.get('start_time'), fields.get('end_time')
    _require_window(start, end)
    questions = _validate_questions(fields.get('questions'))
    points = _require_points(fields.get('points'), sum(q['points'] for q in questions))
    time_limit = _require_time_limit(fields.get('time_limit_minutes'))
    max_attempts = _require_max_attempts(fields.get('max_attempts'))
    groups = _load_groups(group_ids)

    def work():
        template = QuizTemplate(
            title=title,
            description=fields.get('description'),
            points=points,
            start_time=start,
            end_time=end,
            time_limit_minutes=time_limit,
            max_attempts=max_attempts,
            allow_late_submissions=bool(fields.get('allow_late_submissions')),
            questions=questions,
            creator_id=creator.id,
        )
        template.groups = groups
        db.session.add(template)
        db.session.flush()

        records = []
        for student, group in students_for_groups(groups):
            record = StudentQuiz(
                template_id=template.id,
                student_id=student.id,
                course_id=group.id,
                available_from=start,
                due_date=end,
                template_title=title,
                template_points=points,
            )
            record.template = template
            record.refresh_status(now)
            db.session.add(record)
            records.append(record)
        return template, records

    template, records = run_in_transaction(work)
    logger.info(f"Created quiz template {template.id} for {len(records)} students")
    return template, records


# --- Template maintenance ---------------------------------------------------

TEMPLATE_FIELDS = ('title', 'instructions', 'points', 'start_time', 'end_time', 'allow_late_submissions')
QUIZ_TEMPLATE_FIELDS = (
    'title', 'description', 'points', 'start_time', 'end_time', 'time_limit_minutes',
    'max_attempts', 'allow_late_submissions', 'questions',
)


def _clean_common_changes(template, changes):
    if 'title' in changes:
        changes['title'] = (changes['title'] or '').strip()
        if not changes['title']:
            raise ValidationError('Title cannot be empty')
    if 'points' in changes:
        changes['points'] = _require_points(changes['points'], template.points)
    start = changes.get('start_time') or template.start_time
    end = changes.get('end_time') or template.end_time
    changes['start_time'], changes['end_time'] = start, end
    _require_window(start, end)
    return changes


def _propagate(template, records, old_due, now):
    """Push title, points and the window down; records whose due date was moved by a retake keep it."""
    for record in records:
        record.template_title = template.title
        record.template_points = template.points
        record.available_from = template.start_time
        if record.due_date == old_due:
            record.due_date = template.end_time
        record.refresh_status(now)


def update_assignment_template(template, fields, now=None):
    """
    Apply template edits and push title, points and the window down to every
    student record. Records whose due date was moved by a retake keep it.
    """
    now = now or utcnow()
    changes = _clean_common_changes(template, {k: fields[k] for k in TEMPLATE_FIELDS if k in fields})
    old_due = template.end_time

    def work():
        for key, value in changes.items():
            setattr(template, key, value)
        _propagate(template, StudentAssignment.query.filter_by(template_id=template.id).all(), old_due, now)
        return template

    return run_in_transaction(work)


def update_quiz_template(template, fields, now=None):
    """
    Same propagation as assignments. Replacing the questions re-totals the
    points unless points are given explicitly; attempts already scored keep
    their scores.
    """
    now = now or utcnow()
    changes = _clean_common_changes(template, {k: fields[k] for k in QUIZ_TEMPLATE_FIELDS if k in fields})
    if 'questions' in changes:
        changes['questions'] = _validate_questions(changes['questions'])
        if 'points' not in changes:
            changes['points'] = sum(q['points'] for q in changes['questions'])
    if 'time_limit_minutes' in changes:
        changes['time_limit_minutes'] = _require_time_limit(changes['time_limit_minutes'])
    if 'max_attempts' in changes:
        changes['max_attempts'] = _require_max_attempts(changes['max_attempts'])
    if 'allow_late_submissions' in changes:
        changes['allow_late_submissions'] = bool(changes['allow_late_submissions'])
    old_due = template.end_time

    def work():
        for key, value in changes.items():
            setattr(template, key, value)
        _propagate(template, StudentQuiz.query.filter_by(template_id=template.id).all(), old_due, now)
        return template

    template = run_in_transaction(work)
    logger.info(f"Updated quiz template {template.id}")
    return template


def _delete_records(model, source_type, template_id):
    record_ids = [row.id for row in model.query.filter_by(template_id=template_id).all()]
    if not record_ids:
        return 0
    RetakeRequest.query.filter(
        RetakeRequest.target_kind == source_type,
        RetakeRequest.target_id.in_(record_ids),
    ).delete(synchronize_session=False)
    PointsLedger.query.filter(
        PointsLedger.source_type == source_type,
        PointsLedger.source_id.in_(record_ids),
    ).delete(synchronize_session=False)
    if model is StudentQuiz:
        QuizAttempt.query.filter(QuizAttempt.student_quiz_id.in_(record_ids)).delete(synchronize_session=False)
    model.query.filter(model.id.in_(record_ids)).delete(synchronize_session=False)
    return len(record_ids)


def delete_assignment_template(template):
    """Remove a template with its student records, ledger entries and retake requests."""
    template_id = template.id

    def work():
        removed = _delete_records(StudentAssignment, SOURCE_ASSIGNMENT, template_id)
        db.session.delete(template)
        return removed

    removed = run_in_transaction(work)
    logger.info(f"Deleted assignment template {template_id} and {removed} student records")
    return removed


def delete_quiz_template(template):
    """Remove a quiz with its student records, attempts, ledger entries and retake requests."""
    template_id = template.id

    def work():
        removed = _delete_records(StudentQuiz, SOURCE_QUIZ, template_id)
        db.session.delete(template)
        return removed

    removed = run_in_transaction(work)
    logger.info(f"Deleted quiz template {template_id} and {removed} student records")
    return removed


# --- Group listings ---------------------------------------------------------

def group_records(model, group_id, statuses=None, now=None):
    """Per-student records of a group with refreshed statuses, ordered by due date then student."""
    now = now or utcnow()
    records = model.query.filter_by(course_id=group_id).order_by(
        model.due_date.asc(), model.student_id.asc(), model.id.asc()
    ).all()
    changed = [r for r in records if r.refresh_status(now)]
    if changed:
        db.session.commit()
    if statuses is not None:
        records = [r for r in records if r.status in statuses]
    return records


def mark_past_due_seen(records):
    """Flag past-due assignments the teacher has now seen; returns how many were new."""
    unseen = [
        r for r in records
        if r.status == status_engine.PAST_DUE and not r.seen_by_teacher
    ]
    if not unseen:
        return 0

    def work():
        for record in unseen:
            record.seen_by_teacher = True
        return len(unseen)

    return run_in_transaction(work)


def mark_viewed_by_student(records, now=None):
    """Flag records the student can now see (already open); returns how many were new."""
    now = now or utcnow()
    unseen = [r for r in records if not r.viewed_by_student and r.available_from <= now]
    if not unseen:
        return 0

    def work():
        for record in unseen:
            record.viewed_by_student = True
        return len(unseen)

    return run_in_transaction(work)


# --- Submissions ------------------------------------------------------------

def _validate_files(files):
    if files is None:
        return []
    if not isinstance(files, list) or not all(isinstance(f, dict) for f in files):
        raise ValidationError('Files must be a list of file descriptors')
    return files


def submit_assignment(record, files=None, comments=None, now=None):
    now = now or utcnow()
    files = _validate_files(files)
    if not record.can_submit(now):
        raise ValidationError('Submissions are not allowed at this time')

    def work():
        late = status_engine.is_late(now, record.due_date)
        record.submitted_at = now
        record.is_late = late
        record.files = files
        history = list(record.submission_history or [])
        history.append({
            'version': len(history) + 1,
            'submitted_at': now.isoformat(),
            'is_late': late,
            'files': files,
            'comments': comments,
        })
        record.submission_history = history
        record.refresh_status(now)
        return record

    return run_in_transaction(work)


def unsubmit_assignment(record, now=None):
    now = now or utcnow()
    if not record.can_unsubmit(now):
        raise ValidationError('Cannot unsubmit assignment at this time')

    def work():
        record.clear_submission()
        record.files = None
        record.refresh_status(now)
        return record

    return run_in_transaction(work)


# --- Quiz attempts ----------------------------------------------------------

def _upsert_ledger(source_type, record, points_earned, now):
    entry = PointsLedger.query.filter_by(source_id=record.id, source_type=source_type).first()
    if entry is None:
        entry = PointsLedger(source_id=record.id, source_type=source_type)
        db.session.add(entry)
    entry.student_id = record.student_id
    entry.course_id = record.course_id
    entry.source_title = record.template_title
    entry.points_earned = points_earned
    entry.points_possible = record.template_points
    entry.awarded_at = now
    return entry


def _remove_ledger(source_type, record):
    return PointsLedger.query.filter_by(source_id=record.id, source_type=source_type).delete()


def score_answers(questions, answers):
    """Return (scored_answers, total) for a list of selected option indexes."""
    scored = []
    total = 0
    for idx, question in enumerate(questions or []):
        selected = answers[idx] if idx < len(answers) else None
        correct = selected is not None and selected == question.get('correct_option')
        awarded = question.get('points', 1) if correct else 0
        total += awarded
        scored.append({
            'question_index': idx,
            'selected_option': selected,
            'is_correct': correct,
            'points_awarded': awarded,
        })
    return scored, total


def _validate_answers(answers):
    if answers is None:
        return []
    if not isinstance(answers, list):
        raise ValidationError('Answers must be a list')
    for value in answers:
        if value is not None and (not isinstance(value, int) or isinstance(value, bool)):
            raise ValidationError('Each answer must be an option index or null')
    return answers


def finalize_attempt(attempt, answers, now):
    """Score and close an attempt, record it on the student quiz and upsert the ledger."""
    record = attempt.student_quiz
    scored, total = score_answers(record.template.questions if record.template else [], answers)
    attempt.answers = scored
    attempt.score = total
    attempt.status = ATTEMPT_SUBMITTED
    attempt.submitted_at = now
    attempt.is_late = status_engine.is_late(now, record.due_date)

    record.answers = scored
    record.submitted_at = now
    record.is_late = attempt.is_late
    record.in_progress = False
    record.last_attempt_id = attempt.id
    record.refresh_status(now)
    _upsert_ledger(SOURCE_QUIZ, record, total, now)
    return attempt


def start_quiz(record, now=None):
    """Resume the open attempt or open a new one; returns (attempt, created)."""
    now = now or utcnow()
    open_attempt = record.in_progress_attempt()
    if open_attempt and now < open_attempt.expires_at():
        return open_attempt, False

    if record.has_grade():
        raise ValidationError('Quiz has already been graded')
    if now < record.available_from:
        raise ValidationError('Quiz has not started yet')
    if now > record.due_date:
        raise ValidationError('Quiz has already ended')

    if open_attempt:
        # time limit ran out before the student came back
        run_in_transaction(lambda: expire_attempt(open_attempt, now))
    if record.attempts_remaining() < 1:
        raise ValidationError('Maximum attempts reached for this quiz')

    def work():
        attempt = QuizAttempt(
            attempt_number=len(record.attempts) + 1,
            started_at=now,
            status=ATTEMPT_IN_PROGRESS,
            answers=[],
        )
        record.attempts.append(attempt)
        record.clear_submission()
        record.answers = None
        record.in_progress = True
        db.session.flush()
        record.last_attempt_id = attempt.id
        record.refresh_status(now)
        return attempt

    attempt = run_in_transaction(work)
    logger.info(f"Student {record.student_id} started attempt {attempt.attempt_number} of quiz {record.template_id}")
    return attempt, True


def submit_quiz_attempt(attempt, answers, now=None):
    """Score an open attempt; with no answers given, the selections saved so far are scored."""
    now = now or utcnow()
    if attempt.status != ATTEMPT_IN_PROGRESS:
        raise ValidationError('Attempt is already submitted')
    answers = saved_selections(attempt) if answers is None else _validate_answers(answers)
    if now > attempt.expires_at() and not attempt.student_quiz.allows_late():
        run_in_transaction(lambda: expire_attempt(attempt, now))
        raise ValidationError('The time for this attempt has run out')
    return run_in_transaction(lambda: finalize_attempt(attempt, answers, now))


def expire_attempt(attempt, now=None):
    """
    Close an attempt whose time ran out. The attempt counts as used, but no
    submission is recorded on the student quiz, which therefore falls back to
    active or past-due.
    """
    now = now or utcnow()
    record = attempt.student_quiz
    closed_at = min(now, attempt.expires_at())
    attempt.status = ATTEMPT_SUBMITTED
    attempt.submitted_at = closed_at
    attempt.is_late = False
    record.in_progress = False
    record.refresh_status(now)
    logger.info(f"Attempt {attempt.id} of student quiz {record.id} expired at {closed_at.isoformat()}")
    return attempt


def save_attempt_answer(attempt, question_index, selected_option, now=None):
    """Record one selection on an open attempt without scoring it."""
    now = now or utcnow()
    if attempt.status != ATTEMPT_IN_PROGRESS:
        raise ValidationError('Attempt is already submitted')
    if now > attempt.expires_at() and not attempt.student_quiz.allows_late():
        run_in_transaction(lambda: expire_attempt(attempt, now))
        raise ValidationError('The time for this attempt has run out')
    questions = attempt.student_quiz.template.questions or []
    if not isinstance(question_index, int) or isinstance(question_index, bool) \
            or not (0 <= question_index < len(questions)):
        raise ValidationError('Invalid question index')
    if selected_option is not None:
        options = questions[question_index].get('options') or []
        if not isinstance(selected_option, int) or isinstance(selected_option, bool) \
                or not (0 <= selected_option < len(options)):
            raise ValidationError('Invalid option')

    def work():
        answers = [a for a in (attempt.answers or []) if a.get('question_index') != question_index]
        answers.append({
            'question_index': question_index,
            'selected_option': selected_option,
            'answered_at': now.isoformat(),
        })
        # JSON columns only notice reassignment
        attempt.answers = sorted(answers, key=lambda a: a['question_index'])
        return attempt

    return run_in_transaction(work)


def saved_selections(attempt):
    """Selections saved so far on an open attempt, as a list indexed by question."""
    count = len(attempt.student_quiz.template.questions or [])
    selections = [None] * count
    for answer in attempt.answers or []:
        idx = answer.get('question_index')
        if isinstance(idx, int) and 0 <= idx < count:
            selections[idx] = answer.get('selected_option')
    return selections


def attempt_results(attempt, viewer, now=None):
    """
    Per-question breakdown of a submitted attempt. Staff always see the
    correct options; the student sees them once the quiz is past due.
    """
    now = now or utcnow()
    record = attempt.student_quiz
    if not viewer.is_staff() and viewer.id != record.student_id:
        raise AuthorizationError('Not authorized to view these results')
    if attempt.status != ATTEMPT_SUBMITTED:
        raise AuthorizationError('Results are not available yet')
    reveal = viewer.is_staff() or now > record.due_date
    scored = {a.get('question_index'): a for a in attempt.answers or []}
    questions = []
    for idx, question in enumerate(record.template.questions or []):
        answer = scored.get(idx, {})
        item = {
            'index': idx,
            'text': question.get('text'),
            'options': question.get('options') or [],
            'points': question.get('points', 1),
            'selected_option': answer.get('selected_option'),
            'is_correct': bool(answer.get('is_correct')),
            'points_awarded': answer.get('points_awarded', 0),
        }
        if reveal:
            item['correct_option'] = question.get('correct_option')
        questions.append(item)
    return {
        'attempt': attempt.to_dict(),
        'quiz_title': record.template_title,
        'points_possible': record.template_points,
        'questions': questions,
    }


# --- Grading ----------------------------------------------------------------

def _grade(record, source_type, score, feedback, grader, now, noun):
    if not status_engine.can_grade(record.compute_status(now)):
        raise ValidationError(f'You can only grade completed or past-due {noun}')
    try:
        score = float(score)
    except (TypeError, ValueError):
        raise ValidationError('Score must be a number')
    if score < 0 or score > record.template_points:
        raise ValidationError(f'Score must be between 0 and {record.template_points}')

    def work():
        record.score = score
        record.feedback = feedback
        record.graded_by_id = grader.id
        record.graded_at = now
        record.refresh_status(now)
        _upsert_ledger(source_type, record, score, now)
        return record

    return run_in_transaction(work)


def grade_assignment(record, score, feedback, grader, now=None):
    return _grade(record, SOURCE_ASSIGNMENT, score, feedback, grader, now or utcnow(), 'assignments')


def grade_quiz(record, score, feedback, grader, now=None):
    return _grade(record, SOURCE_QUIZ, score, feedback, grader, now or utcnow(), 'quizzes')


# --- Retakes ----------------------------------------------------------------

def request_retake(target, student, reason, now=None):
    now = now or utcnow()
    record = load_target(target)
    if not record or record.student_id != student.id:
        raise NotFoundError('Item not found')
    reason = (reason or '').strip()
    if not reason:
        raise ValidationError('A reason is required')
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(f'Reason must be at most {MAX_REASON_LENGTH} characters')
    if now <= record.due_date:
        raise ValidationError('You can only request retakes for past-due work')
    existing = RetakeRequest.query.filter_by(
        target_kind=target.kind, target_id=_target_id(target),
        student_id=student.id, status=RETAKE_PENDING,
    ).first()
    if existing:
        raise ValidationError('You already have a pending request for this item')

    def work():
        request = RetakeRequest(
            target_kind=target.kind,
            target_id=_target_id(target),
            student_id=student.id,
            course_id=record.course_id,
            reason=reason,
            status=RETAKE_PENDING,
            created_at=now,
        )
        db.session.add(request)
        return request

    try:
        return run_in_transaction(work)
    except IntegrityError:
        raise ValidationError('You already have a pending request for this item')


def review_retake(request, status, reviewer, new_due_date=None, notes=None, now=None):
    """
    Approve or deny a pending request. Approval clears the submission and the
    grade, drops the ledger entry and moves the due date.
    """
    now = now or utcnow()
    if not reviewer.is_staff():
        raise AuthorizationError('Only teachers can review requests')
    if request.status != RETAKE_PENDING:
        raise ValidationError('Request has already been processed')
    if status not in (RETAKE_APPROVED, RETAKE_DENIED):
        raise ValidationError('Invalid status')
    if notes and len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError(f'Notes must be at most {MAX_NOTES_LENGTH} characters')
    target = target_of(request)
    if status == RETAKE_APPROVED:
        if not isinstance(new_due_date, datetime):
            raise ValidationError('A new due date is required for approval')
        if new_due_date <= now:
            raise ValidationError('The new due date must be in the future')

    def work():
        request.status = status
        request.reviewed_by_id = reviewer.id
        request.reviewed_at = now
        request.review_notes = notes
        if request.created_at:
            request.response_time_hours = round((now - request.created_at).total_seconds() / 3600, 2)
        if status == RETAKE_APPROVED:
            request.new_due_date = new_due_date
            record = load_target(target)
            if record:
                _reset_for_retake(record, target, new_due_date, now)
        return request

    request = run_in_transaction(work)
    logger.info(f"Retake request {request.id} {status} by {reviewer.id}")
    return request


def _reset_for_retake(record, target, new_due_date, now):
    record.due_date = new_due_date
    record.clear_submission()
    record.clear_grade()
    if isinstance(target, QuizTarget):
        record.answers = None
        record.in_progress = False
        record.extra_attempts = (record.extra_attempts or 0) + 1
    else:
        record.files = None
    _remove_ledger(target.kind, record)
    record.refresh_status(now)


# --- Groups -----------------------------------------------------------------

def create_group(name, member_ids, creator, admin_resolver=None):
    """
    Create a group with the given members. `admin_resolver` returns the id of
    the administrator to add to every new group, or None.
    """
    name = (name or '').strip()
    if not name:
        raise ValidationError('Group name is required')
    members = []
    for raw in member_ids or []:
        try:
            user = db.session.get(User, int(raw))
        except (TypeError, ValueError):
            raise ValidationError(f'Invalid user id: {raw}')
        if not user:
            raise NotFoundError(f'User {raw} not found')
        if user not in members:
            members.append(user)
    admin_id = admin_resolver() if admin_resolver else None
    if admin_id is not None:
        admin = db.session.get(User, admin_id)
        if admin and admin not in members:
            members.append(admin)

    def work():
        group = Group(name=name)
        group.members = members
        db.session.add(group)
        return group

    group = run_in_transaction(work)
    logger.info(f"Group {group.id} created by {creator.id} with {len(members)} members")
    return group
