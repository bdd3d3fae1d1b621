"""
Lifecycle status of time-bounded work (quizzes and assignments) and lectures.

Statuses are derived values. Models cache them in an indexed column so lists
can be filtered by status, but the cache is only ever written from
`compute_status`, on every load and by the periodic sweep.
"""

UPCOMING = 'upcoming'
ACTIVE = 'active'
IN_PROGRESS = 'in-progress'
COMPLETED = 'completed'
GRADED = 'graded'
PAST_DUE = 'past-due'

WORK_STATUSES = (UPCOMING, ACTIVE, IN_PROGRESS, COMPLETED, GRADED, PAST_DUE)
TERMINAL_STATUSES = frozenset({GRADED})
NON_TERMINAL_STATUSES = frozenset(s for s in WORK_STATUSES if s not in TERMINAL_STATUSES)

LECTURE_SCHEDULED = 'scheduled'
LECTURE_ONGOING = 'ongoing'
LECTURE_COMPLETED = 'completed'
LECTURE_CANCELLED = 'cancelled'
LECTURE_STATUSES = (LECTURE_SCHEDULED, LECTURE_ONGOING, LECTURE_COMPLETED, LECTURE_CANCELLED)


def compute_status(now, available_from, due_at, has_submission, has_grade, in_progress=False):
    """
    Precedence, first match wins:

    graded > completed > past-due > in-progress > active > upcoming

    An attempt still marked in progress after the due time is past-due, never
    completed.
    """
    if has_grade:
        return GRADED
    if has_submission:
        return COMPLETED
    if now > due_at:
        return PAST_DUE
    if in_progress:
        return IN_PROGRESS
    if available_from <= now <= due_at:
        return ACTIVE
    return UPCOMING


def can_start(status):
    return status == ACTIVE


def can_submit(status, now, due_at, allow_late=False):
    """Submissions are accepted inside [available_from, due_at]; late ones only by policy."""
    if status in (ACTIVE, IN_PROGRESS) and now <= due_at:
        return True
    return allow_late and status == PAST_DUE


def can_unsubmit(status, now, due_at):
    return status == COMPLETED and now <= due_at


def can_grade(status):
    return status in (COMPLETED, PAST_DUE)


def is_late(submitted_at, due_at):
    return submitted_at > due_at


def compute_lecture_status(now, start, end, current=None):
    if current == LECTURE_CANCELLED:
        return LECTURE_CANCELLED
    if start > now:
        return LECTURE_SCHEDULED
    if end < now:
        return LECTURE_COMPLETED
    return LECTURE_ONGOING
