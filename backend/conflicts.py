"""
Lecture time-conflict detection.

Overlap rule (half-open intervals):
    existing.start < candidate.end AND existing.end > candidate.start

Recurring lectures are compared occurrence by occurrence. A recurring
candidate is only projected up to a fixed horizon, so two series that first
collide beyond it are not reported.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import and_, or_

from backend import status_engine
from backend.errors import ConflictError, ValidationError
from backend.exception_store import excepted_days
from backend.recurrence import Occurrence, expand_rule_utc, overlaps
from backend.time_helpers import local_to_utc, resolve_timezone
from models import Group, Lecture, SERIES_LECTURE

logger = logging.getLogger(__name__)

DEFAULT_HORIZON_WEEKS = 26


@dataclass(frozen=True)
class LectureConflict:
    lecture: Lecture
    start: datetime
    end: datetime

    def to_dict(self):
        return {
            'lecture_id': self.lecture.id,
            'title': self.lecture.title,
            'start_time': self.start.isoformat(),
            'end_time': self.end.isoformat(),
        }


def _horizon_weeks(horizon_weeks):
    if horizon_weeks:
        return horizon_weeks
    try:
        return int(current_app.config.get('LECTURE_CONFLICT_HORIZON_WEEKS', DEFAULT_HORIZON_WEEKS))
    except (RuntimeError, TypeError, ValueError):
        return DEFAULT_HORIZON_WEEKS


def lecture_exception_days(lecture_ids, window_start, window_end):
    """Exception markers for the lectures; markers use local days, so the UTC window is widened by a day."""
    return excepted_days(
        SERIES_LECTURE, lecture_ids,
        window_start.date() - timedelta(days=1), window_end.date() + timedelta(days=1),
    )


def lecture_occurrences(lecture, window_start, window_end, excepted=None):
    """Committed occurrences of one lecture inside [window_start, window_end)."""
    occurrences = lecture.occurrences_between(window_start, window_end)
    if not lecture.is_recurring:
        return occurrences
    if excepted is None:
        excepted = lecture_exception_days([lecture.id], window_start, window_end)
    return [occ for occ in occurrences if (lecture.id, occ.day) not in excepted]


def candidate_occurrences(start, end, rule=None, horizon_weeks=None, series_id=None, tz_name='UTC'):
    """
    Occurrences a lecture write would occupy. A recurring candidate's rule is
    in `tz_name` wall-clock time and is projected `horizon_weeks` ahead.
    """
    if rule is None:
        return [Occurrence(day=start.date(), start=start, end=end)]
    tz = resolve_timezone(tz_name)
    if tz is None:
        raise ValidationError(f'Unknown timezone: {tz_name}')
    lower = min(start, local_to_utc(rule.dtstart, tz))
    upper = lower + timedelta(weeks=_horizon_weeks(horizon_weeks))
    occurrences = expand_rule_utc(rule, end - start, lower, upper, tz)
    if series_id is not None:
        skipped = lecture_exception_days([series_id], lower, upper)
        occurrences = [occ for occ in occurrences if (series_id, occ.day) not in skipped]
    return occurrences


def _find_conflict(query, start, end, exclude_id=None, rule=None, horizon_weeks=None, tz_name='UTC'):
    candidates = candidate_occurrences(start, end, rule, horizon_weeks, series_id=exclude_id, tz_name=tz_name)
    if not candidates:
        return None
    span_start = min(c.start for c in candidates)
    span_end = max(c.end for c in candidates)

    query = query.filter(
        or_(Lecture.status.is_(None), Lecture.status != status_engine.LECTURE_CANCELLED),
        # single lectures are narrowed here; recurring ones are expanded below
        or_(
            Lecture.is_recurring.is_(True),
            and_(Lecture.start_time < span_end, Lecture.end_time > span_start),
        ),
    )
    if exclude_id is not None:
        query = query.filter(Lecture.id != exclude_id)
    existing = query.order_by(Lecture.start_time.asc(), Lecture.id.asc()).all()

    recurring_ids = [lec.id for lec in existing if lec.is_recurring]
    excepted = lecture_exception_days(recurring_ids, span_start, span_end)
    for lecture in existing:
        for occ in lecture_occurrences(lecture, span_start, span_end, excepted):
            for cand in candidates:
                if overlaps(occ.start, occ.end, cand.start, cand.end):
                    return LectureConflict(lecture=lecture, start=occ.start, end=occ.end)
    return None


def find_lecture_conflict(group_id, start, end, exclude_id=None, rule=None, horizon_weeks=None, tz_name='UTC'):
    """First committed lecture occurrence of the group overlapping the candidate, or None."""
    query = Lecture.query.filter(Lecture.group_id == group_id)
    return _find_conflict(query, start, end, exclude_id, rule, horizon_weeks, tz_name)


def find_instructor_conflict(instructor_id, start, end, exclude_id=None, rule=None, horizon_weeks=None,
                             tz_name='UTC'):
    """Same test across every group the instructor teaches."""
    query = Lecture.query.filter(Lecture.instructor_id == instructor_id)
    return _find_conflict(query, start, end, exclude_id, rule, horizon_weeks, tz_name)


def ensure_no_lecture_conflict(group_id, start, end, exclude_id=None, rule=None, horizon_weeks=None,
                               tz_name='UTC'):
    conflict = find_lecture_conflict(group_id, start, end, exclude_id, rule, horizon_weeks, tz_name)
    if conflict:
        logger.info(f"Rejected lecture write for group {group_id}: overlaps lecture {conflict.lecture.id}")
        raise ConflictError(f'Time conflict with lecture "{conflict.lecture.title}"', conflict=conflict)


def lock_group_for_write(group_id):
    """
    Serialize lecture writes per group for the rest of the transaction
    (SELECT ... FOR UPDATE where the database supports it).
    """
    return Group.query.filter_by(id=group_id).with_for_update().first()
