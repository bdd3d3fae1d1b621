"""
Weekly schedule materialization.

A week is Monday 00:00 to the next Monday 00:00 in the viewer's timezone.
Personal weekly slots are wall-clock times in that timezone; single events
and lectures are stored as UTC instants and converted for display. A
recurring lecture repeats at the wall-clock time of its own timezone.

Every entry carries `occurrence_date`, the day an occurrence delete must
name. For lectures it is the day in the lecture's timezone, which can differ
from the viewer-local `date`. The personal and lecture layers are merged but
never deduplicated against each other.
"""

import logging
from datetime import datetime, time, timedelta

from sqlalchemy import and_, or_

from backend.conflicts import lecture_exception_days, lecture_occurrences
from backend.errors import ValidationError
from backend.exception_store import excepted_days
from backend.recurrence import expand_weekly, get_start_of_week, week_days
from backend.time_helpers import local_to_utc, normalize_time_string, resolve_timezone, utc_to_local
from models import CalendarEvent, Lecture, SERIES_EVENT

logger = logging.getLogger(__name__)

LAYER_PERSONAL = 'personal'
LAYER_LECTURE = 'lecture'


def _timezone(tz_name):
    tz = resolve_timezone(tz_name)
    if tz is None:
        raise ValidationError(f'Unknown timezone: {tz_name}')
    return tz


def _utc_iso(value):
    return value.isoformat() + 'Z'


def format_local_time(local_start, local_end):
    """e.g. "Mon 10:00-11:00"."""
    return f"{local_start.strftime('%a')} {local_start.strftime('%H:%M')}-{local_end.strftime('%H:%M')}"


def _entry(layer, source_id, kind, title, utc_start, utc_end, tz, **extra):
    local_start = utc_to_local(utc_start, tz)
    local_end = utc_to_local(utc_end, tz)
    entry = {
        'layer': layer,
        'id': source_id,
        'type': kind,
        'title': title,
        'date': local_start.date().isoformat(),
        'start': _utc_iso(utc_start),
        'end': _utc_iso(utc_end),
        'local_time': format_local_time(local_start, local_end),
    }
    entry.update(extra)
    return entry


def week_window(week_start, tz_name):
    """UTC half-open bounds of the local Monday-aligned week containing `week_start`."""
    tz = _timezone(tz_name)
    monday = week_days(week_start)[0]
    lower = local_to_utc(datetime.combine(monday, time.min), tz)
    upper = local_to_utc(datetime.combine(monday + timedelta(days=7), time.min), tz)
    return lower, upper


def _personal_entries(events, days, tz):
    first_day, last_day = days[0], days[-1]
    recurring_ids = [ev.id for ev in events if ev.is_recurring]
    excepted = excepted_days(SERIES_EVENT, recurring_ids, first_day, last_day)

    entries = []
    for ev in events:
        if ev.is_recurring:
            try:
                occurrences = expand_weekly(ev.weekly_slot(), first_day, last_day)
            except ValidationError as exc:
                logger.warning(f"Skipping malformed recurring event {ev.id}: {exc.message}")
                continue
            for occ in occurrences:
                if (ev.id, occ.day) in excepted:
                    continue
                entries.append(_entry(
                    LAYER_PERSONAL, ev.id, ev.kind, ev.title,
                    local_to_utc(occ.start, tz), local_to_utc(occ.end, tz), tz,
                    is_recurring=True, group_id=ev.group_id, occurrence_date=occ.day.isoformat(),
                ))
            continue

        if not ev.start_time or not ev.end_time or ev.end_time <= ev.start_time:
            logger.warning(f"Skipping malformed event {ev.id}: missing or inverted times")
            continue
        local_day = utc_to_local(ev.start_time, tz).date()
        if first_day <= local_day <= last_day:
            entries.append(_entry(
                LAYER_PERSONAL, ev.id, ev.kind, ev.title, ev.start_time, ev.end_time, tz,
                is_recurring=False, group_id=ev.group_id, occurrence_date=local_day.isoformat(),
            ))
    return entries


def _lecture_entries(lectures, lower, upper, tz):
    recurring_ids = [lec.id for lec in lectures if lec.is_recurring]
    excepted = lecture_exception_days(recurring_ids, lower, upper)

    entries = []
    for lecture in lectures:
        try:
            occurrences = lecture_occurrences(lecture, lower, upper, excepted)
        except ValidationError as exc:
            logger.warning(f"Skipping malformed lecture {lecture.id}: {exc.message}")
            continue
        for occ in occurrences:
            entries.append(_entry(
                LAYER_LECTURE, lecture.id, 'lecture', lecture.title, occ.start, occ.end, tz,
                is_recurring=lecture.is_recurring,
                occurrence_date=occ.day.isoformat(),
                group_id=lecture.group_id,
                group_name=lecture.group.name if lecture.group else None,
                status=lecture.status,
                meeting_url=lecture.meeting_url,
            ))
    return entries


def _load_events(user_ids, lower, upper):
    if not user_ids:
        return []
    return CalendarEvent.query.filter(
        CalendarEvent.user_id.in_(user_ids),
        or_(
            CalendarEvent.is_recurring.is_(True),
            and_(CalendarEvent.start_time < upper, CalendarEvent.end_time > lower),
        ),
    ).order_by(CalendarEvent.id.asc()).all()


def _load_lectures(group_ids, lower, upper):
    if not group_ids:
        return []
    return Lecture.query.filter(
        Lecture.group_id.in_(group_ids),
        or_(
            Lecture.is_recurring.is_(True),
            and_(Lecture.start_time < upper, Lecture.end_time > lower),
        ),
    ).order_by(Lecture.id.asc()).all()


def _sort_key(entry):
    return (entry['start'], 0 if entry['layer'] == LAYER_PERSONAL else 1, entry['id'])


def materialize_week(user, week_start, tz_name='UTC'):
    """
    Render-ready schedule of one week for `user`: their personal events plus
    the lectures of every group they belong to, ordered by start.
    """
    tz = _timezone(tz_name)
    days = week_days(week_start)
    lower, upper = week_window(days[0], tz_name)

    events = _load_events([user.id], lower, upper)
    lectures = _load_lectures([g.id for g in user.groups], lower, upper)

    entries = _personal_entries(events, days, tz) + _lecture_entries(lectures, lower, upper, tz)
    entries.sort(key=_sort_key)
    return entries


def materialize_range(user, start, end, tz_name='UTC'):
    """Same as materialize_week over [start, end) UTC, one week at a time."""
    if end <= start:
        raise ValidationError('End time must be after start time')
    tz = _timezone(tz_name)
    current = get_start_of_week(utc_to_local(start, tz).date())
    last = utc_to_local(end, tz).date()

    seen = set()
    entries = []
    while current <= last:
        for entry in materialize_week(user, current, tz_name):
            key = (entry['layer'], entry['id'], entry['start'])
            if key in seen:
                continue
            entry_start = datetime.fromisoformat(entry['start'][:-1])
            entry_end = datetime.fromisoformat(entry['end'][:-1])
            if entry_start < end and entry_end > start:
                seen.add(key)
                entries.append(entry)
        current += timedelta(days=7)
    entries.sort(key=_sort_key)
    return entries


def group_member_events(group):
    """Raw personal events of every member, recurring times normalized to "HH:MM"."""
    member_ids = [m.id for m in group.members]
    if not member_ids:
        return []
    events = CalendarEvent.query.filter(
        CalendarEvent.user_id.in_(member_ids)
    ).order_by(CalendarEvent.user_id.asc(), CalendarEvent.id.asc()).all()

    formatted = []
    for ev in events:
        data = ev.to_dict()
        if data['recurring_start_time']:
            data['recurring_start_time'] = normalize_time_string(data['recurring_start_time'])
        if data['recurring_end_time']:
            data['recurring_end_time'] = normalize_time_string(data['recurring_end_time'])
        formatted.append(data)
    return formatted
