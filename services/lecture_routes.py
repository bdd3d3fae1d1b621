"""Lecture CRUD. Every create and update runs the group conflict check first."""

from flask import current_app, jsonify, request
from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError

from backend import status_engine
from backend.conflicts import ensure_no_lecture_conflict, find_instructor_conflict, lock_group_for_write
from backend.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from backend.exception_store import clear_exceptions, record_exception
from backend.recurrence import validate_rule
from backend.time_helpers import resolve_timezone
from backend.transactions import run_in_transaction
from models import Group, Lecture, ROLE_ADMIN, SERIES_LECTURE, STAFF_ROLES, db
from services.auth_service import require_role, require_user
from services.validation_service import (
    parse_bool,
    parse_byweekday,
    parse_day_value,
    parse_int,
    parse_iso_datetime,
)

MAX_TITLE_LENGTH = 120
MAX_DESCRIPTION_LENGTH = 500


def _field(data, *names):
    for name in names:
        if name in data:
            return data[name]
    return None


def _parse_rule(raw, start_time):
    if not isinstance(raw, dict):
        raise ValidationError('Recurring lectures require a recurrence rule')
    dtstart = parse_iso_datetime(raw.get('dtstart')) if raw.get('dtstart') else start_time
    if dtstart is None:
        raise ValidationError('Invalid recurrence start date')
    until = None
    if raw.get('until'):
        until = parse_day_value(raw.get('until'))
        if until is None:
            raise ValidationError('Invalid recurrence end date')
    return validate_rule(
        raw.get('freq'),
        dtstart,
        interval=raw.get('interval') or 1,
        byweekday=parse_byweekday(raw.get('byweekday')),
        until=until,
        count=raw.get('count'),
    )


def _parse_times(data, current=None):
    start_raw = _field(data, 'startTime', 'start_time')
    end_raw = _field(data, 'endTime', 'end_time')
    start = parse_iso_datetime(start_raw) if start_raw else (current.start_time if current else None)
    end = parse_iso_datetime(end_raw) if end_raw else (current.end_time if current else None)
    if (start_raw and start is None) or (end_raw and end is None):
        raise ValidationError('Invalid date format for startTime or endTime')
    if start is None or end is None:
        raise ValidationError('Missing required fields')
    if end <= start:
        raise ValidationError('End time must be after start time')
    return start, end


def _parse_text(data, current=None):
    title = data.get('title')
    title = (title or '').strip() if title is not None else (current.title if current else '')
    if not title:
        raise ValidationError('Missing required fields')
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f'Title cannot exceed {MAX_TITLE_LENGTH} characters')
    description = data.get('description', current.description if current else None)
    if description and len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(f'Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters')
    tz_name = data.get('timezone') or (current.timezone if current else 'UTC')
    if resolve_timezone(tz_name) is None:
        raise ValidationError(f'Unknown timezone: {tz_name}')
    return title, description, tz_name


def _check_instructor(lecture, data):
    if not parse_bool(_field(data, 'enforceInstructorConflicts', 'enforce_instructor_conflicts')):
        return
    clash = find_instructor_conflict(
        lecture.instructor_id, lecture.start_time, lecture.end_time,
        exclude_id=lecture.id, rule=lecture.recurrence_rule(), tz_name=lecture.timezone,
    )
    if clash:
        raise ConflictError(f'Instructor already teaches lecture "{clash.lecture.title}" at that time', conflict=clash)


def _assign(lecture, title, description, tz_name, start, end, rule, meeting_url):
    lecture.title = title
    lecture.description = description
    lecture.timezone = tz_name
    lecture.start_time = start
    lecture.end_time = end
    lecture.meeting_url = meeting_url
    lecture.set_recurrence(rule)


def create_lecture():
    user = require_role(*STAFF_ROLES)
    data = request.get_json(silent=True) or {}
    group_id = parse_int(_field(data, 'groupId', 'group_id'))
    if group_id is None:
        raise ValidationError('Missing required fields')
    group = db.session.get(Group, group_id)
    if not group:
        raise NotFoundError('Group not found')
    title, description, tz_name = _parse_text(data)
    start, end = _parse_times(data)
    is_recurring = parse_bool(_field(data, 'isRecurring', 'is_recurring'))
    rule = _parse_rule(_field(data, 'recurrenceRule', 'recurrence_rule'), start) if is_recurring else None
    horizon = current_app.config.get('LECTURE_CONFLICT_HORIZON_WEEKS')

    def work():
        lock_group_for_write(group.id)
        lecture = Lecture(group_id=group.id, instructor_id=user.id)
        _assign(lecture, title, description, tz_name, start, end, rule, data.get('meetingUrl') or data.get('meeting_url'))
        ensure_no_lecture_conflict(
            group.id, start, end,
            rule=lecture.recurrence_rule(), horizon_weeks=horizon, tz_name=lecture.timezone,
        )
        _check_instructor(lecture, data)
        lecture.refresh_status()
        db.session.add(lecture)
        return lecture

    lecture = run_in_transaction(work)
    current_app.logger.info(f"Lecture {lecture.id} created for group {group.id}")
    return jsonify({'success': True, 'data': lecture.to_dict()}), 201


def _get_lecture_for_write(lecture_id, user):
    lecture = db.session.get(Lecture, lecture_id)
    if not lecture:
        raise NotFoundError('Lecture not found')
    if user.role != ROLE_ADMIN and lecture.instructor_id != user.id:
        raise AuthorizationError('Not authorized to modify this lecture')
    return lecture


def update_lecture(lecture_id):
    user = require_role(*STAFF_ROLES)
    lecture = _get_lecture_for_write(lecture_id, user)
    data = request.get_json(silent=True) or {}
    title, description, tz_name = _parse_text(data, lecture)
    start, end = _parse_times(data, lecture)

    is_recurring = _field(data, 'isRecurring', 'is_recurring')
    is_recurring = lecture.is_recurring if is_recurring is None else parse_bool(is_recurring)
    raw_rule = _field(data, 'recurrenceRule', 'recurrence_rule')
    if not is_recurring:
        rule = None
    elif raw_rule is not None:
        rule = _parse_rule(raw_rule, start)
    elif lecture.is_recurring:
        rule = lecture.stored_rule()
    else:
        raise ValidationError('Recurring lectures require a recurrence rule')

    meeting_url = data.get('meetingUrl', data.get('meeting_url', lecture.meeting_url))
    cancelled = _field(data, 'cancelled')
    horizon = current_app.config.get('LECTURE_CONFLICT_HORIZON_WEEKS')

    def work():
        lock_group_for_write(lecture.group_id)
        _assign(lecture, title, description, tz_name, start, end, rule, meeting_url)
        if cancelled is not None:
            lecture.status = status_engine.LECTURE_CANCELLED if parse_bool(cancelled) else None
        if lecture.status != status_engine.LECTURE_CANCELLED:
            ensure_no_lecture_conflict(
                lecture.group_id, start, end,
                exclude_id=lecture.id, rule=lecture.recurrence_rule(), horizon_weeks=horizon,
                tz_name=lecture.timezone,
            )
            _check_instructor(lecture, data)
        lecture.refresh_status()
        return lecture

    lecture = run_in_transaction(work)
    return jsonify({'success': True, 'data': lecture.to_dict()})


def delete_lecture(lecture_id):
    user = require_role(*STAFF_ROLES)
    lecture = _get_lecture_for_write(lecture_id, user)
    data = request.get_json(silent=True) or {}
    delete_all = parse_bool(_field(data, 'deleteAllRecurring', 'delete_all_recurring'))

    if lecture.is_recurring and not delete_all:
        date_string = _field(data, 'dateString', 'date_string')
        day = parse_day_value(date_string) if date_string else None
        if not day:
            raise ValidationError('dateString is required to delete a single occurrence')
        marker = run_in_transaction(
            lambda: record_exception(SERIES_LECTURE, lecture.id, day, user_id=user.id),
            retry_on=(IntegrityError,),
        )
        return jsonify({'success': True, 'data': marker.to_dict(), 'message': 'Lecture occurrence removed'})

    def work():
        if lecture.is_recurring:
            clear_exceptions(SERIES_LECTURE, lecture.id)
        db.session.delete(lecture)

    run_in_transaction(work)
    return jsonify({'success': True, 'data': {}, 'message': 'Lecture removed'})


def group_lectures(group_id):
    user = require_user()
    group = db.session.get(Group, group_id)
    if not group:
        raise NotFoundError('Group not found')
    if user.role not in STAFF_ROLES and group not in user.groups:
        raise AuthorizationError('Not authorized to view this group')

    query = Lecture.query.filter(Lecture.group_id == group.id)
    start = parse_iso_datetime(request.args.get('start'))
    end = parse_iso_datetime(request.args.get('end'))
    if start and end:
        query = query.filter(or_(
            and_(Lecture.is_recurring.is_(False), Lecture.start_time < end, Lecture.end_time > start),
            and_(
                Lecture.is_recurring.is_(True),
                or_(Lecture.rule_until.is_(None), Lecture.rule_until >= start.date()),
            ),
        ))
    lectures = query.order_by(Lecture.start_time.asc()).all()

    changed = False
    for lecture in lectures:
        before = lecture.status
        if lecture.refresh_status() != before:
            changed = True
    if changed:
        db.session.commit()
    return jsonify({'success': True, 'count': len(lectures), 'data': [lec.to_dict() for lec in lectures]})
