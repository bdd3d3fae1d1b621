"""Personal calendar events, weekly schedules and group availability."""

from datetime import datetime

from flask import current_app, jsonify, request
from sqlalchemy.exc import IntegrityError

from backend.availability import aggregate_availability, group_lecture_blocks, suggest_lecture_slots
from backend.errors import AuthorizationError, NotFoundError, ValidationError
from backend.exception_store import clear_exceptions, record_exception
from backend.recurrence import get_start_of_week, week_days
from backend.schedule import group_member_events, materialize_range, materialize_week
from backend.time_helpers import resolve_timezone
from backend.transactions import run_in_transaction
from models import CalendarEvent, Group, SERIES_EVENT, STAFF_ROLES, db
from services.auth_service import require_role, require_user
from services.validation_service import (
    parse_bool,
    parse_day_value,
    parse_int,
    parse_iso_datetime,
    parse_weekday,
)


def _field(data, *names):
    for name in names:
        if name in data:
            return data[name]
    return None


def request_timezone():
    name = request.args.get('tz') or current_app.config.get('DEFAULT_TIMEZONE') or 'UTC'
    tz = resolve_timezone(name)
    if tz is None:
        raise ValidationError(f'Unknown timezone: {name}')
    return name, tz


def _today(tz):
    return datetime.now(tz).date()


def my_schedule():
    user = require_user()
    tz_name, tz = request_timezone()
    start_raw = request.args.get('start')
    end_raw = request.args.get('end')
    if start_raw or end_raw:
        start = parse_iso_datetime(start_raw)
        end = parse_iso_datetime(end_raw)
        if not start or not end:
            raise ValidationError('start and end must be ISO timestamps')
        events = materialize_range(user, start, end, tz_name)
    else:
        events = materialize_week(user, _today(tz), tz_name)
    return jsonify({'success': True, 'count': len(events), 'data': events})


def week_schedule():
    user = require_user()
    tz_name, tz = request_timezone()
    raw = request.args.get('date')
    day = parse_day_value(raw) if raw else _today(tz)
    if not day:
        raise ValidationError('date must use YYYY-MM-DD')
    week_start = get_start_of_week(day)
    events = materialize_week(user, week_start, tz_name)
    return jsonify({
        'success': True,
        'data': {
            'week_start': week_start.isoformat(),
            'days': [d.isoformat() for d in week_days(week_start)],
            'events': events,
        },
    })


def _get_group(group_id):
    group = db.session.get(Group, group_id)
    if not group:
        raise NotFoundError('Group not found')
    return group


def group_events(group_id):
    require_role(*STAFF_ROLES)
    group = _get_group(group_id)
    events = group_member_events(group)
    return jsonify({'success': True, 'count': len(events), 'data': events})


def group_availability(group_id):
    require_role(*STAFF_ROLES)
    group = _get_group(group_id)
    tz_name, tz = request_timezone()
    raw = request.args.get('week')
    day = parse_day_value(raw) if raw else _today(tz)
    if not day:
        raise ValidationError('week must use YYYY-MM-DD')
    duration = parse_int(request.args.get('duration'), 2)
    week_start = get_start_of_week(day)

    member_ids = [m.id for m in group.members]
    events_by_user = {member_id: [] for member_id in member_ids}
    if member_ids:
        for ev in CalendarEvent.query.filter(CalendarEvent.user_id.in_(member_ids)).all():
            events_by_user[ev.user_id].append(ev)

    availability = aggregate_availability(events_by_user, week_start, tz_name)
    blocked = group_lecture_blocks(group.id, week_start, tz_name)
    suggestions = suggest_lecture_slots(availability, duration, blocked=blocked)
    return jsonify({
        'success': True,
        'data': {
            'week_start': week_start.isoformat(),
            'member_count': len(member_ids),
            'availability': availability,
            'suggestions': suggestions,
        },
    })


def create_event():
    user = require_user()
    data = request.get_json(silent=True) or {}
    is_recurring = parse_bool(_field(data, 'isRecurring', 'is_recurring'))
    group_id = parse_int(_field(data, 'groupId', 'group_id'))
    if group_id is not None:
        _get_group(group_id)

    event = CalendarEvent(
        user_id=user.id,
        creator_id=user.id,
        group_id=group_id,
        kind=_field(data, 'type', 'kind'),
        title=(data.get('title') or '').strip() or None,
        is_recurring=is_recurring,
    )
    if is_recurring:
        raw_day = _field(data, 'dayOfWeek', 'day_of_week')
        event.day_of_week = parse_weekday(raw_day) or raw_day
        event.recurring_start_time = _field(data, 'recurringStartTime', 'recurring_start_time')
        event.recurring_end_time = _field(data, 'recurringEndTime', 'recurring_end_time')
    else:
        event.start_time = parse_iso_datetime(_field(data, 'startTime', 'start_time'))
        event.end_time = parse_iso_datetime(_field(data, 'endTime', 'end_time'))
    event.validate()

    db.session.add(event)
    db.session.commit()
    return jsonify({'success': True, 'data': event.to_dict()}), 201


def delete_event(event_id):
    """
    Delete a whole series, or one occurrence of it when a dateString is given
    without deleteAllRecurring.
    """
    user = require_user()
    event = db.session.get(CalendarEvent, event_id)
    if not event:
        raise NotFoundError('Event not found')
    if event.user_id != user.id:
        raise AuthorizationError('Not authorized to delete this event')

    data = request.get_json(silent=True) or {}
    delete_all = parse_bool(_field(data, 'deleteAllRecurring', 'delete_all_recurring'))
    date_string = _field(data, 'dateString', 'date_string')

    if event.is_recurring and not delete_all:
        day = parse_day_value(date_string) if date_string else None
        if not day:
            raise ValidationError('dateString is required to delete a single occurrence')
        marker = run_in_transaction(
            lambda: record_exception(SERIES_EVENT, event.id, day, user_id=user.id),
            retry_on=(IntegrityError,),
        )
        return jsonify({'success': True, 'data': marker.to_dict(), 'message': 'Occurrence deleted'})

    def work():
        if event.is_recurring:
            clear_exceptions(SERIES_EVENT, event.id)
        db.session.delete(event)

    run_in_transaction(work)
    return jsonify({'success': True, 'data': {}, 'message': 'Event deleted'})
