"""Handlers shared by the assignment and quiz routes: record listings and retake requests."""

from flask import jsonify, request

from backend import status_engine
from backend.errors import AuthorizationError, NotFoundError, ValidationError
from backend.work_items import (
    AssignmentTarget,
    QuizTarget,
    group_records,
    mark_past_due_seen,
    mark_viewed_by_student,
    request_retake,
    review_retake,
)
from models import (
    ROLE_ADMIN,
    Group,
    ROLE_STUDENT,
    RetakeRequest,
    SOURCE_ASSIGNMENT,
    SOURCE_QUIZ,
    STAFF_ROLES,
    db,
    utcnow,
)
from services.auth_service import require_role
from services.validation_service import parse_int, parse_iso_datetime, parse_status_filter

TARGET_TYPES = {
    SOURCE_ASSIGNMENT: AssignmentTarget,
    SOURCE_QUIZ: QuizTarget,
}


def field(data, *names):
    for name in names:
        if name in data:
            return data[name]
    return None


def parse_group_ids(data):
    raw = field(data, 'groupIds', 'group_ids', 'groupId', 'group_id', 'courseId', 'course_id')
    if raw is None:
        return []
    return raw if isinstance(raw, list) else [raw]


def parse_template_fields(data, partial=False):
    """Map a JSON body onto template keyword fields; timestamps become naive UTC."""
    fields = {}
    for key, names in (
        ('title', ('title',)),
        ('instructions', ('instructions',)),
        ('description', ('description',)),
        ('points', ('points',)),
        ('questions', ('questions',)),
        ('time_limit_minutes', ('timeLimitMinutes', 'time_limit_minutes')),
        ('max_attempts', ('maxAttempts', 'max_attempts')),
        ('allow_late_submissions', ('allowLateSubmissions', 'allow_late_submissions')),
    ):
        if any(n in data for n in names):
            fields[key] = field(data, *names)
    for key, names in (('start_time', ('startTime', 'start_time')), ('end_time', ('endTime', 'end_time'))):
        if any(n in data for n in names):
            raw = field(data, *names)
            value = parse_iso_datetime(raw)
            if raw and value is None:
                raise ValidationError(f'Invalid date format for {names[0]}')
            fields[key] = value
        elif not partial:
            fields[key] = None
    return fields


def list_student_items(model):
    """The caller's records with freshly computed statuses, filtered by ?status=a,b."""
    user = require_role(ROLE_STUDENT)
    wanted = parse_status_filter(request.args.get('status'), status_engine.WORK_STATUSES)
    now = utcnow()
    records = model.query.filter_by(student_id=user.id).order_by(model.due_date.asc(), model.id.asc()).all()

    changed = False
    for record in records:
        if record.refresh_status(now):
            changed = True
    if changed:
        db.session.commit()

    if wanted is not None:
        records = [r for r in records if r.status in wanted]
    data = [r.to_dict() for r in records]
    mark_viewed_by_student(records, now)
    return jsonify({'success': True, 'count': len(records), 'data': data})


def list_group_items(model, group_id, mark_seen=False):
    """
    Staff view of every student record in a group. Past-due assignments are
    flagged as seen when `mark_seen` is set; the response still shows the
    earlier flag.
    """
    user = require_role(*STAFF_ROLES)
    group = db.session.get(Group, group_id)
    if not group:
        raise NotFoundError('Group not found')
    if user.role != ROLE_ADMIN and user not in group.members:
        raise AuthorizationError('Not authorized to view this group')
    wanted = parse_status_filter(request.args.get('status'), status_engine.WORK_STATUSES)
    records = group_records(model, group_id, wanted)
    names = {m.id: m.username for m in group.members}
    data = []
    for record in records:
        item = record.to_dict()
        item['student_username'] = names.get(record.student_id)
        data.append(item)
    if mark_seen:
        mark_past_due_seen(records)
    return jsonify({'success': True, 'count': len(records), 'data': data})


def get_owned_record(model, record_id, user, noun):
    record = db.session.get(model, record_id)
    if not record or record.student_id != user.id:
        raise NotFoundError(f'{noun} not found')
    return record


def get_record(model, record_id, noun):
    record = db.session.get(model, record_id)
    if not record:
        raise NotFoundError(f'{noun} not found')
    return record


def create_request(kind):
    user = require_role(ROLE_STUDENT)
    data = request.get_json(silent=True) or {}
    target_id = parse_int(field(data, 'requestableId', 'targetId', 'target_id'))
    if target_id is None:
        raise ValidationError('requestableId is required')
    target = TARGET_TYPES[kind](target_id)
    retake = request_retake(target, user, data.get('reason'))
    return jsonify({'success': True, 'data': retake.to_dict()}), 201


def list_requests(kind):
    require_role(*STAFF_ROLES)
    query = RetakeRequest.query.filter_by(target_kind=kind)
    status = request.args.get('status')
    if status:
        query = query.filter_by(status=status)
    requests = query.order_by(RetakeRequest.created_at.desc(), RetakeRequest.id.desc()).all()
    return jsonify({'success': True, 'count': len(requests), 'data': [r.to_dict() for r in requests]})


def review_request(kind, request_id):
    user = require_role(*STAFF_ROLES)
    retake = db.session.get(RetakeRequest, request_id)
    if not retake or retake.target_kind != kind:
        raise NotFoundError('Request not found')
    if user.role != ROLE_ADMIN and retake.course_id not in [g.id for g in user.groups]:
        raise AuthorizationError('Not authorized to review this request')
    data = request.get_json(silent=True) or {}
    new_due_raw = field(data, 'newDueDate', 'new_due_date')
    new_due = parse_iso_datetime(new_due_raw) if new_due_raw else None
    if new_due_raw and new_due is None:
        raise ValidationError('Invalid date format for newDueDate')
    retake = review_retake(
        retake,
        data.get('status'),
        user,
        new_due_date=new_due,
        notes=field(data, 'reviewNotes', 'review_notes'),
    )
    return jsonify({'success': True, 'data': retake.to_dict()})
