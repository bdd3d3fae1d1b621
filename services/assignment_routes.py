from flask import jsonify, request

from backend import work_items
from backend.errors import AuthorizationError
from models import AssignmentTemplate, ROLE_ADMIN, ROLE_STUDENT, SOURCE_ASSIGNMENT, STAFF_ROLES, StudentAssignment
from services.auth_service import require_role
from services.work_item_handlers import (
    create_request,
    field,
    get_owned_record,
    get_record,
    list_group_items,
    list_requests,
    list_student_items,
    parse_group_ids,
    parse_template_fields,
    review_request,
)


def create_assignment():
    user = require_role(*STAFF_ROLES)
    data = request.get_json(silent=True) or {}
    fields = parse_template_fields(data)
    template, records = work_items.create_assignment(fields, parse_group_ids(data), user)
    payload = template.to_dict()
    payload['student_count'] = len(records)
    return jsonify({'success': True, 'data': payload}), 201


def _get_template_for_write(template_id, user):
    template = get_record(AssignmentTemplate, template_id, 'Assignment template')
    if user.role != ROLE_ADMIN and template.creator_id != user.id:
        raise AuthorizationError('Not authorized to modify this assignment')
    return template


def update_template(template_id):
    user = require_role(*STAFF_ROLES)
    template = _get_template_for_write(template_id, user)
    data = request.get_json(silent=True) or {}
    template = work_items.update_assignment_template(template, parse_template_fields(data, partial=True))
    return jsonify({'success': True, 'data': template.to_dict()})


def delete_template(template_id):
    user = require_role(*STAFF_ROLES)
    template = _get_template_for_write(template_id, user)
    removed = work_items.delete_assignment_template(template)
    return jsonify({'success': True, 'data': {'removed_student_assignments': removed}})


def student_assignments():
    return list_student_items(StudentAssignment)


def group_assignments(group_id):
    return list_group_items(StudentAssignment, group_id, mark_seen=True)


def submit_assignment(assignment_id):
    user = require_role(ROLE_STUDENT)
    record = get_owned_record(StudentAssignment, assignment_id, user, 'Assignment')
    data = request.get_json(silent=True) or {}
    record = work_items.submit_assignment(record, files=data.get('files'), comments=data.get('comments'))
    return jsonify({'success': True, 'data': record.to_dict()})


def unsubmit_assignment(assignment_id):
    user = require_role(ROLE_STUDENT)
    record = get_owned_record(StudentAssignment, assignment_id, user, 'Assignment')
    record = work_items.unsubmit_assignment(record)
    return jsonify({'success': True, 'data': record.to_dict()})


def grade_assignment(assignment_id):
    user = require_role(*STAFF_ROLES)
    record = get_record(StudentAssignment, assignment_id, 'Assignment')
    data = request.get_json(silent=True) or {}
    record = work_items.grade_assignment(record, field(data, 'score'), data.get('feedback'), user)
    return jsonify({'success': True, 'data': record.to_dict()})


def create_assignment_request():
    return create_request(SOURCE_ASSIGNMENT)


def list_assignment_requests():
    return list_requests(SOURCE_ASSIGNMENT)


def review_assignment_request(request_id):
    return review_request(SOURCE_ASSIGNMENT, request_id)
