from flask import jsonify, request

from backend.work_items import create_group as create_group_record
from models import Group, STAFF_ROLES
from services.auth_service import require_role, require_user, resolve_admin_id


def create_group():
    user = require_role(*STAFF_ROLES)
    data = request.get_json(silent=True) or {}
    member_ids = data.get('users') or data.get('member_ids') or []
    group = create_group_record(data.get('name'), member_ids, user, admin_resolver=resolve_admin_id)
    return jsonify({'success': True, 'data': group.to_dict()}), 201


def my_groups():
    user = require_user()
    groups = sorted(user.groups, key=lambda g: g.id)
    return jsonify({'success': True, 'data': [g.to_dict() for g in groups]})


def list_groups():
    require_user()
    groups = Group.query.order_by(Group.id.asc()).all()
    return jsonify({'success': True, 'data': [g.to_dict() for g in groups]})
