from flask import current_app, request, session

from backend.errors import AuthorizationError
from models import User, db


def get_current_user():
    """Resolve the current user from a shared API key + user id header, else fall back to session."""
    # Header-based auth for service callers
    api_key = request.headers.get('X-API-Key')
    api_user_id = request.headers.get('X-User-Id')
    shared_key = current_app.config.get('API_SHARED_KEY')
    if shared_key and api_key and api_user_id:
        try:
            api_uid_int = int(api_user_id)
        except (TypeError, ValueError):
            api_uid_int = None
        if api_uid_int and api_key == shared_key:
            user = db.session.get(User, api_uid_int)
            if user:
                return user

    # Session-based auth for browser users
    user_id = session.get('user_id')
    if user_id:
        return db.session.get(User, user_id)
    return None


def require_user():
    user = get_current_user()
    if not user:
        raise AuthorizationError('No user selected', status_code=401)
    return user


def require_role(*roles):
    user = require_user()
    if user.role not in roles:
        raise AuthorizationError(f'User role {user.role} is not authorized to access this route')
    return user


def resolve_admin_id():
    """Id of the administrator added to new groups: ADMIN_USERNAME, else the first Admin."""
    username = current_app.config.get('ADMIN_USERNAME')
    query = User.query.filter_by(role='Admin')
    if username:
        query = query.filter_by(username=username)
    admin = query.order_by(User.id.asc()).first()
    return admin.id if admin else None
