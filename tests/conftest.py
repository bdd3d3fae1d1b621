import os

os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
os.environ['BOOTSTRAP_JOBS_ON_IMPORT'] = '0'
os.environ['ENABLE_STATUS_SWEEPS'] = '0'
os.environ['API_SHARED_KEY'] = 'test-key'
os.environ['DEFAULT_TIMEZONE'] = 'UTC'

import pytest

from app import app as flask_app
from models import CalendarEvent, Group, Lecture, User, db


@pytest.fixture
def app():
    flask_app.config['TESTING'] = True
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def headers_for():
    def _headers(user):
        return {'X-API-Key': 'test-key', 'X-User-Id': str(user.id)}
    return _headers


@pytest.fixture
def make_group(app):
    def _make(name='Group', members=()):
        group = Group(name=name)
        group.members = list(members)
        db.session.add(group)
        db.session.commit()
        return group
    return _make


@pytest.fixture
def make_user(app):
    counter = {'n': 0}

    def _make(username=None, role='Student', groups=()):
        counter['n'] += 1
        user = User(username=username or f'user{counter["n"]}', role=role)
        user.groups = list(groups)
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def make_event(app):
    def _make(user, kind='busy', **fields):
        event = CalendarEvent(user_id=user.id, creator_id=user.id, kind=kind, **fields)
        db.session.add(event)
        db.session.commit()
        return event
    return _make


@pytest.fixture
def make_lecture(app):
    def _make(title, group, instructor, start, end, rule=None, status=None, timezone='UTC'):
        lecture = Lecture(
            title=title,
            group_id=group.id,
            instructor_id=instructor.id,
            start_time=start,
            end_time=end,
            timezone=timezone,
        )
        lecture.set_recurrence(rule)
        lecture.refresh_status()
        if status:
            lecture.status = status
        db.session.add(lecture)
        db.session.commit()
        return lecture
    return _make
