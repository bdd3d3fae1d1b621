import pytest

from models import Lecture, RecurrenceException


@pytest.fixture
def staff(make_user, make_group):
    teacher = make_user('teacher', role='Teacher')
    g1 = make_group('G1', members=[teacher])
    g2 = make_group('G2', members=[teacher])
    return teacher, g1, g2


def _lecture(title, group, start, end, **extra):
    body = {'title': title, 'groupId': group.id, 'startTime': start, 'endTime': end}
    body.update(extra)
    return body


def test_overlapping_lecture_in_same_group_is_rejected(client, staff, headers_for):
    teacher, g1, g2 = staff
    headers = headers_for(teacher)

    resp = client.post('/api/lectures', headers=headers,
                       json=_lecture('A', g1, '2024-06-04T14:00:00Z', '2024-06-04T15:00:00Z'))
    assert resp.status_code == 201
    assert resp.get_json()['data']['group_name'] == 'G1'

    resp = client.post('/api/lectures', headers=headers,
                       json=_lecture('B', g1, '2024-06-04T14:30:00Z', '2024-06-04T15:30:00Z'))
    assert resp.status_code == 409
    body = resp.get_json()
    assert body['success'] is False
    assert '"A"' in body['message']
    assert Lecture.query.filter_by(title='B').count() == 0

    resp = client.post('/api/lectures', headers=headers,
                       json=_lecture('C', g2, '2024-06-04T14:30:00Z', '2024-06-04T15:30:00Z'))
    assert resp.status_code == 201


def test_back_to_back_lectures_are_allowed(client, staff, headers_for):
    teacher, g1, _ = staff
    headers = headers_for(teacher)
    client.post('/api/lectures', headers=headers,
                json=_lecture('A', g1, '2024-06-04T14:00:00Z', '2024-06-04T15:00:00Z'))
    resp = client.post('/api/lectures', headers=headers,
                       json=_lecture('B', g1, '2024-06-04T15:00:00Z', '2024-06-04T16:00:00Z'))
    assert resp.status_code == 201


def test_invalid_payloads(client, staff, headers_for):
    teacher, g1, _ = staff
    headers = headers_for(teacher)
    resp = client.post('/api/lectures', headers=headers,
                       json=_lecture('A', g1, '2024-06-04T15:00:00Z', '2024-06-04T14:00:00Z'))
    assert resp.status_code == 400
    resp = client.post('/api/lectures', headers=headers,
                       json=_lecture('A', g1, 'tuesday', '2024-06-04T14:00:00Z'))
    assert resp.status_code == 400
    resp = client.post('/api/lectures', headers=headers,
                       json=_lecture('A', g1, '2024-06-04T14:00:00Z', '2024-06-04T15:00:00Z', isRecurring=True,
                                     recurrenceRule={'freq': 'WEEKLY', 'byweekday': []}))
    assert resp.status_code == 400
    resp = client.post('/api/lectures', headers=headers,
                       json={'title': 'A', 'groupId': 999, 'startTime': '2024-06-04T14:00:00Z',
                             'endTime': '2024-06-04T15:00:00Z'})
    assert resp.status_code == 404


def test_only_staff_can_schedule(client, staff, make_user, headers_for):
    _, g1, _ = staff
    student = make_user('student', groups=[g1])
    body = _lecture('A', g1, '2024-06-04T14:00:00Z', '2024-06-04T15:00:00Z')
    assert client.post('/api/lectures', json=body).status_code == 401
    assert client.post('/api/lectures', headers=headers_for(student), json=body).status_code == 403
    bad_key = {'X-API-Key': 'wrong', 'X-User-Id': str(student.id)}
    assert client.post('/api/lectures', headers=bad_key, json=body).status_code == 401


def test_recurring_series_blocks_later_weeks_until_occurrence_removed(client, staff, headers_for):
    teacher, g1, _ = staff
    headers = headers_for(teacher)
    resp = client.post('/api/lectures', headers=headers, json=_lecture(
        'Series', g1, '2024-06-04T14:00:00Z', '2024-06-04T15:00:00Z',
        isRecurring=True, recurrenceRule={'freq': 'WEEKLY', 'byweekday': ['TU'], 'until': '2024-07-30'},
    ))
    assert resp.status_code == 201
    series = resp.get_json()['data']
    assert series['recurrence_rule']['byweekday'] == ['TU']

    single = _lecture('Guest', g1, '2024-06-18T14:00:00Z', '2024-06-18T15:00:00Z')
    assert client.post('/api/lectures', headers=headers, json=single).status_code == 409

    resp = client.delete(f"/api/lectures/{series['id']}", headers=headers, json={'dateString': '2024-06-18'})
    assert resp.status_code == 200
    assert resp.get_json()['data']['exception_date'] == '2024-06-18'
    assert client.post('/api/lectures', headers=headers, json=single).status_code == 201

    beyond = _lecture('Later', g1, '2024-08-06T14:00:00Z', '2024-08-06T15:00:00Z')
    assert client.post('/api/lectures', headers=headers, json=beyond).status_code == 201


def test_deleting_whole_series_clears_its_exceptions(client, staff, headers_for):
    teacher, g1, _ = staff
    headers = headers_for(teacher)
    series = client.post('/api/lectures', headers=headers, json=_lecture(
        'Series', g1, '2024-06-04T14:00:00Z', '2024-06-04T15:00:00Z',
        isRecurring=True, recurrenceRule={'freq': 'WEEKLY', 'byweekday': 'TU'},
    )).get_json()['data']
    client.delete(f"/api/lectures/{series['id']}", headers=headers, json={'dateString': '2024-06-11'})
    assert RecurrenceException.query.count() == 1

    resp = client.delete(f"/api/lectures/{series['id']}", headers=headers, json={'deleteAllRecurring': True})
    assert resp.status_code == 200
    assert Lecture.query.count() == 0
    assert RecurrenceException.query.count() == 0


def test_update_checks_conflicts_but_not_against_itself(client, staff, headers_for):
    teacher, g1, _ = staff
    headers = headers_for(teacher)
    a = client.post('/api/lectures', headers=headers,
                    json=_lecture('A', g1, '2024-06-04T14:00:00Z', '2024-06-04T15:00:00Z')).get_json()['data']
    client.post('/api/lectures', headers=headers,
                json=_lecture('B', g1, '2024-06-04T16:00:00Z', '2024-06-04T17:00:00Z'))

    resp = client.put(f"/api/lectures/{a['id']}", headers=headers,
                      json={'startTime': '2024-06-04T14:30:00Z', 'endTime': '2024-06-04T15:30:00Z'})
    assert resp.status_code == 200
    assert resp.get_json()['data']['start_time'] == '2024-06-04T14:30:00'

    resp = client.put(f"/api/lectures/{a['id']}", headers=headers,
                      json={'startTime': '2024-06-04T15:30:00Z', 'endTime': '2024-06-04T16:30:00Z'})
    assert resp.status_code == 409
    assert 'B' in resp.get_json()['message']


def test_cancelled_lecture_frees_its_slot(client, staff, headers_for):
    teacher, g1, _ = staff
    headers = headers_for(teacher)
    a = client.post('/api/lectures', headers=headers,
                    json=_lecture('A', g1, '2024-06-04T14:00:00Z', '2024-06-04T15:00:00Z')).get_json()['data']
    resp = client.put(f"/api/lectures/{a['id']}", headers=headers, json={'cancelled': True})
    assert resp.get_json()['data']['status'] == 'cancelled'

    resp = client.post('/api/lectures', headers=headers,
                       json=_lecture('Replacement', g1, '2024-06-04T14:00:00Z', '2024-06-04T15:00:00Z'))
    assert resp.status_code == 201


def test_only_the_instructor_or_an_admin_edits(client, staff, make_user, headers_for):
    teacher, g1, _ = staff
    other = make_user('other', role='Teacher')
    admin = make_user('admin', role='Admin')
    a = client.post('/api/lectures', headers=headers_for(teacher),
                    json=_lecture('A', g1, '2024-06-04T14:00:00Z', '2024-06-04T15:00:00Z')).get_json()['data']
    assert client.put(f"/api/lectures/{a['id']}", headers=headers_for(other),
                      json={'title': 'Hijacked'}).status_code == 403
    resp = client.put(f"/api/lectures/{a['id']}", headers=headers_for(admin), json={'title': 'Renamed'})
    assert resp.status_code == 200
    assert resp.get_json()['data']['title'] == 'Renamed'


def test_instructor_conflicts_are_opt_in(client, staff, headers_for):
    teacher, g1, g2 = staff
    headers = headers_for(teacher)
    client.post('/api/lectures', headers=headers,
                json=_lecture('A', g1, '2024-06-04T14:00:00Z', '2024-06-04T15:00:00Z'))
    resp = client.post('/api/lectures', headers=headers, json=_lecture(
        'B', g2, '2024-06-04T14:00:00Z', '2024-06-04T15:00:00Z', enforceInstructorConflicts=True,
    ))
    assert resp.status_code == 409
    assert 'Instructor already teaches' in resp.get_json()['message']


def test_group_lectures_visible_to_members_only(client, staff, make_user, headers_for):
    teacher, g1, g2 = staff
    member = make_user('member', groups=[g1])
    outsider = make_user('outsider', groups=[g2])
    client.post('/api/lectures', headers=headers_for(teacher),
                json=_lecture('A', g1, '2024-06-04T14:00:00Z', '2024-06-04T15:00:00Z'))

    resp = client.get(f'/api/lectures/group/{g1.id}', headers=headers_for(member))
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['count'] == 1
    assert body['data'][0]['status'] == 'completed'

    resp = client.get(f'/api/lectures/group/{g1.id}?start=2024-07-01T00:00:00Z&end=2024-07-08T00:00:00Z',
                      headers=headers_for(member))
    assert resp.get_json()['count'] == 0

    assert client.get(f'/api/lectures/group/{g1.id}', headers=headers_for(outsider)).status_code == 403


def test_occurrence_delete_uses_the_lecture_local_day(client, staff, make_user, headers_for):
    teacher, g1, _ = staff
    student = make_user('student', groups=[g1])
    # Tuesday 20:00 in New York is already Wednesday in UTC
    series = client.post('/api/lectures', headers=headers_for(teacher), json=_lecture(
        'Evening seminar', g1, '2024-06-05T00:00:00Z', '2024-06-05T01:00:00Z', timezone='America/New_York',
        isRecurring=True, recurrenceRule={'freq': 'WEEKLY', 'byweekday': ['TU']},
    )).get_json()['data']

    url = '/api/calendar-events/week?date=2024-06-11&tz=America/New_York'
    events = client.get(url, headers=headers_for(student)).get_json()['data']['events']
    assert [(e['date'], e['local_time'], e['occurrence_date']) for e in events] == [
        ('2024-06-11', 'Tue 20:00-21:00', '2024-06-11'),
    ]
    assert events[0]['start'] == '2024-06-12T00:00:00Z'

    resp = client.delete(f"/api/lectures/{series['id']}", headers=headers_for(teacher),
                         json={'dateString': events[0]['occurrence_date']})
    assert resp.status_code == 200
    assert client.get(url, headers=headers_for(student)).get_json()['data']['events'] == []

    next_week = '/api/calendar-events/week?date=2024-06-18&tz=America/New_York'
    assert len(client.get(next_week, headers=headers_for(student)).get_json()['data']['events']) == 1


def test_recurring_conflicts_follow_the_lecture_timezone(client, staff, headers_for):
    teacher, g1, _ = staff
    headers = headers_for(teacher)
    resp = client.post('/api/lectures', headers=headers, json=_lecture(
        'Morning', g1, '2024-03-04T15:00:00Z', '2024-03-04T16:00:00Z', timezone='America/New_York',
        isRecurring=True, recurrenceRule={'freq': 'WEEKLY', 'byweekday': ['MO'], 'until': '2024-03-31'},
    ))
    assert resp.status_code == 201

    # after the clocks change, 10:00 New York is 14:00 UTC
    clash = _lecture('Clash', g1, '2024-03-11T14:00:00Z', '2024-03-11T15:00:00Z')
    assert client.post('/api/lectures', headers=headers, json=clash).status_code == 409
    free = _lecture('Free', g1, '2024-03-11T15:00:00Z', '2024-03-11T16:00:00Z')
    assert client.post('/api/lectures', headers=headers, json=free).status_code == 201
