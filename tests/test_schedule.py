import logging
from datetime import date, datetime

import pytest

from backend.errors import ValidationError
from backend.recurrence import validate_rule
from backend.schedule import (
    LAYER_LECTURE,
    LAYER_PERSONAL,
    group_member_events,
    materialize_range,
    materialize_week,
    week_window,
)


@pytest.fixture
def student(make_user, make_group):
    group = make_group('Physics')
    return make_user('sam', groups=[group])


def test_week_merges_layers_in_start_order(student, make_event, make_lecture, make_user):
    teacher = make_user('t', role='Teacher')
    group = student.groups[0]
    make_event(student, kind='busy', title='Gym', is_recurring=True, day_of_week='monday',
               recurring_start_time='10:00', recurring_end_time='11:00')
    make_event(student, kind='preferred', start_time=datetime(2024, 6, 4, 9), end_time=datetime(2024, 6, 4, 10))
    make_lecture('Optics', group, teacher, datetime(2024, 6, 4, 14), datetime(2024, 6, 4, 15))

    entries = materialize_week(student, date(2024, 6, 5))
    assert [(e['layer'], e['type']) for e in entries] == [
        (LAYER_PERSONAL, 'busy'), (LAYER_PERSONAL, 'preferred'), (LAYER_LECTURE, 'lecture'),
    ]
    first = entries[0]
    assert first['start'] == '2024-06-03T10:00:00Z'
    assert first['local_time'] == 'Mon 10:00-11:00'
    assert first['title'] == 'Gym'
    assert entries[2]['group_name'] == 'Physics'


def test_personal_entry_comes_first_on_equal_start(student, make_event, make_lecture, make_user):
    teacher = make_user('t', role='Teacher')
    make_lecture('Optics', student.groups[0], teacher, datetime(2024, 6, 4, 14), datetime(2024, 6, 4, 15))
    make_event(student, kind='busy', start_time=datetime(2024, 6, 4, 14), end_time=datetime(2024, 6, 4, 15))
    entries = materialize_week(student, date(2024, 6, 3))
    assert [e['layer'] for e in entries] == [LAYER_PERSONAL, LAYER_LECTURE]


def test_week_is_aligned_to_the_viewer_timezone(student, make_event, make_lecture, make_user):
    teacher = make_user('t', role='Teacher')
    make_event(student, kind='preferred', is_recurring=True, day_of_week='monday',
               recurring_start_time='10:00', recurring_end_time='11:00')
    make_lecture('Late', student.groups[0], teacher, datetime(2024, 6, 3, 22), datetime(2024, 6, 3, 23))

    entries = materialize_week(student, date(2024, 6, 3), 'Asia/Tbilisi')
    slot, lecture = entries
    assert slot['start'] == '2024-06-03T06:00:00Z'
    assert slot['local_time'] == 'Mon 10:00-11:00'
    assert lecture['date'] == '2024-06-04'
    assert lecture['local_time'] == 'Tue 02:00-03:00'


def test_week_window_in_utc(app):
    assert week_window(date(2024, 6, 9), 'Asia/Tbilisi') == (
        datetime(2024, 6, 2, 20), datetime(2024, 6, 9, 20),
    )


def test_unknown_timezone_is_rejected(student):
    with pytest.raises(ValidationError):
        materialize_week(student, date(2024, 6, 3), 'Mars/Olympus')


def test_malformed_rows_are_skipped_with_warning(student, make_event, caplog):
    caplog.set_level(logging.WARNING)
    make_event(student, is_recurring=True, day_of_week='monday',
               recurring_start_time='25:00', recurring_end_time='26:00')
    make_event(student, start_time=datetime(2024, 6, 4, 12), end_time=datetime(2024, 6, 4, 11))
    good = make_event(student, start_time=datetime(2024, 6, 5, 12), end_time=datetime(2024, 6, 5, 13))

    entries = materialize_week(student, date(2024, 6, 3))
    assert [e['id'] for e in entries] == [good.id]
    assert 'Skipping malformed recurring event' in caplog.text
    assert 'Skipping malformed event' in caplog.text


def test_range_walks_weeks_without_duplicates(student, make_event):
    make_event(student, is_recurring=True, day_of_week='monday',
               recurring_start_time='10:00', recurring_end_time='11:00')
    entries = materialize_range(student, datetime(2024, 6, 3), datetime(2024, 6, 17))
    assert [e['date'] for e in entries] == ['2024-06-03', '2024-06-10']


def test_range_requires_positive_length(student):
    with pytest.raises(ValidationError):
        materialize_range(student, datetime(2024, 6, 3), datetime(2024, 6, 3))


def test_member_events_normalize_loose_times(student, make_event):
    make_event(student, is_recurring=True, day_of_week='friday',
               recurring_start_time='930', recurring_end_time='1030')
    events = group_member_events(student.groups[0])
    assert len(events) == 1
    assert events[0]['recurring_start_time'] == '09:30'
    assert events[0]['recurring_end_time'] == '10:30'
    assert events[0]['type'] == 'busy'


def test_recurring_lecture_keeps_its_local_time_across_daylight_saving(student, make_lecture, make_user):
    teacher = make_user('t', role='Teacher')
    # Monday 10:00 in New York; clocks move forward on 2024-03-10
    rule = validate_rule('WEEKLY', datetime(2024, 3, 4, 15), byweekday=['MO'])
    make_lecture('Seminar', student.groups[0], teacher, datetime(2024, 3, 4, 15), datetime(2024, 3, 4, 16),
                 rule=rule, timezone='America/New_York')

    before = materialize_week(student, date(2024, 3, 4), 'America/New_York')
    after = materialize_week(student, date(2024, 3, 11), 'America/New_York')
    assert [(e['local_time'], e['start']) for e in before] == [('Mon 10:00-11:00', '2024-03-04T15:00:00Z')]
    assert [(e['local_time'], e['start']) for e in after] == [('Mon 10:00-11:00', '2024-03-11T14:00:00Z')]
    assert after[0]['occurrence_date'] == '2024-03-11'


def test_lecture_weekdays_are_read_in_the_lecture_timezone(student, make_lecture, make_user):
    teacher = make_user('t', role='Teacher')
    # Tuesday 20:00 in New York is Wednesday 00:00 UTC
    rule = validate_rule('WEEKLY', datetime(2024, 6, 5, 0), byweekday=['TU'])
    make_lecture('Evening', student.groups[0], teacher, datetime(2024, 6, 5, 0), datetime(2024, 6, 5, 1),
                 rule=rule, timezone='America/New_York')

    entries = materialize_week(student, date(2024, 6, 10))
    assert [(e['date'], e['local_time'], e['occurrence_date']) for e in entries] == [
        ('2024-06-12', 'Wed 00:00-01:00', '2024-06-11'),
    ]
