from datetime import date

import pytest

from backend.exception_store import clear_exceptions, excepted_days, is_excepted, record_exception
from backend.schedule import materialize_week
from models import RecurrenceException, SERIES_EVENT, SERIES_LECTURE, db


def test_record_is_idempotent(app):
    first = record_exception(SERIES_EVENT, 7, date(2024, 6, 3))
    db.session.commit()
    second = record_exception(SERIES_EVENT, 7, date(2024, 6, 3))
    db.session.commit()
    assert first.id == second.id
    assert RecurrenceException.query.count() == 1


def test_is_excepted_is_scoped_to_kind_and_day(app):
    record_exception(SERIES_LECTURE, 3, date(2024, 6, 4))
    db.session.commit()
    assert is_excepted(SERIES_LECTURE, 3, date(2024, 6, 4))
    assert not is_excepted(SERIES_LECTURE, 3, date(2024, 6, 11))
    assert not is_excepted(SERIES_EVENT, 3, date(2024, 6, 4))


def test_excepted_days_filters_by_window(app):
    for day in (date(2024, 6, 3), date(2024, 6, 10), date(2024, 6, 17)):
        record_exception(SERIES_EVENT, 1, day)
    record_exception(SERIES_EVENT, 2, date(2024, 6, 10))
    db.session.commit()
    assert excepted_days(SERIES_EVENT, [1], date(2024, 6, 4), date(2024, 6, 16)) == {(1, date(2024, 6, 10))}
    assert excepted_days(SERIES_EVENT, [1, 2], date(2024, 6, 10), date(2024, 6, 10)) == {
        (1, date(2024, 6, 10)), (2, date(2024, 6, 10)),
    }
    assert excepted_days(SERIES_EVENT, [], date(2024, 6, 1), date(2024, 6, 30)) == set()


def test_clear_removes_only_that_series(app):
    record_exception(SERIES_LECTURE, 1, date(2024, 6, 4))
    record_exception(SERIES_LECTURE, 1, date(2024, 6, 11))
    record_exception(SERIES_LECTURE, 2, date(2024, 6, 4))
    db.session.commit()
    assert clear_exceptions(SERIES_LECTURE, 1) == 2
    db.session.commit()
    assert [m.series_id for m in RecurrenceException.query.all()] == [2]


def test_unknown_series_kind_is_a_programming_error(app):
    with pytest.raises(ValueError):
        record_exception('meeting', 1, date(2024, 6, 4))


def test_marker_keeps_legacy_title(app):
    marker = record_exception(SERIES_EVENT, 42, date(2024, 6, 4))
    assert marker.title == 'DELETED: 42'
    assert marker.to_dict()['exception_date'] == '2024-06-04'


def test_excepted_occurrence_disappears_from_week_once(app, make_user, make_event):
    user = make_user()
    event = make_event(user, is_recurring=True, day_of_week='monday',
                       recurring_start_time='10:00', recurring_end_time='11:00')
    record_exception(SERIES_EVENT, event.id, date(2024, 6, 3))
    db.session.commit()
    assert materialize_week(user, date(2024, 6, 3)) == []

    following = materialize_week(user, date(2024, 6, 10))
    assert [e['date'] for e in following] == ['2024-06-10']
