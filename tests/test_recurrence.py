from datetime import date, datetime, timedelta

import pytest

from backend.errors import ValidationError
from backend.recurrence import (
    RecurrenceRule,
    WeeklySlot,
    expand_rule,
    expand_weekly,
    get_start_of_week,
    validate_rule,
    validate_weekly_slot,
    week_days,
)


def test_weekly_monday_slot_yields_single_instance_for_week():
    slot = WeeklySlot(day_of_week='monday', start='10:00', end='11:00')
    occurrences = expand_weekly(slot, date(2024, 6, 3), date(2024, 6, 9))
    assert len(occurrences) == 1
    occ = occurrences[0]
    assert occ.day == date(2024, 6, 3)
    assert occ.start == datetime(2024, 6, 3, 10, 0)
    assert occ.end == datetime(2024, 6, 3, 11, 0)


def test_weekly_sunday_slot_lands_at_end_of_week():
    slot = WeeklySlot(day_of_week='sunday', start='08:00', end='09:30')
    occurrences = expand_weekly(slot, date(2024, 6, 3), date(2024, 6, 9))
    assert [o.day for o in occurrences] == [date(2024, 6, 9)]


def test_weekly_expansion_over_several_weeks_is_ordered():
    slot = WeeklySlot(day_of_week='wednesday', start='12:00', end='13:00')
    occurrences = expand_weekly(slot, date(2024, 6, 1), date(2024, 6, 30))
    assert [o.day for o in occurrences] == [
        date(2024, 6, 5), date(2024, 6, 12), date(2024, 6, 19), date(2024, 6, 26),
    ]


def test_start_of_week_is_monday_midnight_and_contains_the_day():
    day = date(2024, 5, 27)
    for offset in range(21):
        current = day + timedelta(days=offset)
        monday = get_start_of_week(current)
        assert monday.weekday() == 0
        assert monday <= current <= monday + timedelta(days=6)

        moment = datetime.combine(current, datetime.min.time()).replace(hour=17, minute=45)
        start = get_start_of_week(moment)
        assert (start.weekday(), start.hour, start.minute) == (0, 0, 0)
        assert start <= moment < start + timedelta(days=7)


def test_sunday_belongs_to_previous_monday():
    assert get_start_of_week(date(2024, 6, 9)) == date(2024, 6, 3)
    assert week_days(date(2024, 6, 9))[0] == date(2024, 6, 3)
    assert week_days(date(2024, 6, 9))[-1] == date(2024, 6, 9)


def test_until_on_window_boundary_is_inclusive():
    rule = validate_rule('DAILY', datetime(2024, 6, 3, 9, 0), until=date(2024, 6, 9))
    occurrences = expand_rule(rule, timedelta(hours=1), date(2024, 6, 3), date(2024, 6, 9))
    assert len(occurrences) == 7
    assert occurrences[-1].day == date(2024, 6, 9)


def test_weekly_until_on_first_day_of_window_is_kept():
    rule = validate_rule('WEEKLY', datetime(2024, 6, 3, 9, 0), byweekday=['MO'], until=date(2024, 6, 10))
    occurrences = expand_rule(rule, timedelta(hours=1), date(2024, 6, 10), date(2024, 6, 16))
    assert [o.day for o in occurrences] == [date(2024, 6, 10)]


def test_interval_counts_periods_from_dtstart():
    rule = validate_rule('WEEKLY', datetime(2024, 6, 3, 10, 0), interval=2, byweekday=['MO'])
    occurrences = expand_rule(rule, timedelta(hours=1), date(2024, 6, 1), date(2024, 6, 30))
    assert [o.day for o in occurrences] == [date(2024, 6, 3), date(2024, 6, 17)]


def test_count_stops_expansion():
    rule = validate_rule('DAILY', datetime(2024, 6, 3, 10, 0), count=3)
    occurrences = expand_rule(rule, timedelta(minutes=45), date(2024, 6, 1), date(2024, 6, 30))
    assert [o.day for o in occurrences] == [date(2024, 6, 3), date(2024, 6, 4), date(2024, 6, 5)]


def test_occurrence_started_before_window_is_included():
    rule = validate_rule('DAILY', datetime(2024, 6, 1, 23, 0))
    occurrences = expand_rule(rule, timedelta(hours=2), date(2024, 6, 4), date(2024, 6, 4))
    assert [o.start for o in occurrences] == [datetime(2024, 6, 3, 23, 0), datetime(2024, 6, 4, 23, 0)]


def test_byweekday_is_normalized_to_monday_first_order():
    rule = validate_rule('weekly', datetime(2024, 6, 3, 10, 0), byweekday=['fr', 'MO'])
    assert rule.freq == 'WEEKLY'
    assert rule.byweekday == ('MO', 'FR')


@pytest.mark.parametrize('kwargs', [
    {'freq': 'WEEKLY', 'byweekday': []},
    {'freq': 'HOURLY'},
    {'freq': 'DAILY', 'interval': 0},
    {'freq': 'DAILY', 'until': date(2024, 7, 1), 'count': 3},
    {'freq': 'DAILY', 'count': 0},
    {'freq': 'DAILY', 'until': date(2024, 5, 1)},
    {'freq': 'WEEKLY', 'byweekday': ['XX']},
])
def test_invalid_rules_are_rejected(kwargs):
    freq = kwargs.pop('freq')
    with pytest.raises(ValidationError):
        validate_rule(freq, datetime(2024, 6, 3, 10, 0), **kwargs)


@pytest.mark.parametrize('day, start, end', [
    (None, '10:00', '11:00'),
    ('funday', '10:00', '11:00'),
    ('monday', '9:00', '11:00'),
    ('monday', '24:00', '25:00'),
    ('monday', '11:00', '11:00'),
    ('monday', '12:00', '11:00'),
    ('monday', None, '11:00'),
])
def test_invalid_weekly_slots_are_rejected(day, start, end):
    with pytest.raises(ValidationError):
        validate_weekly_slot(day, start, end)


def test_expander_fails_fast_on_unvalidated_input():
    with pytest.raises(ValidationError):
        expand_weekly(WeeklySlot(day_of_week='monday', start='11:00', end='10:00'), date(2024, 6, 3), date(2024, 6, 9))
    with pytest.raises(ValidationError):
        expand_rule(RecurrenceRule(freq='WEEKLY', dtstart=datetime(2024, 6, 3)), timedelta(hours=1),
                    date(2024, 6, 3), date(2024, 6, 9))


def test_expansion_is_restartable():
    rule = validate_rule('WEEKLY', datetime(2024, 6, 3, 10, 0), byweekday=['MO', 'TH'])
    first = expand_rule(rule, timedelta(hours=1), date(2024, 6, 1), date(2024, 6, 30))
    second = expand_rule(rule, timedelta(hours=1), date(2024, 6, 1), date(2024, 6, 30))
    assert first == second
    assert len(first) == 8
