"""
Recurrence expansion for personal events and lectures.

Two definition forms are supported:

- the simple weekly form used by personal availability events
  (day of week plus "HH:MM" start/end), and
- the general rule form used by lectures (freq, interval, byweekday,
  dtstart, until or count), expanded with dateutil's rrule.

Both expanders are pure: the same definition and window always produce the
same ordered, finite list of occurrences.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Tuple

from dateutil.rrule import DAILY, MONTHLY, WEEKLY, YEARLY, FR, MO, SA, SU, TH, TU, WE, rrule

from backend.errors import ValidationError
from backend.time_helpers import (
    WEEKDAY_CODES,
    WEEKDAY_NAMES,
    hhmm_to_time,
    is_hhmm,
    local_to_utc,
    time_to_minutes,
    utc_to_local,
)

FREQUENCIES = {
    'DAILY': DAILY,
    'WEEKLY': WEEKLY,
    'MONTHLY': MONTHLY,
    'YEARLY': YEARLY,
}
RRULE_WEEKDAYS = dict(zip(WEEKDAY_CODES, (MO, TU, WE, TH, FR, SA, SU)))


@dataclass(frozen=True)
class Occurrence:
    """One concrete instance of a definition; start/end are naive datetimes."""

    day: date
    start: datetime
    end: datetime


@dataclass(frozen=True)
class WeeklySlot:
    day_of_week: str
    start: str
    end: str


@dataclass(frozen=True)
class RecurrenceRule:
    freq: str
    dtstart: datetime
    interval: int = 1
    byweekday: Tuple[str, ...] = field(default_factory=tuple)
    until: Optional[date] = None
    count: Optional[int] = None


def _as_day(value):
    return value.date() if isinstance(value, datetime) else value


def get_start_of_week(value):
    """
    Monday of the week containing `value`.

    Sunday belongs to the week that started six days earlier (Sunday is day 7,
    not day 0). Datetimes come back at 00:00, dates as dates.
    """
    offset = value.weekday()
    if isinstance(value, datetime):
        value = value.replace(hour=0, minute=0, second=0, microsecond=0)
    return value - timedelta(days=offset)


def week_days(week_start):
    start = _as_day(get_start_of_week(week_start))
    return [start + timedelta(days=i) for i in range(7)]


def window_bounds(window_start, window_end):
    """
    Normalize a window into half-open naive datetimes.

    Dates are inclusive calendar days; datetimes are used as given.
    """
    if isinstance(window_start, datetime):
        lower = window_start
    else:
        lower = datetime.combine(window_start, time.min)
    if isinstance(window_end, datetime):
        upper = window_end
    else:
        upper = datetime.combine(window_end + timedelta(days=1), time.min)
    return lower, upper


def validate_weekly_slot(day_of_week, start, end):
    if not day_of_week:
        raise ValidationError('Recurring events require a day of week')
    day_value = str(day_of_week).strip().lower()
    if day_value not in WEEKDAY_NAMES:
        raise ValidationError(f'Invalid day of week: {day_of_week}')
    if not start or not end:
        raise ValidationError('Recurring events require start/end times')
    if not is_hhmm(start) or not is_hhmm(end):
        raise ValidationError('Times must use the HH:MM format')
    if time_to_minutes(start) >= time_to_minutes(end):
        raise ValidationError('End time must be after start time')
    return WeeklySlot(day_of_week=day_value, start=start, end=end)


def validate_rule(freq, dtstart, interval=1, byweekday=None, until=None, count=None):
    freq_value = str(freq or '').strip().upper()
    if freq_value not in FREQUENCIES:
        raise ValidationError(f'Invalid recurrence frequency: {freq}')
    if not isinstance(dtstart, datetime):
        raise ValidationError('Recurrence rules require a start date')
    try:
        interval_value = int(interval if interval is not None else 1)
    except (TypeError, ValueError):
        raise ValidationError('Recurrence interval must be a whole number')
    if interval_value < 1:
        raise ValidationError('Recurrence interval must be at least 1')
    codes = tuple(str(c).strip().upper() for c in (byweekday or []))
    unknown = [c for c in codes if c not in RRULE_WEEKDAYS]
    if unknown:
        raise ValidationError(f'Invalid weekday codes: {", ".join(unknown)}')
    if freq_value == 'WEEKLY' and not codes:
        raise ValidationError('Weekly recurrence requires at least one weekday')
    if until is not None and count is not None:
        raise ValidationError('Use either an end date or an occurrence count, not both')
    if count is not None:
        try:
            count = int(count)
        except (TypeError, ValueError):
            raise ValidationError('Occurrence count must be a whole number')
        if count < 1:
            raise ValidationError('Occurrence count must be at least 1')
    if until is not None and _as_day(until) < dtstart.date():
        raise ValidationError('Recurrence end date is before its start')
    ordered = tuple(c for c in WEEKDAY_CODES if c in codes)
    return RecurrenceRule(
        freq=freq_value,
        dtstart=dtstart,
        interval=interval_value,
        byweekday=ordered,
        until=_as_day(until) if until is not None else None,
        count=count,
    )


def build_rrule(rule):
    kwargs = {
        'freq': FREQUENCIES[rule.freq],
        'interval': rule.interval,
        'dtstart': rule.dtstart,
    }
    if rule.byweekday:
        kwargs['byweekday'] = [RRULE_WEEKDAYS[c] for c in rule.byweekday]
    if rule.until is not None:
        # until is a calendar date and includes every occurrence on that date
        kwargs['until'] = datetime.combine(rule.until, time.max)
    if rule.count is not None:
        kwargs['count'] = rule.count
    return rrule(**kwargs)


def expand_weekly(slot, window_start, window_end) -> List[Occurrence]:
    """Instances of a weekly slot inside the window, one per matching weekday."""
    slot = validate_weekly_slot(slot.day_of_week, slot.start, slot.end)
    lower, upper = window_bounds(window_start, window_end)
    start_t = hhmm_to_time(slot.start)
    end_t = hhmm_to_time(slot.end)
    offset = WEEKDAY_NAMES.index(slot.day_of_week)

    occurrences = []
    current = _as_day(get_start_of_week(lower)) + timedelta(days=offset)
    while datetime.combine(current, time.min) < upper:
        start = datetime.combine(current, start_t)
        end = datetime.combine(current, end_t)
        if start < upper and end > lower:
            occurrences.append(Occurrence(day=current, start=start, end=end))
        current += timedelta(days=7)
    return occurrences


def expand_rule(rule, duration, window_start, window_end) -> List[Occurrence]:
    """Instances of a general rule whose [start, start + duration) meets the window."""
    rule = validate_rule(
        rule.freq,
        rule.dtstart,
        interval=rule.interval,
        byweekday=rule.byweekday,
        until=rule.until,
        count=rule.count,
    )
    if duration <= timedelta(0):
        raise ValidationError('End time must be after start time')
    lower, upper = window_bounds(window_start, window_end)
    if upper <= lower:
        return []

    occurrences = []
    for start in build_rrule(rule).between(lower - duration, upper, inc=True):
        end = start + duration
        if start < upper and end > lower:
            occurrences.append(Occurrence(day=start.date(), start=start, end=end))
    return occurrences


def expand_rule_utc(rule, duration, window_start, window_end, tz) -> List[Occurrence]:
    """
    Expand a rule whose dtstart and weekdays are wall-clock values in `tz`.

    The window and the returned start/end are naive UTC. Each occurrence keeps
    its local calendar day, so a weekly 10:00 stays at 10:00 across DST
    changes and exceptions are keyed by the day the attendee sees.
    """
    lower, upper = window_bounds(window_start, window_end)
    if upper <= lower:
        return []
    # a day of slack on both sides covers any UTC offset
    local_lower = utc_to_local(lower, tz) - timedelta(days=1)
    local_upper = utc_to_local(upper, tz) + timedelta(days=1)

    occurrences = []
    for occ in expand_rule(rule, duration, local_lower, local_upper):
        start = local_to_utc(occ.start, tz)
        end = start + duration
        if start < upper and end > lower:
            occurrences.append(Occurrence(day=occ.day, start=start, end=end))
    return occurrences


def next_rule_occurrence(rule, duration, after, tz, skip_days=()):
    """
    First occurrence still running or starting at/after `after` (naive UTC),
    ignoring local days in `skip_days`; None once the series is exhausted.
    """
    rule = validate_rule(
        rule.freq,
        rule.dtstart,
        interval=rule.interval,
        byweekday=rule.byweekday,
        until=rule.until,
        count=rule.count,
    )
    series = build_rrule(rule)
    local = series.after(utc_to_local(after, tz) - duration - timedelta(days=1), inc=True)
    while local is not None:
        start = local_to_utc(local, tz)
        if start + duration > after and local.date() not in skip_days:
            return Occurrence(day=local.date(), start=start, end=start + duration)
        local = series.after(local)
    return None


def overlaps(a_start, a_end, b_start, b_end):
    # half-open intervals: touching endpoints do not overlap
    return a_start < b_end and a_end > b_start
