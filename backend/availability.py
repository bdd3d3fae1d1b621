"""
Group availability for one week and lecture-slot suggestions.

Each member contributes +1 to an hour their preferred events touch and -1 to
an hour their busy events touch. The per-hour sum is divided by the member
count and clamped to [0, 1].
"""

import logging
from datetime import datetime, time, timedelta

from backend import status_engine
from backend.conflicts import lecture_exception_days, lecture_occurrences
from backend.errors import ValidationError
from backend.exception_store import excepted_days
from backend.recurrence import expand_weekly, week_days
from backend.schedule import week_window
from backend.time_helpers import resolve_timezone, utc_to_local
from models import Lecture, SERIES_EVENT

logger = logging.getLogger(__name__)

HOURS = range(24)


def _empty_grid(days):
    return {day: {hour: [False, False] for hour in HOURS} for day in days}


def _mark(grid, start, end, index):
    cursor = start.replace(minute=0, second=0, microsecond=0)
    while cursor < end:
        hours = grid.get(cursor.date())
        if hours is not None:
            hours[cursor.hour][index] = True
        cursor += timedelta(hours=1)


def member_hour_grid(events, excepted, week_start, tz_name='UTC'):
    """
    {date: {hour: (preferred, busy)}} for one member's events over the week.

    `excepted` is the set of (event_id, day) markers to suppress.
    """
    tz = resolve_timezone(tz_name)
    if tz is None:
        raise ValidationError(f'Unknown timezone: {tz_name}')
    days = week_days(week_start)
    grid = _empty_grid(days)

    for ev in events:
        if ev.kind == 'preferred':
            index = 0
        elif ev.kind == 'busy':
            index = 1
        else:
            continue

        if ev.is_recurring:
            try:
                occurrences = expand_weekly(ev.weekly_slot(), days[0], days[-1])
            except ValidationError as exc:
                logger.warning(f"Skipping malformed recurring event {ev.id}: {exc.message}")
                continue
            for occ in occurrences:
                if (ev.id, occ.day) not in excepted:
                    _mark(grid, occ.start, occ.end, index)
        elif ev.start_time and ev.end_time and ev.end_time > ev.start_time:
            _mark(grid, utc_to_local(ev.start_time, tz), utc_to_local(ev.end_time, tz), index)
        else:
            logger.warning(f"Skipping malformed event {ev.id}: missing or inverted times")

    return {day: {hour: tuple(flags) for hour, flags in hours.items()} for day, hours in grid.items()}


def aggregate_availability(member_events_by_user, week_start, tz_name='UTC'):
    """
    {date_iso: {hour: fraction}} for a group.

    `member_events_by_user` maps every member id to that member's events;
    members without events still count towards the denominator.
    """
    days = week_days(week_start)
    member_count = len(member_events_by_user)
    recurring_ids = [
        ev.id for events in member_events_by_user.values() for ev in events if ev.is_recurring
    ]
    excepted = excepted_days(SERIES_EVENT, recurring_ids, days[0], days[-1])

    totals = {day: {hour: 0 for hour in HOURS} for day in days}
    for events in member_events_by_user.values():
        grid = member_hour_grid(events, excepted, days[0], tz_name)
        for day, hours in grid.items():
            for hour, (preferred, busy) in hours.items():
                totals[day][hour] += int(preferred) - int(busy)

    availability = {}
    for day in days:
        availability[day.isoformat()] = {
            hour: (min(max(totals[day][hour] / member_count, 0.0), 1.0) if member_count else 0.0)
            for hour in HOURS
        }
    return availability


def group_lecture_blocks(group_id, week_start, tz_name='UTC'):
    """Local (start, end) pairs of the group's lecture occurrences that week."""
    tz = resolve_timezone(tz_name)
    if tz is None:
        raise ValidationError(f'Unknown timezone: {tz_name}')
    lower, upper = week_window(week_start, tz_name)
    lectures = Lecture.query.filter(Lecture.group_id == group_id).all()
    recurring_ids = [lec.id for lec in lectures if lec.is_recurring]
    excepted = lecture_exception_days(recurring_ids, lower, upper)

    blocks = []
    for lecture in lectures:
        if lecture.status == status_engine.LECTURE_CANCELLED:
            continue
        for occ in lecture_occurrences(lecture, lower, upper, excepted):
            blocks.append((utc_to_local(occ.start, tz), utc_to_local(occ.end, tz)))
    return blocks


def suggest_lecture_slots(availability, duration_hours, blocked=(), limit=3,
                          day_start_hour=8, day_end_hour=22):
    """
    Best contiguous blocks of `duration_hours` inside one day, by summed
    availability. Blocks touching `blocked` (local datetime pairs) are
    skipped; ties go to the earliest start; suggestions never overlap.
    """
    if duration_hours < 1:
        raise ValidationError('Lecture duration must be at least one hour')
    if not (0 <= day_start_hour < day_end_hour <= 24):
        raise ValidationError('Invalid suggestion hours')

    candidates = []
    for day_iso in sorted(availability):
        day = datetime.strptime(day_iso, '%Y-%m-%d').date()
        hours = availability[day_iso]
        for start_hour in range(day_start_hour, day_end_hour - duration_hours + 1):
            block_start = datetime.combine(day, time(hour=start_hour))
            block_end = block_start + timedelta(hours=duration_hours)
            if any(b_start < block_end and b_end > block_start for b_start, b_end in blocked):
                continue
            score = sum(hours.get(h, 0.0) for h in range(start_hour, start_hour + duration_hours))
            candidates.append((round(score, 6), block_start, block_end))

    candidates.sort(key=lambda c: (-c[0], c[1]))
    suggestions = []
    for score, block_start, block_end in candidates:
        if any(s['_start'] < block_end and s['_end'] > block_start for s in suggestions):
            continue
        suggestions.append({
            '_start': block_start,
            '_end': block_end,
            'date': block_start.date().isoformat(),
            'start': block_start.strftime('%H:%M'),
            'end': block_end.strftime('%H:%M') if block_end.date() == block_start.date() else '24:00',
            'score': score,
            'average': round(score / duration_hours, 4),
        })
        if len(suggestions) >= limit:
            break
    for s in suggestions:
        del s['_start']
        del s['_end']
    return suggestions
