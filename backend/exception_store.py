"""Per-occurrence deletion markers for recurring events and lectures."""

import logging

from models import RecurrenceException, SERIES_EVENT, SERIES_LECTURE, db

logger = logging.getLogger(__name__)

SERIES_KINDS = {SERIES_EVENT, SERIES_LECTURE}


def _check_kind(series_kind):
    if series_kind not in SERIES_KINDS:
        raise ValueError(f'Unknown series kind: {series_kind!r}')


def record_exception(series_kind, series_id, day, user_id=None):
    """
    Suppress one occurrence of a series. Idempotent: a second call for the same
    (series, day) returns the existing marker instead of adding another.

    The marker is added to the session; committing is left to the caller.
    """
    _check_kind(series_kind)
    existing = RecurrenceException.query.filter_by(
        series_kind=series_kind, series_id=series_id, day=day
    ).first()
    if existing:
        return existing

    marker = RecurrenceException(series_kind=series_kind, series_id=series_id, day=day, user_id=user_id)
    db.session.add(marker)
    # uq_recurrence_exception rejects a concurrent duplicate at flush time
    db.session.flush()
    logger.info(f"Recorded exception for {series_kind} {series_id} on {day}")
    return marker


def is_excepted(series_kind, series_id, day):
    _check_kind(series_kind)
    return db.session.query(
        RecurrenceException.query.filter_by(
            series_kind=series_kind, series_id=series_id, day=day
        ).exists()
    ).scalar()


def excepted_days(series_kind, series_ids, start_day, end_day):
    """Set of (series_id, day) markers for the given series inside [start_day, end_day]."""
    _check_kind(series_kind)
    ids = list(series_ids)
    if not ids:
        return set()
    rows = RecurrenceException.query.filter(
        RecurrenceException.series_kind == series_kind,
        RecurrenceException.series_id.in_(ids),
        RecurrenceException.day >= start_day,
        RecurrenceException.day <= end_day,
    ).all()
    return {(row.series_id, row.day) for row in rows}


def clear_exceptions(series_kind, series_id):
    """Drop every marker of a series; used when the whole series is deleted."""
    _check_kind(series_kind)
    return RecurrenceException.query.filter_by(series_kind=series_kind, series_id=series_id).delete()
