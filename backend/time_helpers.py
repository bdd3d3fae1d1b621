"""Clock strings, weekday names and UTC/local conversion shared by the scheduling core."""

import re
from datetime import time

import pytz

HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

WEEKDAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
WEEKDAY_CODES = ["MO", "TU", "WE", "TH", "FR", "SA", "SU"]


def is_hhmm(value):
    return isinstance(value, str) and bool(HHMM_PATTERN.match(value))


def normalize_time_string(raw):
    """Pad loose clock strings ("930", "9:5") into "HH:MM"; return None when unusable."""
    if raw is None:
        return None
    s = str(raw).strip()
    if not s:
        return None
    if ":" not in s:
        if not s.isdigit() or len(s) > 4:
            return None
        s = s.zfill(4)
        s = f"{s[:2]}:{s[2:]}"
    hours, _, minutes = s.partition(":")
    if not hours.isdigit() or not (minutes or "0").isdigit():
        return None
    value = f"{hours.zfill(2)}:{(minutes or '00').zfill(2)}"
    return value if is_hhmm(value) else None


def hhmm_to_time(value):
    if not is_hhmm(value):
        return None
    hours, minutes = value.split(":")
    return time(hour=int(hours), minute=int(minutes))


def time_to_minutes(value):
    if isinstance(value, str):
        value = hhmm_to_time(value)
        if value is None:
            raise ValueError("Invalid HH:MM value")
    return (value.hour * 60) + value.minute


def resolve_timezone(name):
    try:
        return pytz.timezone(name or "UTC")
    except pytz.UnknownTimeZoneError:
        return None


def to_utc_naive(value):
    """Aware datetimes are converted to UTC; naive ones are assumed to be UTC already."""
    if value.tzinfo is not None:
        value = value.astimezone(pytz.UTC).replace(tzinfo=None)
    return value


def utc_to_local(value, tz):
    return pytz.UTC.localize(value).astimezone(tz).replace(tzinfo=None)


def local_to_utc(value, tz):
    # wall-clock times skipped by a DST jump resolve with the pre-transition offset
    return tz.normalize(tz.localize(value)).astimezone(pytz.UTC).replace(tzinfo=None)
