from datetime import date, datetime

from backend.time_helpers import WEEKDAY_CODES, WEEKDAY_NAMES, to_utc_naive


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ["1", "true", "yes", "on"]


def parse_int(value, default=None):
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_day_value(raw):
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        return datetime.strptime(str(raw)[:10], "%Y-%m-%d").date()
    except (TypeError, ValueError):
        return None


def parse_iso_datetime(raw):
    """Parse an ISO-8601 instant into a naive UTC datetime; None on failure."""
    if not raw:
        return None
    if isinstance(raw, datetime):
        return to_utc_naive(raw)
    s = str(raw).strip()
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"
    try:
        return to_utc_naive(datetime.fromisoformat(s))
    except (TypeError, ValueError):
        return None


def parse_weekday(raw):
    if raw is None:
        return None
    value = str(raw).strip().lower()
    return value if value in WEEKDAY_NAMES else None


def parse_byweekday(raw):
    """Accept ["MO", "we"] or "MO,WE"; return the valid codes in Monday-first order."""
    if raw is None:
        return []
    values = raw if isinstance(raw, (list, tuple)) else str(raw).split(",")
    found = {str(v).strip().upper() for v in values}
    return [code for code in WEEKDAY_CODES if code in found]


def parse_status_filter(raw, allowed):
    """Comma-separated status filter; None means no filtering."""
    if not raw:
        return None
    values = [v.strip().lower() for v in str(raw).split(",") if v.strip()]
    if not values or "all" in values:
        return None
    return {v for v in values if v in allowed}
