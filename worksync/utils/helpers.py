"""Shared utility functions for timestamps and display labels.

parse_datetime:   every wire timestamp → aware UTC datetime (None on bad input)
to_iso:           aware datetime → ISO string for the wire
format_time_left: "in 5 hours" / "tomorrow" / "in 3 days"
time_ago:         "Just now" / "12 minutes ago" / ...
format_badge:     9+ / 99+ capped badge labels
"""

import logging
from datetime import date, datetime, time, timezone

logger = logging.getLogger(__name__)


def utcnow():
    return datetime.now(timezone.utc)


def parse_datetime(value):
    """Parse a wire timestamp to an aware UTC datetime.

    Returns None for empty/invalid input. Supports:
    - datetime objects (naive values are taken as UTC)
    - date objects and YYYY-MM-DD strings (midnight UTC)
    - ISO-8601 datetime strings, with or without offset, "Z" suffix allowed
    - {"seconds": ...} mappings written by older clients
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, dict) and "seconds" in value:
        try:
            return datetime.fromtimestamp(float(value["seconds"]), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError):
            return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        if len(text) == 10:
            return datetime.combine(date.fromisoformat(text), time.min, tzinfo=timezone.utc)
        parsed = datetime.fromisoformat(text)
    except (ValueError, TypeError):
        logger.debug("Unparseable timestamp %r", value)
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def to_iso(value):
    """Serialise a datetime for the wire; passes None through."""
    if value is None:
        return None
    return parse_datetime(value).isoformat()


def format_time_left(due, now):
    """Relative label for a future due date."""
    hours = int((due - now).total_seconds() // 3600)
    days = hours // 24
    if hours < 1:
        return "in less than an hour"
    if hours < 24:
        return f"in {hours} hour{'s' if hours > 1 else ''}"
    if days == 1:
        return "tomorrow"
    return f"in {days} days"


def time_ago(moment, now):
    """Relative label for a past timestamp."""
    if moment is None:
        return ""
    seconds = int((now - moment).total_seconds())
    if seconds < 60:
        return "Just now"
    if seconds < 3600:
        return f"{seconds // 60} minutes ago"
    if seconds < 86400:
        return f"{seconds // 3600} hours ago"
    return f"{seconds // 86400} days ago"


def format_badge(count, cap=99):
    """Badge label: empty when zero, ``"{cap}+"`` above the cap."""
    if count <= 0:
        return ""
    if count > cap:
        return f"{cap}+"
    return str(count)
