"""Trading-session window check in UTC minutes-of-day."""

from datetime import datetime


def _minutes(value: str) -> int | None:
    hours, sep, minutes = value.partition(":")
    if not sep:
        return None
    try:
        h, m = int(hours), int(minutes)
    except ValueError:
        return None
    if not (0 <= h < 24 and 0 <= m < 60):
        return None
    return h * 60 + m


def is_within_session(start: str | None, end: str | None, now: datetime) -> bool:
    """Return True if now falls inside the [start, end] "HH:MM" UTC window.

    A window whose start is after its end wraps past midnight (e.g. 22:00-06:00).
    Missing or unparseable bounds mean no session restriction.
    """
    if not start or not end:
        return True
    start_minutes = _minutes(start)
    end_minutes = _minutes(end)
    if start_minutes is None or end_minutes is None:
        return True

    now_minutes = now.hour * 60 + now.minute
    if start_minutes <= end_minutes:
        return start_minutes <= now_minutes <= end_minutes
    return now_minutes >= start_minutes or now_minutes <= end_minutes
