"""Shared blueprint helpers.

current_user:    best-effort actor id from proxy headers (no auth enforcement)
parse_datetime:  ISO date / datetime → aware UTC datetime, ValueError on bad input
"""

from datetime import date, datetime, time, timezone

from flask import request


def current_user(default="system"):
    """Actor id forwarded by the gateway, or ``default``."""
    return (
        request.headers.get("X-User", "")
        or request.headers.get("X-Forwarded-User", "")
        or default
    )


def parse_datetime(value, *, end_of_day=False):
    """Parse an ISO date or datetime string to an aware UTC datetime.

    Returns None for empty input and raises ValueError for anything else
    that does not parse.  A bare date maps to midnight, or to the last
    instant of the day when ``end_of_day`` is set.  Naive datetimes are
    taken as UTC.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.max if end_of_day else time.min)
    else:
        text = str(value).strip()
        if len(text) == 10:
            day = date.fromisoformat(text)
            parsed = datetime.combine(day, time.max if end_of_day else time.min)
        else:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
