# backend/logic/clock.py
from datetime import datetime, timezone


def utcnow():
    return datetime.now(timezone.utc)


def get_clock():
    """FastAPI dependency returning the current-time callable."""
    return utcnow


def as_utc(value):
    # SQLite hands back naive datetimes; everything we store is UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
