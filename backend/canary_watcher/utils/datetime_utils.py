"""
Datetime helpers - everything in the pipeline is UTC
"""
from datetime import datetime, date, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes, convert aware ones"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_bounds(day: date):
    """[start, end) of a UTC calendar day"""
    start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def parse_date(value) -> date:
    """Accept a date, datetime or ISO string (YYYY-MM-DD)"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def elapsed_ms(start: datetime, end: Optional[datetime] = None) -> int:
    end = end or utcnow()
    return int((end - start).total_seconds() * 1000)
