import math
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite often returns naive datetimes; treat as UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_until(due: datetime, now: datetime) -> int:
    """Whole days left before ``due``, rounded up (0 once due has passed)."""
    remaining = as_utc(due) - as_utc(now)
    if remaining <= timedelta(0):
        return 0
    return int(math.ceil(remaining / timedelta(days=1)))


def days_overdue(due: datetime | None, now: datetime) -> int:
    if due is None:
        return 0
    late = as_utc(now) - as_utc(due)
    if late <= timedelta(0):
        return 0
    return late.days


def format_date(value: datetime | None) -> str:
    if value is None:
        return ""
    return as_utc(value).strftime("%d %B %Y")
