"""Datetime conversion utilities."""

from datetime import UTC, datetime, timedelta

DISTANT_PAST = datetime(1, 1, 1, tzinfo=UTC)
DISTANT_FUTURE = datetime(9999, 12, 31, 23, 59, 59, 999999, tzinfo=UTC)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def datetime_to_unix(value: datetime) -> float:
    """Convert a datetime to a Unix timestamp (naive values are UTC)."""
    return ensure_utc(value).timestamp()


def unix_to_datetime(ts: int | float | None) -> datetime:
    """Convert a Unix timestamp to an aware UTC datetime (epoch for None)."""
    return datetime.fromtimestamp(ts or 0, tz=UTC)


def parse_iso_date(value: str) -> datetime | None:
    """Parse ``YYYY-MM-DD`` into UTC midnight, or None if it is not a real date."""
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return None
    return parsed.replace(tzinfo=UTC)


def start_of_day(value: datetime) -> datetime:
    return ensure_utc(value).replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_week(value: datetime) -> datetime:
    """Monday 00:00 of the ISO week containing *value*."""
    day = start_of_day(value)
    return day - timedelta(days=day.weekday())


def start_of_month(value: datetime) -> datetime:
    return start_of_day(value).replace(day=1)


def start_of_year(value: datetime) -> datetime:
    return start_of_day(value).replace(month=1, day=1)


def months_between(earlier: datetime, later: datetime) -> int:
    """Number of whole calendar months from *earlier* to *later*.

    Returns 0 when *earlier* is not before *later*.
    """
    earlier = ensure_utc(earlier)
    later = ensure_utc(later)
    if earlier >= later:
        return 0

    months = (later.year - earlier.year) * 12 + (later.month - earlier.month)
    # Not a whole month yet if the day/time of month has not been reached
    if (later.day, later.time()) < (earlier.day, earlier.time()):
        months -= 1
    return max(months, 0)


def days_between(earlier: datetime, later: datetime) -> int:
    """Whole days from *earlier* to *later*, never negative."""
    delta = ensure_utc(later) - ensure_utc(earlier)
    return max(delta.days, 0)
