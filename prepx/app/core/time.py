"""Time utilities for timezone-aware UTC datetimes and calendar days."""

from datetime import UTC, date, datetime, time, timedelta


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime for defaults and onupdate hooks."""
    return datetime.now(UTC)


def utc_today() -> date:
    return utc_now().date()


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Return the [start, end) UTC datetimes covering a calendar day."""
    start = datetime.combine(day, time.min, tzinfo=UTC)
    return start, start + timedelta(days=1)
