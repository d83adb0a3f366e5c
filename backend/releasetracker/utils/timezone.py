"""
Timezone and calendar-date utilities for the release tracker.
Release dates are calendar days (YYYY-MM-DD); "today" is always the UTC day
unless a caller passes an explicit clock.
"""
import calendar
from datetime import date, datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC datetime with timezone info.
    Replacement for deprecated datetime.utcnow().
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is UTC and timezone-aware.
    If timezone-naive, assumes it's already UTC and adds UTC timezone.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def today_utc(now: Optional[datetime] = None) -> date:
    """Calendar day in UTC for `now` (defaults to the current instant)."""
    return ensure_utc(now or utc_now()).date()


def parse_date(value) -> Optional[date]:
    """Parse a catalog date value into a date.

    Accepts `date`, `datetime` and strings such as "2025-10-05" or
    "2025-10-05T00:00:00.000Z" (only the date part is used). Anything else,
    including empty strings, yields None rather than raising.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text.split("T")[0][:10])
    except ValueError:
        return None


def format_date(value: Optional[date]) -> Optional[str]:
    """Format a date as YYYY-MM-DD (None passes through)."""
    if value is None:
        return None
    return value.isoformat()


def add_months(day: date, months: int) -> date:
    """Shift a date by whole months, clamping to the last day of the target month."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def days_ago(days: int, today: Optional[date] = None) -> date:
    return (today or today_utc()) - timedelta(days=days)


def format_iso_utc(dt: Optional[datetime]) -> str:
    """
    Format datetime as ISO string in UTC.
    Returns empty string if datetime is None.
    """
    if dt is None:
        return ""
    return ensure_utc(dt).isoformat()
