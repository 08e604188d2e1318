from datetime import date, datetime, timezone, timedelta
from typing import Tuple, Union

Timestamp = Union[date, datetime]

WEEK = timedelta(days=7)


def utc_now() -> datetime:
    """Get current datetime in UTC."""
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """Convert a datetime to aware UTC. Naive values are assumed to be UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_utc_day(value: Timestamp) -> date:
    """Normalize a date or datetime to its UTC calendar day."""
    if isinstance(value, datetime):
        return to_utc(value).date()
    return value


def utc_midnight(day: date) -> datetime:
    """Aware UTC datetime at 00:00 of the given day."""
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def sunday_based_weekday(value: Timestamp) -> int:
    """Day of week in UTC with Sunday=0 ... Saturday=6."""
    return (to_utc_day(value).weekday() + 1) % 7


def start_of_week(value: Timestamp) -> date:
    """
    The Sunday that starts the UTC week containing `value`.

    Every entry-to-week assignment goes through this function.
    """
    day = to_utc_day(value)
    return day - timedelta(days=sunday_based_weekday(day))


def week_range(week_start: Timestamp) -> Tuple[date, date]:
    """Half-open [start, end) range of the week beginning at `week_start`."""
    start = to_utc_day(week_start)
    return start, start + WEEK


def week_end(week_start: Timestamp) -> date:
    """Last day (Saturday) of the week, inclusive."""
    return to_utc_day(week_start) + timedelta(days=6)


def parse_week_start(value: str) -> date:
    """Parse an ISO date and snap it to its week start."""
    return start_of_week(date.fromisoformat(value))
