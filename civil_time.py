"""Civil time helpers.

Every time-of-day and every "today" in this service is evaluated in one fixed
named zone (settings.TIMEZONE), whatever the host timezone is. Instants leave
this module as timezone-aware UTC datetimes.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from config import settings


def civil_zone() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize to aware UTC. Naive values (as SQLite returns them) are assumed UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def civil_now(now: Optional[datetime] = None) -> datetime:
    return as_utc(now or utc_now()).astimezone(civil_zone())


def civil_today(now: Optional[datetime] = None) -> date:
    return civil_now(now).date()


def civil_weekday(now: Optional[datetime] = None) -> int:
    """Day of week in the 0 = Sunday ... 6 = Saturday convention used by routines."""
    return civil_now(now).isoweekday() % 7


def parse_time_of_day(value) -> time:
    """Parse "HH:MM" (seconds tolerated). Raises ValueError on anything else."""
    parts = str(value).strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time of day: {value!r}")
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except ValueError:
        raise ValueError(f"Invalid time of day: {value!r}") from None
    return time(hour, minute)


def civil_instant(day: date, time_of_day: time) -> datetime:
    """Wall-clock time on a civil day, as a UTC instant."""
    local = datetime.combine(day, time_of_day, tzinfo=civil_zone())
    return local.astimezone(timezone.utc)


def civil_day_bounds(day: date) -> Tuple[datetime, datetime]:
    """[start, end) of a civil day, in UTC."""
    start = civil_instant(day, time(0, 0))
    end = civil_instant(day + timedelta(days=1), time(0, 0))
    return start, end
