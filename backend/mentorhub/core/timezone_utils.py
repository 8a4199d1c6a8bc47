"""
Timezone utilities for MentorHub.

Availability rules are written in the mentor's wall-clock time while every
persisted instant is UTC. These helpers convert between the two with pytz so
that DST gaps and folds resolve the same way everywhere.
"""

from datetime import date, datetime, time, timezone

import pytz


def get_timezone(tz_name: str) -> pytz.BaseTzInfo:
    return pytz.timezone(tz_name)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normalize a datetime to an aware UTC instant.

    Naive values are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def local_to_utc(day: date, wall_time: time, tz_name: str) -> datetime:
    """
    Convert a local calendar date and wall-clock time to a UTC instant.

    Args:
        day: Local calendar date
        wall_time: Local time of day
        tz_name: IANA timezone name

    Returns:
        Aware UTC datetime
    """
    tz = get_timezone(tz_name)
    local = tz.localize(datetime.combine(day, wall_time), is_dst=False)
    return local.astimezone(timezone.utc)


def utc_to_local_date(instant: datetime, tz_name: str) -> date:
    """Get the local calendar date of a UTC instant."""
    return ensure_utc(instant).astimezone(get_timezone(tz_name)).date()


def day_bounds_utc(day: date, tz_name: str) -> tuple[datetime, datetime]:
    """Return the [start, end) UTC instants of a local calendar date."""
    start = local_to_utc(day, time.min, tz_name)
    end = local_to_utc(date.fromordinal(day.toordinal() + 1), time.min, tz_name)
    return start, end
