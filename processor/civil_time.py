"""Conversion of feed-local timestamps to UTC.

Feeds express reservation times as Brussels wall-clock time without an offset
(TZID "Romance Standard Time"). Daylight saving is approximated as running
from the last Sunday of March up to the last Sunday of October, compared by
calendar day only. This is not a time zone database lookup.
"""
import calendar
import re
from datetime import datetime, timedelta, timezone

CIVIL_TIMESTAMP_RE = re.compile(r"(\d{4})(\d{2})(\d{2})T(\d{2})(\d{2})(\d{2})")

STANDARD_OFFSET_HOURS = 1
DST_OFFSET_HOURS = 2

MARCH = 3
OCTOBER = 10


class CivilTimeFormatError(ValueError):
    """Raised when a timestamp is not in YYYYMMDDThhmmss form."""


def last_sunday(year: int, month: int) -> int:
    """Return the day of month of the last Sunday in the given month."""
    last_day = calendar.monthrange(year, month)[1]
    # Sunday-based weekday: 0 = Sunday
    weekday = (datetime(year, month, last_day).weekday() + 1) % 7
    return last_day - weekday


def is_dst(local: datetime) -> bool:
    """Check whether a local wall-clock time falls in daylight saving time."""
    if local.month < MARCH or local.month > OCTOBER:
        return False
    if MARCH < local.month < OCTOBER:
        return True

    boundary = last_sunday(local.year, local.month)
    if local.month == MARCH:
        return local.day >= boundary
    return local.day < boundary


def utc_offset(local: datetime) -> timedelta:
    """Return the offset from UTC in effect at a local wall-clock time."""
    hours = DST_OFFSET_HOURS if is_dst(local) else STANDARD_OFFSET_HOURS
    return timedelta(hours=hours)


def parse_civil_timestamp(value: str) -> datetime:
    """
    Convert a local civil timestamp to an aware UTC datetime.

    Args:
        value: Timestamp such as "20251206T140000"

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        CivilTimeFormatError: If the value does not match the exact digit
            pattern or names an impossible date
    """
    match = CIVIL_TIMESTAMP_RE.fullmatch(value)
    if not match:
        raise CivilTimeFormatError(f"Invalid datetime: {value}")

    try:
        local = datetime(*(int(part) for part in match.groups()))
    except ValueError as e:
        raise CivilTimeFormatError(f"Invalid datetime: {value}") from e

    return (local - utc_offset(local)).replace(tzinfo=timezone.utc)
