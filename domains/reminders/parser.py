"""Parse reminder times and resolve them into absolute fire instants."""

import re
from datetime import datetime, time, timedelta, tzinfo
from typing import Optional, Union

from .models import RelativeDate, TimeOfDay

_TIME_RE = re.compile(r'^(\d{1,2})[:.](\d{2})\s*([ap]m)?$', re.IGNORECASE)


class TimeParseError(ValueError):
    """Raised when a time-of-day string cannot be normalized."""


def parse_time_of_day(value: Union[str, TimeOfDay]) -> TimeOfDay:
    """Parse a time string to a 24-hour TimeOfDay.

    Examples:
    - "21:00" -> 21:00
    - "9:30 PM" -> 21:30
    - "12:15 am" -> 00:15
    - "8.45am" -> 08:45

    Args:
        value: Time string, or an already normalized TimeOfDay

    Returns:
        Normalized TimeOfDay

    Raises:
        TimeParseError: If the string is not a valid time
    """
    if isinstance(value, TimeOfDay):
        _validate(value.hour, value.minute, value)
        return value

    match = _TIME_RE.match(str(value).strip())
    if not match:
        raise TimeParseError(f"Unrecognised time: {value!r}")

    hour = int(match.group(1))
    minute = int(match.group(2))
    period = (match.group(3) or "").lower()

    if period:
        # 12-hour clock only allows 1-12
        if hour < 1 or hour > 12:
            raise TimeParseError(f"Hour out of range for 12-hour time: {value!r}")
        if period == "pm" and hour < 12:
            hour += 12
        elif period == "am" and hour == 12:
            hour = 0

    _validate(hour, minute, value)
    return TimeOfDay(hour, minute)


def _validate(hour: int, minute: int, original) -> None:
    if hour < 0 or hour > 23 or minute < 0 or minute > 59:
        raise TimeParseError(f"Time out of range: {original!r}")


def resolve_fire_at(
    time_of_day: TimeOfDay,
    relative_date: RelativeDate,
    now: datetime,
    tz: Optional[tzinfo] = None
) -> datetime:
    """Combine a time of day and relative date into an absolute datetime.

    The date is resolved against `now` in the reminder's timezone, so
    "Tomorrow" means the calendar day after today's wall-clock date.

    Args:
        time_of_day: Normalized 24-hour time
        relative_date: Today, Tomorrow or Next Week
        now: Current time (timezone aware)
        tz: Wall-clock timezone (defaults to now's timezone)

    Returns:
        Timezone-aware fire instant (may be in the past)
    """
    tz = tz or now.tzinfo
    local_now = now.astimezone(tz)
    target_date = local_now.date() + timedelta(days=relative_date.days_ahead)
    return datetime.combine(target_date, time(time_of_day.hour, time_of_day.minute), tzinfo=tz)
