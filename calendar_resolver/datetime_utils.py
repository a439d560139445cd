"""DateTime parsing utilities for iCalendar property values - calendar_resolver.

Only the UTC/local distinction is made: a trailing ``Z`` means UTC, anything
else is floating time placed in the engine's local timezone. TZID parameters
are not looked up.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as dateutil_parser
from dateutil import tz

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ICS_DATE_FORMAT = "%Y%m%d"
ICS_DATETIME_FORMAT = "%Y%m%dT%H%M%S"
ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class IcsDateValue:
    """A parsed DTSTART/DTEND/EXDATE/RECURRENCE-ID value."""

    value: datetime
    is_date_only: bool


def get_timezone(name: Optional[str]) -> tzinfo:
    """Resolve a timezone name to a tzinfo.

    Args:
        name: IANA timezone name, "UTC", or None/empty for the system local zone

    Returns:
        tzinfo instance

    Raises:
        ConfigurationError: If the name is not a known timezone
    """
    if not name or not name.strip():
        return tz.tzlocal()
    name = name.strip()
    if name.upper() in ("UTC", "Z"):
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"Unknown timezone: {name!r}") from e


def ensure_timezone_aware(dt: datetime, default_tz: tzinfo) -> datetime:
    """Attach default_tz to a naive datetime; aware datetimes pass through."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=default_tz)
    return dt


def parse_ics_datetime(
    value: str, local_tz: tzinfo, date_only: bool = False
) -> IcsDateValue:
    """Parse an iCalendar DATE or DATE-TIME value.

    Handles:
    - DATE: 20250623 (local midnight, date-only)
    - UTC DATE-TIME: 20250623T083000Z
    - floating DATE-TIME: 20250623T083000 (local time)

    Args:
        value: Raw property value
        local_tz: Timezone used for date-only and floating values
        date_only: True when the property carried VALUE=DATE

    Returns:
        IcsDateValue with a timezone-aware datetime

    Raises:
        ValueError: If the value matches neither format
    """
    raw = value.strip()
    if date_only or (len(raw) == 8 and raw.isdigit()):
        day = datetime.strptime(raw[:8], ICS_DATE_FORMAT)
        return IcsDateValue(day.replace(tzinfo=local_tz), True)

    is_utc = raw.upper().endswith("Z")
    naive = datetime.strptime(raw.rstrip("Zz"), ICS_DATETIME_FORMAT)
    return IcsDateValue(naive.replace(tzinfo=timezone.utc if is_utc else local_tz), False)


def start_of_day(day: date, local_tz: tzinfo) -> datetime:
    """Local midnight of the given calendar day."""
    return datetime.combine(day, time.min).replace(tzinfo=local_tz)


def calendar_day(dt: datetime, local_tz: tzinfo) -> date:
    """Calendar day of an instant as seen in the local timezone."""
    return ensure_timezone_aware(dt, local_tz).astimezone(local_tz).date()


def epoch_millis(dt: datetime) -> int:
    """Milliseconds since the Unix epoch, used in occurrence ids."""
    return round(dt.timestamp() * 1000)


def parse_window_bound(value: str, local_tz: tzinfo, end_of_day: bool = False) -> datetime:
    """Parse a user-supplied window bound (CLI input).

    Accepts ISO dates ("2025-06-02") and ISO datetimes with or without offset.
    A bare date resolves to local midnight, or to the last microsecond of that
    day when end_of_day is set.
    """
    raw = value.strip()
    parsed = dateutil_parser.isoparse(raw)
    if len(raw) <= 10 and "T" not in raw:
        day_start = start_of_day(parsed.date(), local_tz)
        if end_of_day:
            return day_start + ONE_DAY - timedelta(microseconds=1)
        return day_start
    return ensure_timezone_aware(parsed, local_tz)


def within_window(
    start: datetime,
    end: Optional[datetime],
    all_day: bool,
    window_start: datetime,
    window_end: datetime,
) -> bool:
    """Whether an occurrence belongs to the resolution window.

    Timed occurrences must start inside the window. All-day occurrences are
    kept when their span (one day if no end) overlaps it.
    """
    if not all_day:
        return window_start <= start <= window_end
    span_end = end if end is not None and end > start else start + ONE_DAY
    return start <= window_end and span_end > window_start
