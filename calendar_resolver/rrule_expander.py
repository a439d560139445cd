"""RRULE expansion logic for calendar_resolver."""

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from enum import Enum
from typing import Any, Callable, Optional

from dateutil import rrule as du_rrule
from dateutil import tz
from dateutil.rrule import FR, MO, SA, SU, TH, TU, WE, weekday

from .datetime_utils import ONE_DAY, calendar_day, epoch_millis, parse_ics_datetime, start_of_day
from .exceptions import RRuleExpansionError, RRuleParseError, UnsupportedFrequencyError
from .models import EventRecord, Occurrence

logger = logging.getLogger(__name__)

_WEEKDAYS: dict[str, weekday] = {
    "MO": MO,
    "TU": TU,
    "WE": WE,
    "TH": TH,
    "FR": FR,
    "SA": SA,
    "SU": SU,
}

_BYDAY_PATTERN = re.compile(r"^([+-]?\d{1,2})?(MO|TU|WE|TH|FR|SA|SU)$")


@dataclass
class RRuleExpanderConfig:
    """Configuration for RRULE expansion.

    Consolidates all RRULE-related settings with explicit defaults.
    """

    max_occurrences_per_rule: int = 1000
    enable_rrule_expansion: bool = True

    @classmethod
    def from_settings(cls, settings: Any) -> "RRuleExpanderConfig":
        """Extract RRULE configuration from settings object.

        Args:
            settings: Configuration object with RRULE settings (or None)

        Returns:
            RRuleExpanderConfig with values from settings or defaults
        """
        return cls(
            max_occurrences_per_rule=getattr(settings, "max_occurrences_per_rule", 1000),
            enable_rrule_expansion=getattr(settings, "enable_rrule_expansion", True),
        )


class Frequency(str, Enum):
    """Supported RRULE FREQ values."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


@dataclass(frozen=True)
class RecurrenceRule:
    """Structured form of an RRULE value."""

    frequency: Frequency
    interval: int = 1
    by_weekday: tuple[weekday, ...] = ()
    by_month_day: tuple[int, ...] = ()
    by_month: tuple[int, ...] = ()
    by_set_pos: tuple[int, ...] = ()
    count: Optional[int] = None
    until: Optional[datetime] = None
    week_start: Optional[weekday] = None

    @classmethod
    def parse(cls, rrule_string: str, local_tz: tzinfo) -> "RecurrenceRule":
        """Parse RRULE string into a RecurrenceRule.

        Args:
            rrule_string: RRULE value (e.g. "FREQ=WEEKLY;INTERVAL=1;BYDAY=MO"),
                optionally prefixed with "RRULE:"
            local_tz: Zone for floating and date-only UNTIL values

        Returns:
            Parsed rule

        Raises:
            UnsupportedFrequencyError: If FREQ is missing or not supported
            RRuleParseError: If a recognised part has an invalid value
        """
        if not rrule_string or not rrule_string.strip():
            raise RRuleParseError("Empty RRULE string")

        text = rrule_string.strip()
        if text.upper().startswith("RRULE:"):
            text = text[len("RRULE:"):]

        parts: dict[str, str] = {}
        for part in text.split(";"):
            if "=" not in part:
                if part.strip():
                    logger.debug("Ignoring RRULE part without value: %r", part)
                continue
            key, value = part.split("=", 1)
            parts[key.strip().upper()] = value.strip()

        raw_freq = parts.pop("FREQ", None)
        try:
            frequency = Frequency(raw_freq.upper()) if raw_freq else None
        except ValueError:
            frequency = None
        if frequency is None:
            raise UnsupportedFrequencyError(raw_freq)

        try:
            interval = int(parts.pop("INTERVAL", "1"))
            by_weekday = tuple(_parse_weekday(day) for day in _split(parts.pop("BYDAY", "")))
            by_month_day = tuple(int(day) for day in _split(parts.pop("BYMONTHDAY", "")))
            by_month = tuple(int(month) for month in _split(parts.pop("BYMONTH", "")))
            by_set_pos = tuple(int(pos) for pos in _split(parts.pop("BYSETPOS", "")))
            raw_count = parts.pop("COUNT", None)
            count = int(raw_count) if raw_count is not None else None
            raw_until = parts.pop("UNTIL", None)
            until = _parse_until(raw_until, local_tz) if raw_until else None
            raw_wkst = parts.pop("WKST", None)
            week_start = _WEEKDAYS[raw_wkst.upper()] if raw_wkst else None
        except (ValueError, KeyError) as e:
            raise RRuleParseError(f"Invalid RRULE format: {rrule_string}") from e

        if interval < 1:
            raise RRuleParseError(f"RRULE INTERVAL must be positive: {rrule_string}")
        if count is not None and count < 1:
            raise RRuleParseError(f"RRULE COUNT must be positive: {rrule_string}")
        if any(not 1 <= month <= 12 for month in by_month):
            raise RRuleParseError(f"RRULE BYMONTH out of range: {rrule_string}")
        if any(day == 0 or not -31 <= day <= 31 for day in by_month_day):
            raise RRuleParseError(f"RRULE BYMONTHDAY out of range: {rrule_string}")

        if count is not None and until is not None:
            logger.debug("RRULE has both COUNT and UNTIL; using COUNT: %s", rrule_string)
            until = None

        for unknown in parts:
            logger.debug("Ignoring unsupported RRULE part %s", unknown)

        return cls(
            frequency=frequency,
            interval=interval,
            by_weekday=by_weekday,
            by_month_day=by_month_day,
            by_month=by_month,
            by_set_pos=by_set_pos,
            count=count,
            until=until,
            week_start=week_start,
        )


def _split(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_weekday(value: str) -> weekday:
    match = _BYDAY_PATTERN.match(value.upper())
    if not match:
        raise ValueError(f"Invalid BYDAY value: {value!r}")
    ordinal, day = match.groups()
    if ordinal:
        n = int(ordinal)
        if n == 0 or not -53 <= n <= 53:
            raise ValueError(f"Invalid BYDAY ordinal: {value!r}")
        return _WEEKDAYS[day](n)
    return _WEEKDAYS[day]


def _parse_until(value: str, local_tz: tzinfo) -> datetime:
    parsed = parse_ics_datetime(value, local_tz)
    if parsed.is_date_only:
        # A date-only UNTIL includes the whole day
        return start_of_day(parsed.value.date(), local_tz) + ONE_DAY - timedelta(microseconds=1)
    return parsed.value


def _common_kwargs(rule: RecurrenceRule, start: datetime, until: Optional[datetime]) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"dtstart": start, "interval": rule.interval}
    if rule.count is not None:
        kwargs["count"] = rule.count
    elif until is not None:
        kwargs["until"] = until
    if rule.week_start is not None:
        kwargs["wkst"] = rule.week_start
    if rule.by_set_pos:
        kwargs["bysetpos"] = rule.by_set_pos
    if rule.by_month:
        kwargs["bymonth"] = rule.by_month
    return kwargs


def _build_daily(rule: RecurrenceRule, start: datetime, until: Optional[datetime]) -> du_rrule.rrule:
    kwargs = _common_kwargs(rule, start, until)
    if rule.by_weekday:
        kwargs["byweekday"] = rule.by_weekday
    if rule.by_month_day:
        kwargs["bymonthday"] = rule.by_month_day
    return du_rrule.rrule(du_rrule.DAILY, **kwargs)


def _build_weekly(rule: RecurrenceRule, start: datetime, until: Optional[datetime]) -> du_rrule.rrule:
    kwargs = _common_kwargs(rule, start, until)
    # Ordinals have no meaning inside a week
    kwargs["byweekday"] = tuple(day.weekday for day in rule.by_weekday) or (start.weekday(),)
    return du_rrule.rrule(du_rrule.WEEKLY, **kwargs)


def _build_monthly(rule: RecurrenceRule, start: datetime, until: Optional[datetime]) -> du_rrule.rrule:
    kwargs = _common_kwargs(rule, start, until)
    if rule.by_weekday:
        kwargs["byweekday"] = rule.by_weekday
    if rule.by_month_day:
        kwargs["bymonthday"] = rule.by_month_day
    return du_rrule.rrule(du_rrule.MONTHLY, **kwargs)


def _build_yearly(rule: RecurrenceRule, start: datetime, until: Optional[datetime]) -> du_rrule.rrule:
    kwargs = _common_kwargs(rule, start, until)
    if rule.by_weekday:
        kwargs["byweekday"] = rule.by_weekday
    if rule.by_month_day:
        kwargs["bymonthday"] = rule.by_month_day
    return du_rrule.rrule(du_rrule.YEARLY, **kwargs)


_FREQUENCY_BUILDERS: dict[
    Frequency, Callable[[RecurrenceRule, datetime, Optional[datetime]], du_rrule.rrule]
] = {
    Frequency.DAILY: _build_daily,
    Frequency.WEEKLY: _build_weekly,
    Frequency.MONTHLY: _build_monthly,
    Frequency.YEARLY: _build_yearly,
}


@dataclass(frozen=True)
class ExpansionResult:
    """Occurrence starts produced for one master within a window."""

    starts: tuple[datetime, ...]
    truncated: bool = False
    excluded: int = 0


class RRuleExpander:
    """Expands a master record's RRULE into concrete occurrence starts."""

    def __init__(self, settings: Any = None, local_timezone: Optional[tzinfo] = None):
        """Initialize expander with configuration settings.

        Args:
            settings: Configuration object with expansion settings (defaults if None)
            local_timezone: Zone for floating values and calendar-day matching
        """
        self.config = RRuleExpanderConfig.from_settings(settings)
        self.local_timezone = local_timezone or tz.tzlocal()

    def occurrence_bound(self, search_start: datetime, window_end: datetime) -> int:
        """Maximum number of candidates examined for one master.

        The smallest supported step is one day, so a window can hold at most
        one candidate per day it touches. One extra allows for a daylight
        saving day shorter than 24 hours.
        """
        span_days = math.floor((window_end - search_start) / ONE_DAY) if window_end > search_start else 0
        return min(span_days + 2, self.config.max_occurrences_per_rule)

    def expand(
        self, master: EventRecord, window_start: datetime, window_end: datetime
    ) -> ExpansionResult:
        """Expand a master record within [window_start, window_end].

        Args:
            master: Record carrying a recurrence rule
            window_start: Inclusive window start (timezone-aware)
            window_end: Inclusive window end (timezone-aware)

        Returns:
            ExpansionResult with ascending starts, excluded dates removed

        Raises:
            RRuleExpansionError: If the master has no rule or the rule cannot be expanded
        """
        if not master.recurrence_rule:
            raise RRuleExpansionError(f"Event {master.uid} has no recurrence rule")

        rule = RecurrenceRule.parse(master.recurrence_rule, self.local_timezone)

        # All-day spans that began before the window may still overlap it
        search_start = window_start
        if master.all_day:
            search_start = window_start - (master.duration or ONE_DAY)

        until = rule.until
        if rule.count is None:
            until = window_end if until is None else min(until, window_end)

        try:
            recurrence = _FREQUENCY_BUILDERS[rule.frequency](rule, master.start, until)
        except (ValueError, TypeError) as e:
            raise RRuleParseError(f"Cannot build RRULE {master.recurrence_rule!r}: {e}") from e

        excluded_days = {calendar_day(exdate, self.local_timezone) for exdate in master.excluded_dates}
        excluded_instants = set(master.excluded_dates)

        limit = self.occurrence_bound(search_start, window_end)
        starts: list[datetime] = []
        examined = 0
        excluded = 0
        truncated = False

        try:
            for candidate in recurrence.xafter(search_start, inc=True):
                if candidate > window_end:
                    break
                if examined >= limit:
                    truncated = True
                    break
                examined += 1

                if master.all_day:
                    is_excluded = calendar_day(candidate, self.local_timezone) in excluded_days
                else:
                    is_excluded = candidate in excluded_instants
                if is_excluded:
                    excluded += 1
                    continue
                starts.append(candidate)
        except (ValueError, TypeError, OverflowError) as e:
            raise RRuleExpansionError(f"RRULE expansion failed for {master.uid}: {e}") from e

        if truncated:
            logger.warning(
                "RRULE expansion for %r (%s) truncated after %d occurrences",
                master.title,
                master.uid,
                limit,
            )

        logger.debug(
            "Expanded %r (%s): %d occurrences, %d excluded",
            master.title,
            master.uid,
            len(starts),
            excluded,
        )
        return ExpansionResult(starts=tuple(starts), truncated=truncated, excluded=excluded)

    def generate_instances(self, master: EventRecord, starts: tuple[datetime, ...]) -> list[Occurrence]:
        """Generate Occurrence instances for each expanded start.

        Instances inherit title, all-day flag and duration from the master.
        """
        duration = master.duration
        instances = []
        for start in starts:
            instances.append(
                Occurrence(
                    id=f"{master.uid}_{epoch_millis(start)}",
                    title=master.title,
                    start=start,
                    end=start + duration if duration is not None else None,
                    all_day=master.all_day,
                    series_uid=master.uid,
                    is_expanded_instance=True,
                )
            )
        return instances
