"""Exception hierarchy for calendar_resolver.

Parsing and expansion defects local to one record or one master are logged
and recovered from inside the engine. Only caller contract violations and
unexpected stage failures reach the caller, always as a subclass of
CalendarResolverError so a host can catch the whole family at once.
"""

from __future__ import annotations

from typing import Optional


class CalendarResolverError(Exception):
    """Base exception for all calendar_resolver errors."""


class CalendarContentError(CalendarResolverError):
    """Calendar object text cannot be read at all.

    Raised when:
    - bytes are not valid UTF-8
    - a str contains characters that cannot be encoded as UTF-8
    - the data is neither str nor bytes
    - the content-line reader rejects the text outright

    Individual malformed properties never raise this; they are skipped.
    """

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        if source:
            message = f"{message} (calendar object {source!r})"
        super().__init__(message)


class InvalidWindowError(CalendarResolverError, ValueError):
    """Resolution window is unusable (start after end, or not datetimes)."""


class ConfigurationError(CalendarResolverError):
    """A configuration value cannot be applied (e.g. unknown timezone name)."""


class RRuleExpansionError(CalendarResolverError):
    """Base exception for RRULE expansion errors."""


class RRuleParseError(RRuleExpansionError):
    """Error parsing RRULE string."""


class UnsupportedFrequencyError(RRuleParseError):
    """RRULE FREQ is missing or not one of DAILY, WEEKLY, MONTHLY, YEARLY."""

    def __init__(self, frequency: Optional[str]):
        self.frequency = frequency
        super().__init__(f"Unsupported RRULE frequency: {frequency!r}")


class ResolutionError(CalendarResolverError):
    """A resolution pipeline stage failed unexpectedly."""

    def __init__(self, stage_name: str, message: str):
        self.stage_name = stage_name
        super().__init__(f"Stage {stage_name} failed: {message}")
