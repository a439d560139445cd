"""calendar_resolver - recurring-event resolution for CalDAV calendar objects.

Turns raw iCalendar VEVENT text into a flat, deduplicated, time-ordered list
of concrete occurrences inside a caller-supplied window.
"""

__version__ = "0.1.0"

from .config_manager import ConfigManager, EngineSettings
from .exceptions import (
    CalendarContentError,
    CalendarResolverError,
    ConfigurationError,
    InvalidWindowError,
    ResolutionError,
    RRuleExpansionError,
    RRuleParseError,
    UnsupportedFrequencyError,
)
from .ics_block_parser import IcsBlockParser
from .log_config import configure_logging, init_logging
from .models import EventRecord, EventStatus, IcsParseResult, Occurrence, RawCalendarObject
from .resolver import (
    CalendarEngine,
    OccurrenceResolver,
    ResolutionReport,
    resolve,
    resolve_calendar_objects,
)

__all__ = [
    "CalendarContentError",
    "CalendarEngine",
    "CalendarResolverError",
    "ConfigManager",
    "ConfigurationError",
    "EngineSettings",
    "EventRecord",
    "EventStatus",
    "IcsBlockParser",
    "IcsParseResult",
    "InvalidWindowError",
    "Occurrence",
    "OccurrenceResolver",
    "RRuleExpansionError",
    "RRuleParseError",
    "RawCalendarObject",
    "ResolutionError",
    "ResolutionReport",
    "UnsupportedFrequencyError",
    "configure_logging",
    "init_logging",
    "resolve",
    "resolve_calendar_objects",
]
