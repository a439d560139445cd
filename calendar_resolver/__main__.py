"""Command-line entry for calendar_resolver.

Reads one or more .ics files, resolves them for a window and prints the
occurrences as text or JSON.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timedelta, tzinfo
from pathlib import Path
from typing import NoReturn, Optional

from .config_manager import ConfigManager
from .datetime_utils import ONE_DAY, parse_window_bound, start_of_day
from .exceptions import CalendarResolverError
from .log_config import configure_logging, init_logging
from .models import Occurrence, RawCalendarObject
from .resolver import CalendarEngine

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_USAGE = 2


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for calendar_resolver CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="calendar-resolver",
        description="Resolve recurring iCalendar events into concrete occurrences",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  calendar-resolver work.ics                              # Occurrences this week
  calendar-resolver a.ics b.ics --start 2025-06-02 --end 2025-06-08
  calendar-resolver work.ics --timezone Europe/Berlin --json
        """,
    )

    parser.add_argument("files", nargs="+", type=Path, metavar="FILE", help="iCalendar file(s)")
    parser.add_argument(
        "--start",
        metavar="WHEN",
        help="Window start, ISO date or datetime (default: Monday of the current week)",
    )
    parser.add_argument(
        "--end",
        metavar="WHEN",
        help="Window end, ISO date or datetime; a bare date includes the whole day "
        "(default: end of Sunday of the current week)",
    )
    parser.add_argument(
        "--timezone",
        metavar="TZ",
        help="IANA timezone for floating times (default: CALENDAR_RESOLVER_TIMEZONE or system local)",
    )
    parser.add_argument("--json", action="store_true", help="Print occurrences as JSON")
    parser.add_argument(
        "--log-level",
        metavar="LEVEL",
        help="Log level (default: CALENDAR_RESOLVER_LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        metavar="PATH",
        help="Path to a .env file with CALENDAR_RESOLVER_* defaults (default: ./.env)",
    )

    return parser


def current_week(local_tz: tzinfo, now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """Monday 00:00 through the last microsecond of Sunday of the week containing now."""
    today = (now or datetime.now(local_tz)).astimezone(local_tz).date()
    monday = start_of_day(today - timedelta(days=today.weekday()), local_tz)
    return monday, monday + 7 * ONE_DAY - timedelta(microseconds=1)


def format_occurrence(occurrence: Occurrence, local_tz: tzinfo) -> str:
    """One text line per occurrence."""
    start = occurrence.start.astimezone(local_tz)
    if occurrence.all_day:
        when = f"{start:%Y-%m-%d} (all day)"
        if occurrence.end is not None and occurrence.end - occurrence.start > ONE_DAY:
            last_day = (occurrence.end - ONE_DAY).astimezone(local_tz)
            when = f"{start:%Y-%m-%d}..{last_day:%Y-%m-%d} (all day)"
    elif occurrence.end is not None:
        when = f"{start:%Y-%m-%d %H:%M}-{occurrence.end.astimezone(local_tz):%H:%M}"
    else:
        when = f"{start:%Y-%m-%d %H:%M}"
    return f"{when}  {occurrence.title}"


def _read_objects(paths: list[Path]) -> list[RawCalendarObject]:
    objects = []
    for path in paths:
        objects.append(RawCalendarObject(uid=str(path), data=path.read_bytes()))
    return objects


def main(argv: Optional[list[str]] = None) -> NoReturn:
    """Run the calendar_resolver CLI."""
    parser = _create_parser()
    args = parser.parse_args(argv)

    try:
        settings = ConfigManager(args.env_file).load_settings().with_overrides(timezone=args.timezone)
        configure_logging(debug_mode=settings.debug)
        init_logging(args.log_level or settings.log_level or ("DEBUG" if settings.debug else None))

        engine = CalendarEngine(settings)
        local_tz = engine.local_timezone

        default_start, default_end = current_week(local_tz)
        window_start = parse_window_bound(args.start, local_tz) if args.start else default_start
        window_end = (
            parse_window_bound(args.end, local_tz, end_of_day=True) if args.end else default_end
        )

        occurrences = engine.resolve_objects(_read_objects(args.files), window_start, window_end)
    except OSError as exc:
        print(f"Error: cannot read calendar file: {exc}", file=sys.stderr)
        sys.exit(EXIT_USAGE)
    except (CalendarResolverError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(EXIT_USAGE)

    if args.json:
        print(json.dumps([o.model_dump(mode="json") for o in occurrences], indent=2))
    else:
        for occurrence in occurrences:
            print(format_occurrence(occurrence, local_tz))

    sys.exit(EXIT_OK)


if __name__ == "__main__":
    main()
