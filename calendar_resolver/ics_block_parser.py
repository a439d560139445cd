"""VEVENT block parsing for calendar object text - calendar_resolver.

The text is unfolded and split into content lines by the icalendar library,
then scanned line by line. Only VEVENT blocks are considered; everything
outside them (VCALENDAR headers, VTIMEZONE definitions) is ignored, as are
components nested inside a VEVENT such as VALARM.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta, tzinfo
from typing import Any, Optional, Union

from dateutil import tz
from icalendar import vDuration
from icalendar.parser import Contentline, Contentlines
from pydantic import ValidationError

from .datetime_utils import IcsDateValue, parse_ics_datetime
from .exceptions import CalendarContentError
from .models import EventRecord, EventStatus, IcsParseResult

logger = logging.getLogger(__name__)

VEVENT = "VEVENT"


@dataclass
class _BlockState:
    """Properties collected for the VEVENT block currently being scanned."""

    title: Optional[str] = None
    start: Optional[IcsDateValue] = None
    end: Optional[IcsDateValue] = None
    duration: Optional[timedelta] = None
    uid: Optional[str] = None
    sequence: Optional[int] = None
    status: Optional[EventStatus] = None
    recurrence_id: Optional[IcsDateValue] = None
    rrule: Optional[str] = None
    exdates: list[IcsDateValue] = field(default_factory=list)
    nested_depth: int = 0


class IcsBlockParser:
    """Extract EventRecords from one calendar object's iCalendar text."""

    def __init__(self, local_timezone: Optional[tzinfo] = None):
        """Initialize parser.

        Args:
            local_timezone: Zone for date-only and floating values (system local if None)
        """
        self.local_timezone = local_timezone or tz.tzlocal()

    def parse(self, raw_text: Union[str, bytes], source: Optional[str] = None) -> list[EventRecord]:
        """Parse calendar object text into event records.

        Args:
            raw_text: iCalendar text containing zero or more VEVENT blocks
            source: Calendar object uid, used in diagnostics

        Returns:
            Records for every usable, non-cancelled block, in text order

        Raises:
            CalendarContentError: If the text is not UTF-8 or cannot be split into lines
        """
        return self.parse_with_report(raw_text, source).records

    def parse_with_report(
        self, raw_text: Union[str, bytes], source: Optional[str] = None
    ) -> IcsParseResult:
        """Parse calendar object text and keep the per-block diagnostics."""
        text = self._decode(raw_text, source)
        result = IcsParseResult(source=source)

        block: Optional[_BlockState] = None
        for line in self._content_lines(text, source):
            try:
                name, params, value = Contentline(line).parts()
            except ValueError as e:
                logger.debug("Skipping malformed content line %r: %s", line[:80], e)
                continue

            name = name.upper()
            value = value.strip()

            if name == "BEGIN":
                if value.upper() == VEVENT:
                    if block is not None:
                        result.add_warning("VEVENT opened inside an unterminated VEVENT; discarding it")
                        logger.warning("Discarding unterminated VEVENT block in %s", source)
                        result.skipped_incomplete += 1
                    block = _BlockState()
                    result.blocks_seen += 1
                elif block is not None:
                    block.nested_depth += 1
                continue

            if name == "END":
                if block is None:
                    continue
                if block.nested_depth > 0:
                    block.nested_depth -= 1
                elif value.upper() == VEVENT:
                    record = self._finish_block(block, result, source)
                    if record is not None:
                        result.records.append(record)
                    block = None
                continue

            if block is not None and block.nested_depth == 0:
                self._apply_property(block, name, params, value, result)

        if block is not None:
            result.add_warning("Incomplete VEVENT at end of calendar object")
            logger.warning("Incomplete VEVENT at end of calendar object %s", source)
            result.skipped_incomplete += 1

        logger.debug(
            "Parsed calendar object %s: %d blocks, %d records, %d cancelled, %d incomplete",
            source,
            result.blocks_seen,
            result.record_count,
            result.skipped_cancelled,
            result.skipped_incomplete,
        )
        return result

    def _decode(self, raw_text: Any, source: Optional[str]) -> str:
        if isinstance(raw_text, bytes):
            try:
                return raw_text.decode("utf-8-sig")
            except UnicodeDecodeError as e:
                raise CalendarContentError(f"Calendar data is not valid UTF-8: {e}", source) from e
        if isinstance(raw_text, str):
            try:
                raw_text.encode("utf-8")
            except UnicodeEncodeError as e:
                raise CalendarContentError(
                    f"Calendar text cannot be encoded as UTF-8: {e}", source
                ) from e
            return raw_text
        raise CalendarContentError(
            f"Calendar data must be str or bytes, got {type(raw_text).__name__}", source
        )

    def _content_lines(self, text: str, source: Optional[str]) -> list[str]:
        try:
            lines = Contentlines.from_ical(text)
        except ValueError as e:
            raise CalendarContentError(f"Calendar text is not parseable: {e}", source) from e
        return [str(line).strip() for line in lines if str(line).strip()]

    def _parse_date_property(
        self,
        name: str,
        params: Any,
        value: str,
        result: IcsParseResult,
    ) -> Optional[IcsDateValue]:
        """Parse a DATE/DATE-TIME property value, recording a warning on failure."""
        value_type = str(params.get("VALUE", "")).upper()
        if "TZID" in params:
            logger.debug("Ignoring TZID=%s on %s; treating value as local time", params["TZID"], name)
        try:
            return parse_ics_datetime(value, self.local_timezone, date_only=value_type == "DATE")
        except ValueError:
            result.add_warning(f"Invalid {name} value {value!r}")
            logger.debug("Failed to parse %s value %r", name, value)
            return None

    def _apply_property(
        self,
        block: _BlockState,
        name: str,
        params: Any,
        value: str,
        result: IcsParseResult,
    ) -> None:
        """Record one recognised property on the current block."""
        if name == "SUMMARY":
            block.title = value or None
        elif name == "DTSTART":
            block.start = self._parse_date_property(name, params, value, result)
        elif name == "DTEND":
            block.end = self._parse_date_property(name, params, value, result)
        elif name == "DURATION":
            try:
                block.duration = vDuration.from_ical(value)
            except ValueError:
                result.add_warning(f"Invalid DURATION value {value!r}")
                logger.debug("Failed to parse DURATION value %r", value)
        elif name == "UID":
            block.uid = value or None
        elif name == "RRULE":
            block.rrule = value or None
        elif name == "RECURRENCE-ID":
            block.recurrence_id = self._parse_date_property(name, params, value, result)
        elif name == "STATUS":
            block.status = EventStatus.parse(value)
            if block.status is None and value:
                logger.debug("Unknown STATUS value %r ignored", value)
        elif name == "SEQUENCE":
            try:
                block.sequence = int(value)
            except ValueError:
                logger.debug("Invalid SEQUENCE value %r, defaulting to 0", value)
                block.sequence = 0
        elif name == "EXDATE":
            for part in value.split(","):
                if not part.strip():
                    continue
                exdate = self._parse_date_property(name, params, part, result)
                if exdate is not None:
                    block.exdates.append(exdate)

    def _finish_block(
        self,
        block: _BlockState,
        result: IcsParseResult,
        source: Optional[str],
    ) -> Optional[EventRecord]:
        """Turn a closed block into an EventRecord, or None if it must be dropped."""
        if block.status is EventStatus.CANCELLED:
            logger.debug("Skipped cancelled event: %r", block.title)
            result.skipped_cancelled += 1
            return None

        if not block.title or block.start is None:
            if not block.title and block.start is None:
                logger.debug("Skipped event: missing both title and start date")
            elif not block.title:
                logger.debug("Skipped event: missing title (start=%s)", block.start.value)
            else:
                logger.debug("Skipped event: missing start date (title=%r)", block.title)
            result.skipped_incomplete += 1
            return None

        rule = block.rrule
        if block.recurrence_id is not None and rule:
            logger.debug("Event %r has both RECURRENCE-ID and RRULE; treating as override", block.title)
            rule = None

        start = block.start.value
        end = block.end.value if block.end is not None else None
        if end is None and block.duration is not None:
            end = start + block.duration
        if end is not None and end < start:
            result.add_warning(f"DTEND before DTSTART for {block.title!r}; end discarded")
            logger.warning("DTEND before DTSTART for event %r; ignoring end", block.title)
            end = None

        uid = block.uid
        if not uid:
            uid = uuid.uuid4().hex
            logger.debug("Event %r has no UID, generated %s", block.title, uid)

        try:
            return EventRecord(
                title=block.title,
                start=start,
                end=end,
                all_day=block.start.is_date_only,
                uid=uid,
                sequence=block.sequence,
                status=block.status,
                recurrence_override_of=(
                    block.recurrence_id.value if block.recurrence_id is not None else None
                ),
                recurrence_rule=rule,
                excluded_dates=tuple(exdate.value for exdate in block.exdates),
                source_object=source,
            )
        except ValidationError as e:
            result.add_warning(f"Invalid event {block.title!r}: {e}")
            logger.warning("Dropping invalid event %r from %s: %s", block.title, source, e)
            result.skipped_incomplete += 1
            return None
