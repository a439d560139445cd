"""Entry points for resolving calendar objects into occurrences - calendar_resolver.

OccurrenceResolver works on already-parsed EventRecords. CalendarEngine adds
the parsing step in front of it, synchronously or with parsing spread over
worker threads.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, tzinfo
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

from .config_manager import ConfigManager, EngineSettings
from .datetime_utils import ensure_timezone_aware
from .event_merger import EventMerger
from .exceptions import CalendarContentError, InvalidWindowError
from .ics_block_parser import IcsBlockParser
from .log_config import resolve_id_scope
from .models import EventRecord, Occurrence, RawCalendarObject
from .pipeline import ResolutionContext, ResolutionPipeline, ResolutionState
from .pipeline_stages import build_default_pipeline
from .rrule_expander import RRuleExpander

logger = logging.getLogger(__name__)

CalendarObjectInput = Union[RawCalendarObject, tuple[str, Union[str, bytes]]]


class StageStats(BaseModel):
    """Counts reported by one pipeline stage."""

    name: str
    items_in: int = 0
    items_out: int = 0
    warnings: int = 0


class ResolutionReport(BaseModel):
    """Occurrences of one resolve call plus its diagnostics."""

    occurrences: list[Occurrence] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    stages: list[StageStats] = Field(default_factory=list)
    resolve_id: Optional[str] = None

    @property
    def occurrence_count(self) -> int:
        return len(self.occurrences)


def validate_window(
    window_start: Any, window_end: Any, local_tz: tzinfo
) -> tuple[datetime, datetime]:
    """Check window bounds and make them timezone-aware.

    Raises:
        InvalidWindowError: If a bound is not a datetime or start is after end
    """
    if not isinstance(window_start, datetime) or not isinstance(window_end, datetime):
        raise InvalidWindowError(
            "Window bounds must be datetimes, got "
            f"{type(window_start).__name__} and {type(window_end).__name__}"
        )
    start = ensure_timezone_aware(window_start, local_tz)
    end = ensure_timezone_aware(window_end, local_tz)
    if start > end:
        raise InvalidWindowError(f"Window start {start.isoformat()} is after end {end.isoformat()}")
    return start, end


class OccurrenceResolver:
    """Resolves event records into a deduplicated, ordered occurrence list."""

    def __init__(
        self,
        settings: Any = None,
        local_timezone: Optional[tzinfo] = None,
        pipeline: Optional[ResolutionPipeline] = None,
    ):
        """Initialize resolver.

        Args:
            settings: EngineSettings, dict or settings-like object (defaults if None)
            local_timezone: Overrides the configured timezone
            pipeline: Custom pipeline (the standard six stages if None)
        """
        self.settings = EngineSettings.coerce(settings)
        self.local_timezone = local_timezone or self.settings.local_tzinfo()
        self.expander = RRuleExpander(self.settings, self.local_timezone)
        self.merger = EventMerger(self.local_timezone)
        self.pipeline = pipeline or build_default_pipeline()

    def resolve(
        self, records: Iterable[EventRecord], window_start: datetime, window_end: datetime
    ) -> list[Occurrence]:
        """Resolve records into occurrences inside [window_start, window_end].

        Raises:
            InvalidWindowError: If the window is unusable
            ResolutionError: If a stage fails unexpectedly
        """
        return self.resolve_with_report(records, window_start, window_end).occurrences

    def resolve_with_report(
        self, records: Iterable[EventRecord], window_start: datetime, window_end: datetime
    ) -> ResolutionReport:
        """Resolve records and keep warnings and per-stage counts."""
        start, end = validate_window(window_start, window_end, self.local_timezone)
        records = tuple(records)

        with resolve_id_scope() as resolve_id:
            context = ResolutionContext(
                window_start=start,
                window_end=end,
                local_timezone=self.local_timezone,
                expander=self.expander,
                merger=self.merger,
                enable_rrule_expansion=self.settings.enable_rrule_expansion,
            )
            result = self.pipeline.process(context, ResolutionState(records=records))

            logger.info(
                "Resolved %d records into %d occurrences (%s to %s, %d warnings)",
                len(records),
                len(result.state.occurrences),
                start.isoformat(),
                end.isoformat(),
                len(result.warnings),
            )

        return ResolutionReport(
            occurrences=result.occurrences,
            warnings=result.warnings,
            stages=[
                StageStats(
                    name=stage.stage_name,
                    items_in=stage.items_in,
                    items_out=stage.items_out,
                    warnings=len(stage.warnings),
                )
                for stage in result.stage_results
            ],
            resolve_id=resolve_id,
        )


def _coerce_objects(objects: Iterable[CalendarObjectInput]) -> list[RawCalendarObject]:
    coerced = []
    for obj in objects:
        if isinstance(obj, RawCalendarObject):
            coerced.append(obj)
        elif isinstance(obj, tuple) and len(obj) == 2:
            uid, data = obj
            if not isinstance(data, (str, bytes)):
                raise CalendarContentError(
                    f"Calendar data must be str or bytes, got {type(data).__name__}", str(uid)
                )
            coerced.append(RawCalendarObject(uid=str(uid), data=data))
        else:
            raise CalendarContentError(f"Unsupported calendar object: {type(obj).__name__}")
    return coerced


class CalendarEngine:
    """Parses calendar objects and resolves them in one call."""

    def __init__(self, settings: Any = None, local_timezone: Optional[tzinfo] = None):
        """Initialize engine.

        Args:
            settings: EngineSettings, dict or settings-like object (defaults if None)
            local_timezone: Overrides the configured timezone
        """
        self.settings = EngineSettings.coerce(settings)
        self.local_timezone = local_timezone or self.settings.local_tzinfo()
        self.parser = IcsBlockParser(self.local_timezone)
        self.resolver = OccurrenceResolver(self.settings, self.local_timezone)

    @classmethod
    def from_env(cls, config_manager: Optional[ConfigManager] = None) -> CalendarEngine:
        """Create an engine from CALENDAR_RESOLVER_* environment variables and .env defaults."""
        manager = config_manager or ConfigManager()
        return cls(manager.load_settings())

    def parse_objects(self, objects: Iterable[CalendarObjectInput]) -> list[EventRecord]:
        """Parse calendar objects into records, keeping input order.

        Raises:
            CalendarContentError: If an object cannot be read at all
        """
        records: list[EventRecord] = []
        for obj in _coerce_objects(objects):
            records.extend(self.parser.parse(obj.data, obj.uid))
        return records

    def resolve_objects(
        self,
        objects: Iterable[CalendarObjectInput],
        window_start: datetime,
        window_end: datetime,
    ) -> list[Occurrence]:
        """Parse and resolve calendar objects."""
        return self.resolve_objects_with_report(objects, window_start, window_end).occurrences

    def resolve_objects_with_report(
        self,
        objects: Iterable[CalendarObjectInput],
        window_start: datetime,
        window_end: datetime,
    ) -> ResolutionReport:
        """Parse and resolve calendar objects, keeping diagnostics."""
        validate_window(window_start, window_end, self.local_timezone)
        with resolve_id_scope():
            records = self.parse_objects(objects)
            return self.resolver.resolve_with_report(records, window_start, window_end)

    async def parse_objects_async(self, objects: Iterable[CalendarObjectInput]) -> list[EventRecord]:
        """Parse calendar objects concurrently in worker threads.

        At most parser_concurrency objects are parsed at a time. Results are
        merged in input order.
        """
        coerced = _coerce_objects(objects)
        semaphore = asyncio.Semaphore(max(1, self.settings.parser_concurrency))

        async def _parse_one(obj: RawCalendarObject) -> list[EventRecord]:
            async with semaphore:
                return await asyncio.to_thread(self.parser.parse, obj.data, obj.uid)

        parsed = await asyncio.gather(*(_parse_one(obj) for obj in coerced))
        return [record for records in parsed for record in records]

    async def resolve_objects_async(
        self,
        objects: Iterable[CalendarObjectInput],
        window_start: datetime,
        window_end: datetime,
    ) -> list[Occurrence]:
        """Parse calendar objects concurrently, then resolve them."""
        validate_window(window_start, window_end, self.local_timezone)
        with resolve_id_scope():
            records = await self.parse_objects_async(objects)
            return self.resolver.resolve(records, window_start, window_end)


def resolve(
    records: Sequence[EventRecord],
    window_start: datetime,
    window_end: datetime,
    settings: Any = None,
) -> list[Occurrence]:
    """Resolve already-parsed records with a one-off resolver."""
    return OccurrenceResolver(settings).resolve(records, window_start, window_end)


def resolve_calendar_objects(
    objects: Iterable[CalendarObjectInput],
    window_start: datetime,
    window_end: datetime,
    settings: Any = None,
) -> list[Occurrence]:
    """Parse and resolve calendar objects with a one-off engine."""
    return CalendarEngine(settings).resolve_objects(objects, window_start, window_end)
