"""Data models for recurring-event resolution - calendar_resolver."""

import uuid
from datetime import datetime, timedelta, tzinfo
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator

from .datetime_utils import ensure_timezone_aware


class EventStatus(str, Enum):
    """iCalendar VEVENT STATUS values."""

    CONFIRMED = "CONFIRMED"
    TENTATIVE = "TENTATIVE"
    CANCELLED = "CANCELLED"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["EventStatus"]:
        """Map a raw STATUS value to an EventStatus, or None if unknown."""
        if not value:
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


class RawCalendarObject(BaseModel):
    """One calendar object as delivered by the transport layer."""

    uid: str = Field(..., description="Opaque transport identifier (e.g. object URL)")
    data: Union[str, bytes] = Field(..., description="iCalendar text with VEVENT blocks")
    etag: Optional[str] = Field(default=None, description="Server ETag, diagnostics only")

    model_config = ConfigDict(frozen=True)


class EventRecord(BaseModel):
    """Parsed form of one VEVENT block."""

    title: str = Field(..., description="SUMMARY")
    start: datetime = Field(..., description="DTSTART")
    end: Optional[datetime] = Field(default=None, description="DTEND")
    all_day: bool = Field(default=False, description="Date-only precision")
    uid: str = Field(default_factory=lambda: uuid.uuid4().hex, description="UID")
    sequence: Optional[int] = Field(default=None, description="SEQUENCE revision counter")
    status: Optional[EventStatus] = Field(default=None, description="STATUS")

    # Recurrence
    recurrence_override_of: Optional[datetime] = Field(
        default=None, description="RECURRENCE-ID of the occurrence this record replaces"
    )
    recurrence_rule: Optional[str] = Field(default=None, description="Raw RRULE value")
    excluded_dates: tuple[datetime, ...] = Field(default=(), description="EXDATE values")

    source_object: Optional[str] = Field(
        default=None, description="UID of the RawCalendarObject this record came from"
    )

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_recurrence_kind(self) -> "EventRecord":
        if self.recurrence_override_of is not None and self.recurrence_rule:
            raise ValueError("An override record cannot carry a recurrence rule")
        return self

    @property
    def is_override(self) -> bool:
        return self.recurrence_override_of is not None

    @property
    def is_master(self) -> bool:
        return bool(self.recurrence_rule) and not self.is_override

    @property
    def effective_sequence(self) -> int:
        return self.sequence or 0

    @property
    def duration(self) -> Optional[timedelta]:
        if self.end is None:
            return None
        return self.end - self.start

    def with_timezone(self, local_tz: tzinfo) -> "EventRecord":
        """Copy with naive (floating) datetimes pinned to local_tz; aware values are kept."""
        values = [self.start, self.end, self.recurrence_override_of, *self.excluded_dates]
        if all(dt is None or dt.tzinfo is not None for dt in values):
            return self
        return self.model_copy(
            update={
                "start": ensure_timezone_aware(self.start, local_tz),
                "end": ensure_timezone_aware(self.end, local_tz) if self.end is not None else None,
                "recurrence_override_of": (
                    ensure_timezone_aware(self.recurrence_override_of, local_tz)
                    if self.recurrence_override_of is not None
                    else None
                ),
                "excluded_dates": tuple(
                    ensure_timezone_aware(exdate, local_tz) for exdate in self.excluded_dates
                ),
            }
        )


class IcsParseResult(BaseModel):
    """Result of parsing one calendar object's text."""

    records: list[EventRecord] = Field(default_factory=list, description="Usable records")
    source: Optional[str] = Field(default=None, description="Calendar object uid")

    # Parse statistics
    blocks_seen: int = 0
    skipped_cancelled: int = 0
    skipped_incomplete: int = 0

    warnings: list[str] = Field(default_factory=list)

    @property
    def record_count(self) -> int:
        return len(self.records)

    def add_warning(self, warning: str) -> None:
        """Add a warning message."""
        self.warnings.append(warning)


class Occurrence(BaseModel):
    """A concrete, calendar-placed event instance; the engine's output unit."""

    id: str = Field(..., description="Deterministic occurrence id")
    title: str = Field(..., description="Event title")
    start: datetime = Field(..., description="Occurrence start")
    end: Optional[datetime] = Field(default=None, description="Occurrence end")
    all_day: bool = Field(default=False, description="All-day event flag")

    # Provenance
    series_uid: Optional[str] = Field(
        default=None, description="UID of the series this occurrence belongs to"
    )
    is_expanded_instance: bool = Field(
        default=False, description="True if generated from RRULE expansion"
    )
    is_override: bool = Field(default=False, description="True if from a RECURRENCE-ID record")

    model_config = ConfigDict(frozen=True)

    @field_serializer("start", "end", when_used="unless-none")
    def serialize_datetime(self, dt: datetime) -> str:
        """Serialize datetime fields to ISO format."""
        return dt.isoformat()
