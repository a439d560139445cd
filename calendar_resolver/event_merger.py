"""Override merging and deduplication for resolved occurrences - calendar_resolver.

This module handles RECURRENCE-ID override processing against expanded series
instances and the final (title, day) deduplication with SEQUENCE
supersession.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from enum import Enum
from typing import Optional, cast

from dateutil import tz

from .datetime_utils import calendar_day, epoch_millis, within_window
from .models import EventRecord, Occurrence

logger = logging.getLogger(__name__)


class OccurrenceKind(str, Enum):
    """Where a candidate occurrence came from."""

    EXPANDED = "expanded"
    OVERRIDE = "override"
    STANDALONE = "standalone"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class CandidateOccurrence:
    """An occurrence still competing in deduplication."""

    occurrence: Occurrence
    sequence: int
    kind: OccurrenceKind


def occurrence_from_record(
    record: EventRecord,
    kind: OccurrenceKind,
    occurrence_id: Optional[str] = None,
    series_uid: Optional[str] = None,
) -> CandidateOccurrence:
    """Wrap a single record (standalone, override or fallback) as a candidate."""
    occurrence = Occurrence(
        id=occurrence_id or record.uid,
        title=record.title,
        start=record.start,
        end=record.end,
        all_day=record.all_day,
        series_uid=series_uid,
        is_override=kind is OccurrenceKind.OVERRIDE,
    )
    return CandidateOccurrence(occurrence=occurrence, sequence=record.effective_sequence, kind=kind)


@dataclass(frozen=True)
class OverrideResult:
    """Outcome of applying overrides to expanded instances."""

    expanded: tuple[CandidateOccurrence, ...]
    overrides: tuple[CandidateOccurrence, ...]
    suppressed: int


class EventMerger:
    """Handles RECURRENCE-ID override logic and deduplication for occurrences."""

    def __init__(self, local_timezone: Optional[tzinfo] = None):
        self.local_timezone = local_timezone or tz.tzlocal()

    def apply_overrides(
        self,
        expanded: list[CandidateOccurrence],
        overrides: list[EventRecord],
        masters: list[EventRecord],
        window_start: datetime,
        window_end: datetime,
    ) -> OverrideResult:
        """Replace overridden expanded instances with their override records.

        Each override removes the expanded instance of its series that falls
        on the calendar day of its RECURRENCE-ID. The series is the master
        sharing the override's UID; when no master does, masters with the same
        title are used instead.

        Args:
            expanded: Expanded series instances
            overrides: Records carrying recurrence_override_of
            masters: Master records, used to correlate overrides with series
            window_start: Inclusive window start
            window_end: Inclusive window end

        Returns:
            OverrideResult with surviving instances, in-window overrides and
            the number of suppressed instances
        """
        master_uids = {master.uid for master in masters}
        uids_by_title: dict[str, list[str]] = defaultdict(list)
        for master in masters:
            if master.uid not in uids_by_title[master.title]:
                uids_by_title[master.title].append(master.uid)

        suppressed_slots: set[tuple[str, date]] = set()
        emitted: list[CandidateOccurrence] = []

        for override in self._latest_overrides(overrides):
            if override.uid in master_uids:
                series_uids = [override.uid]
            else:
                series_uids = uids_by_title.get(override.title, [])
                if series_uids:
                    logger.debug(
                        "Override %r (%s) matched series by title: %s",
                        override.title,
                        override.uid,
                        ", ".join(series_uids),
                    )
                else:
                    logger.debug("Override %r (%s) has no matching series", override.title, override.uid)

            original = cast(datetime, override.recurrence_override_of)
            original_day = calendar_day(original, self.local_timezone)
            for series_uid in series_uids:
                suppressed_slots.add((series_uid, original_day))

            if within_window(override.start, override.end, override.all_day, window_start, window_end):
                emitted.append(
                    occurrence_from_record(
                        override,
                        OccurrenceKind.OVERRIDE,
                        occurrence_id=f"{override.uid}_{epoch_millis(original)}",
                        series_uid=series_uids[0] if series_uids else override.uid,
                    )
                )
            else:
                logger.debug("Override %r moved outside the window; not emitted", override.title)

        kept: list[CandidateOccurrence] = []
        suppressed = 0
        for candidate in expanded:
            occurrence = candidate.occurrence
            slot = (occurrence.series_uid or "", calendar_day(occurrence.start, self.local_timezone))
            if slot in suppressed_slots:
                logger.debug(
                    "Suppressing expanded occurrence %s of %r (overridden by RECURRENCE-ID)",
                    occurrence.id,
                    occurrence.title,
                )
                suppressed += 1
                continue
            kept.append(candidate)

        if suppressed:
            logger.debug("RECURRENCE-ID processing: suppressed %d expanded occurrences", suppressed)

        return OverrideResult(expanded=tuple(kept), overrides=tuple(emitted), suppressed=suppressed)

    def _latest_overrides(self, overrides: list[EventRecord]) -> list[EventRecord]:
        """Keep one override per (uid, RECURRENCE-ID): the highest sequence, first on ties."""
        latest: dict[tuple[str, datetime], EventRecord] = {}
        for override in overrides:
            if override.recurrence_override_of is None:
                continue
            key = (override.uid, override.recurrence_override_of)
            current = latest.get(key)
            if current is None or override.effective_sequence > current.effective_sequence:
                latest[key] = override
        return list(latest.values())

    def deduplicate(self, candidates: list[CandidateOccurrence]) -> list[CandidateOccurrence]:
        """Collapse candidates sharing a title and calendar day.

        Within a group the highest sequence wins. Candidates with an equal
        sequence are all kept when their exact starts differ; an equal start
        keeps only the first seen.

        Args:
            candidates: Candidates in pipeline order

        Returns:
            Surviving candidates, grouped in first-seen order
        """
        groups: dict[tuple[str, date], list[CandidateOccurrence]] = {}

        for candidate in candidates:
            occurrence = candidate.occurrence
            key = (occurrence.title, calendar_day(occurrence.start, self.local_timezone))
            group = groups.get(key)
            if group is None:
                groups[key] = [candidate]
                continue

            best = group[0].sequence
            if candidate.sequence > best:
                logger.debug(
                    "%r on %s: sequence %d supersedes %d",
                    occurrence.title,
                    key[1],
                    candidate.sequence,
                    best,
                )
                groups[key] = [candidate]
            elif candidate.sequence == best:
                if any(kept.occurrence.start == occurrence.start for kept in group):
                    logger.debug("Dropping duplicate %r at %s", occurrence.title, occurrence.start)
                else:
                    group.append(candidate)
            else:
                logger.debug(
                    "Dropping %r at %s: sequence %d is superseded",
                    occurrence.title,
                    occurrence.start,
                    candidate.sequence,
                )

        deduplicated = [candidate for group in groups.values() for candidate in group]
        if len(deduplicated) != len(candidates):
            logger.debug("Removed %d duplicate occurrences", len(candidates) - len(deduplicated))
        return deduplicated
