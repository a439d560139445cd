"""Concrete pipeline stages for occurrence resolution.

The default order is classification, expansion, overrides, standalones,
deduplication and sorting; build_default_pipeline() assembles it.
"""

from __future__ import annotations

import dataclasses
import logging

from .datetime_utils import within_window
from .event_merger import CandidateOccurrence, OccurrenceKind, occurrence_from_record
from .exceptions import RRuleExpansionError
from .models import EventRecord
from .pipeline import ResolutionContext, ResolutionPipeline, ResolutionState, StageResult

logger = logging.getLogger(__name__)


class ClassificationStage:
    """Partition records into masters, overrides and standalones.

    Floating (naive) datetimes on caller-built records are pinned to the
    engine timezone here so later stages only ever compare aware values.
    """

    def __init__(self) -> None:
        self._name = "Classification"

    @property
    def name(self) -> str:
        """Stage name for logging."""
        return self._name

    def process(self, context: ResolutionContext, state: ResolutionState) -> StageResult:
        masters: list[EventRecord] = []
        overrides: list[EventRecord] = []
        standalones: list[EventRecord] = []
        records = tuple(record.with_timezone(context.local_timezone) for record in state.records)

        for record in records:
            if record.is_override:
                overrides.append(record)
            elif record.is_master:
                masters.append(record)
            else:
                standalones.append(record)

        logger.debug(
            "Classification: %d masters, %d overrides, %d standalones",
            len(masters),
            len(overrides),
            len(standalones),
        )
        new_state = dataclasses.replace(
            state,
            records=records,
            masters=tuple(masters),
            overrides=tuple(overrides),
            standalones=tuple(standalones),
        )
        return StageResult(
            stage_name=self.name,
            state=new_state,
            items_in=len(state.records),
            items_out=len(masters) + len(overrides) + len(standalones),
        )


class ExpansionStage:
    """Expand every master within the window.

    A master whose rule cannot be expanded degrades to a single occurrence at
    its own start, included only when that start lies in the window.
    """

    def __init__(self) -> None:
        self._name = "Expansion"

    @property
    def name(self) -> str:
        """Stage name for logging."""
        return self._name

    def process(self, context: ResolutionContext, state: ResolutionState) -> StageResult:
        result = StageResult(stage_name=self.name, state=state, items_in=len(state.masters))
        expanded: list[CandidateOccurrence] = []

        for master in state.masters:
            if not context.enable_rrule_expansion:
                expanded.extend(self._fallback(context, master))
                continue

            try:
                expansion = context.expander.expand(master, context.window_start, context.window_end)
            except RRuleExpansionError as e:
                result.add_warning(
                    f"RRULE expansion failed for {master.title!r} ({master.uid}): {e}; "
                    "falling back to its own start"
                )
                expanded.extend(self._fallback(context, master))
                continue

            if expansion.truncated:
                # Already logged by the expander
                result.warnings.append(f"RRULE expansion truncated for {master.title!r} ({master.uid})")

            for occurrence in context.expander.generate_instances(master, expansion.starts):
                if within_window(
                    occurrence.start,
                    occurrence.end,
                    occurrence.all_day,
                    context.window_start,
                    context.window_end,
                ):
                    expanded.append(
                        CandidateOccurrence(
                            occurrence=occurrence,
                            sequence=master.effective_sequence,
                            kind=OccurrenceKind.EXPANDED,
                        )
                    )

        result.state = dataclasses.replace(state, expanded=tuple(expanded))
        result.items_out = len(expanded)
        return result

    def _fallback(self, context: ResolutionContext, master: EventRecord) -> list[CandidateOccurrence]:
        if not within_window(
            master.start, master.end, master.all_day, context.window_start, context.window_end
        ):
            return []
        return [occurrence_from_record(master, OccurrenceKind.FALLBACK, series_uid=master.uid)]


class OverrideStage:
    """Replace overridden series instances with their RECURRENCE-ID records."""

    def __init__(self) -> None:
        self._name = "Override"

    @property
    def name(self) -> str:
        """Stage name for logging."""
        return self._name

    def process(self, context: ResolutionContext, state: ResolutionState) -> StageResult:
        merged = context.merger.apply_overrides(
            list(state.expanded),
            list(state.overrides),
            list(state.masters),
            context.window_start,
            context.window_end,
        )
        candidates = state.candidates + merged.expanded + merged.overrides
        return StageResult(
            stage_name=self.name,
            state=dataclasses.replace(state, expanded=merged.expanded, candidates=candidates),
            items_in=len(state.expanded) + len(state.overrides),
            items_out=len(merged.expanded) + len(merged.overrides),
        )


class StandaloneStage:
    """Pass standalone records through, filtered to the window."""

    def __init__(self) -> None:
        self._name = "Standalone"

    @property
    def name(self) -> str:
        """Stage name for logging."""
        return self._name

    def process(self, context: ResolutionContext, state: ResolutionState) -> StageResult:
        kept = tuple(
            occurrence_from_record(record, OccurrenceKind.STANDALONE)
            for record in state.standalones
            if within_window(
                record.start, record.end, record.all_day, context.window_start, context.window_end
            )
        )
        return StageResult(
            stage_name=self.name,
            state=dataclasses.replace(state, candidates=state.candidates + kept),
            items_in=len(state.standalones),
            items_out=len(kept),
        )


class DeduplicationStage:
    """Collapse candidates sharing a title and day, honouring SEQUENCE."""

    def __init__(self) -> None:
        self._name = "Deduplication"

    @property
    def name(self) -> str:
        """Stage name for logging."""
        return self._name

    def process(self, context: ResolutionContext, state: ResolutionState) -> StageResult:
        deduplicated = context.merger.deduplicate(list(state.candidates))
        removed = len(state.candidates) - len(deduplicated)
        if removed:
            logger.debug(
                "Deduplication: %d -> %d occurrences (%d removed)",
                len(state.candidates),
                len(deduplicated),
                removed,
            )
        return StageResult(
            stage_name=self.name,
            state=dataclasses.replace(state, candidates=tuple(deduplicated)),
            items_in=len(state.candidates),
            items_out=len(deduplicated),
        )


class SortStage:
    """Order occurrences: all-day first, then by start, title and id."""

    def __init__(self) -> None:
        self._name = "Sort"

    @property
    def name(self) -> str:
        """Stage name for logging."""
        return self._name

    def process(self, context: ResolutionContext, state: ResolutionState) -> StageResult:
        occurrences = sorted(
            (candidate.occurrence for candidate in state.candidates),
            key=lambda o: (not o.all_day, o.start, o.title, o.id),
        )
        return StageResult(
            stage_name=self.name,
            state=dataclasses.replace(state, occurrences=tuple(occurrences)),
            items_in=len(state.candidates),
            items_out=len(occurrences),
        )


def build_default_pipeline() -> ResolutionPipeline:
    """Create the standard six-stage resolution pipeline."""
    return (
        ResolutionPipeline()
        .add_stage(ClassificationStage())
        .add_stage(ExpansionStage())
        .add_stage(OverrideStage())
        .add_stage(StandaloneStage())
        .add_stage(DeduplicationStage())
        .add_stage(SortStage())
    )
