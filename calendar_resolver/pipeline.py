"""Resolution pipeline architecture for calendar_resolver.

Records flow through a fixed sequence of stages, each of which reads the
current ResolutionState and returns a new one. States are frozen and hold
tuples only, so a stage can never mutate what an earlier stage produced.

Usage:
    pipeline = ResolutionPipeline()
    pipeline.add_stage(ClassificationStage()).add_stage(ExpansionStage())

    context = ResolutionContext(window_start=..., window_end=..., ...)
    result = pipeline.process(context, ResolutionState(records=tuple(records)))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import TYPE_CHECKING, Protocol

from .exceptions import ResolutionError
from .models import EventRecord, Occurrence

if TYPE_CHECKING:
    from .event_merger import CandidateOccurrence, EventMerger
    from .rrule_expander import RRuleExpander

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolutionContext:
    """Read-only configuration shared by every stage of one resolve call."""

    window_start: datetime
    window_end: datetime
    local_timezone: tzinfo
    expander: RRuleExpander
    merger: EventMerger
    enable_rrule_expansion: bool = True


@dataclass(frozen=True)
class ResolutionState:
    """Immutable data passed between pipeline stages."""

    records: tuple[EventRecord, ...] = ()

    # Classification
    masters: tuple[EventRecord, ...] = ()
    overrides: tuple[EventRecord, ...] = ()
    standalones: tuple[EventRecord, ...] = ()

    # Candidates competing for the output
    expanded: tuple[CandidateOccurrence, ...] = ()
    candidates: tuple[CandidateOccurrence, ...] = ()

    occurrences: tuple[Occurrence, ...] = ()


@dataclass
class StageResult:
    """Result from a single pipeline stage.

    Carries the new state plus counts and warnings for observability.
    """

    stage_name: str
    state: ResolutionState
    items_in: int = 0
    items_out: int = 0
    warnings: list[str] = field(default_factory=list)

    def add_warning(self, message: str) -> None:
        """Add a warning message."""
        self.warnings.append(message)
        logger.warning("[%s] %s", self.stage_name, message)


@dataclass
class PipelineResult:
    """Final state plus the per-stage results of a pipeline run."""

    state: ResolutionState
    stage_results: list[StageResult] = field(default_factory=list)

    @property
    def warnings(self) -> list[str]:
        return [warning for result in self.stage_results for warning in result.warnings]

    @property
    def occurrences(self) -> list[Occurrence]:
        return list(self.state.occurrences)


class ResolutionStage(Protocol):
    """Protocol for a single stage in the resolution pipeline."""

    def process(self, context: ResolutionContext, state: ResolutionState) -> StageResult:
        """Produce the next state from the current one.

        Args:
            context: Window and collaborators for this resolve call
            state: State produced by the previous stage

        Returns:
            Result with the new state and any warnings
        """
        ...

    @property
    def name(self) -> str:
        """Name of this stage for logging."""
        ...


class ResolutionPipeline:
    """Runs resolution stages in sequence.

    Example:
        pipeline = ResolutionPipeline()
        pipeline.add_stage(ClassificationStage()).add_stage(SortStage())
        result = pipeline.process(context, ResolutionState(records=records))
        occurrences = result.occurrences
    """

    def __init__(self) -> None:
        """Initialize empty pipeline."""
        self.stages: list[ResolutionStage] = []

    def add_stage(self, stage: ResolutionStage) -> ResolutionPipeline:
        """Add a stage to the pipeline (builder pattern).

        Args:
            stage: Stage to add

        Returns:
            Self for method chaining
        """
        self.stages.append(stage)
        logger.debug("Added stage to pipeline: %s", stage.name)
        return self

    def process(self, context: ResolutionContext, state: ResolutionState) -> PipelineResult:
        """Execute all stages in sequence.

        Args:
            context: Resolve-call context
            state: Initial state (normally just the records)

        Returns:
            PipelineResult with the final state and per-stage results

        Raises:
            ResolutionError: If a stage raises unexpectedly
        """
        logger.debug("Starting pipeline with %d stages", len(self.stages))
        result = PipelineResult(state=state)

        for i, stage in enumerate(self.stages):
            stage_num = i + 1
            try:
                stage_result = stage.process(context, result.state)
            except ResolutionError:
                raise
            except Exception as e:
                logger.exception("Stage %s failed with exception", stage.name)
                raise ResolutionError(stage.name, str(e)) from e

            logger.debug(
                "Stage %d/%d (%s) completed: items_in=%d, items_out=%d, warnings=%d",
                stage_num,
                len(self.stages),
                stage.name,
                stage_result.items_in,
                stage_result.items_out,
                len(stage_result.warnings),
            )
            result.stage_results.append(stage_result)
            result.state = stage_result.state

        return result

    def __repr__(self) -> str:
        """String representation of pipeline."""
        stage_names = [stage.name for stage in self.stages]
        return f"ResolutionPipeline(stages={stage_names})"
