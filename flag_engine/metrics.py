"""Registry of built-in metrics shared by extraction and baseline construction."""
from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Dict, Optional

from .models import CaseWithMilestones, MilestoneMap

MetricExtractorFn = Callable[[MilestoneMap, Optional[CaseWithMilestones]], Optional[float]]

TURNOVER_METRICS = frozenset({"turnover_time", "room_idle_gap"})
FCOTS_METRIC = "fcots_delay"
EXCESS_TIME_COST_METRIC = "excess_time_cost"

# Core milestones in the order they are expected to be recorded.
CORE_MILESTONE_SEQUENCE: tuple[str, ...] = (
    "patient_in",
    "anes_start",
    "anes_end",
    "prep_drape_complete",
    "incision",
    "closing",
    "closing_complete",
    "patient_out",
)


@dataclass(frozen=True)
class MetricDefinition:
    """How a named metric is derived from a single case.

    Milestone-pair metrics set ``start_milestone``/``end_milestone``; computed
    metrics provide ``extractor`` instead. Cross-case metrics have neither and
    are resolved from batch-wide context by the evaluator.
    """

    metric_id: str
    description: str
    start_milestone: Optional[str] = None
    end_milestone: Optional[str] = None
    extractor: Optional[MetricExtractorFn] = None
    allow_non_positive: bool = False
    baseline_eligible: bool = True

    @property
    def milestone_pair(self) -> Optional[tuple[str, str]]:
        if self.start_milestone and self.end_milestone:
            return self.start_milestone, self.end_milestone
        return None


class MetricRegistry:
    """Keeps track of metric definitions by id."""

    def __init__(self, definitions: Iterable[MetricDefinition] = ()) -> None:
        self._definitions: Dict[str, MetricDefinition] = {}
        for definition in definitions:
            self.register(definition)

    def register(self, definition: MetricDefinition) -> MetricDefinition:
        if definition.metric_id in self._definitions:
            raise ValueError(f"Metric '{definition.metric_id}' already registered")
        self._definitions[definition.metric_id] = definition
        return definition

    def get(self, metric_id: str) -> Optional[MetricDefinition]:
        return self._definitions.get(metric_id)

    def __contains__(self, metric_id: object) -> bool:
        return metric_id in self._definitions

    def items(self) -> Iterable[tuple[str, MetricDefinition]]:
        return self._definitions.items()

    def allows_non_positive(self, metric_id: str) -> bool:
        definition = self._definitions.get(metric_id)
        return bool(definition and definition.allow_non_positive)


def _count_missing_milestones(milestones: MilestoneMap, _case: Optional[CaseWithMilestones]) -> float:
    return float(sum(1 for key in CORE_MILESTONE_SEQUENCE if milestones.get(key) is None))


def _count_sequence_violations(milestones: MilestoneMap, _case: Optional[CaseWithMilestones]) -> float:
    recorded = [milestones[key] for key in CORE_MILESTONE_SEQUENCE if milestones.get(key) is not None]
    return float(sum(1 for prev, curr in zip(recorded, recorded[1:]) if curr < prev))


def _case_profit(_milestones: MilestoneMap, case: Optional[CaseWithMilestones]) -> Optional[float]:
    stats = case.completion_stats if case else None
    return stats.profit if stats else None


def _case_margin(_milestones: MilestoneMap, case: Optional[CaseWithMilestones]) -> Optional[float]:
    stats = case.completion_stats if case else None
    if stats is None or stats.profit is None or not stats.reimbursement:
        return None
    return stats.profit * 100 / stats.reimbursement


def _profit_per_minute(_milestones: MilestoneMap, case: Optional[CaseWithMilestones]) -> Optional[float]:
    stats = case.completion_stats if case else None
    if stats is None or stats.profit is None or not stats.total_duration_minutes:
        return None
    return stats.profit / stats.total_duration_minutes


def _total_case_cost(_milestones: MilestoneMap, case: Optional[CaseWithMilestones]) -> Optional[float]:
    stats = case.completion_stats if case else None
    if stats is None or (stats.total_debits is None and stats.or_time_cost is None):
        return None
    return (stats.total_debits or 0.0) + (stats.or_time_cost or 0.0)


def _reimbursement_variance(_milestones: MilestoneMap, case: Optional[CaseWithMilestones]) -> Optional[float]:
    if case is None or case.completion_stats is None:
        return None
    actual = case.completion_stats.reimbursement
    expected = case.expected_reimbursement
    if actual is None or not expected:
        return None
    return (actual - expected) * 100 / expected


def _or_time_cost(_milestones: MilestoneMap, case: Optional[CaseWithMilestones]) -> Optional[float]:
    stats = case.completion_stats if case else None
    return stats.or_time_cost if stats else None


def _fcots_delay(milestones: MilestoneMap, case: Optional[CaseWithMilestones]) -> Optional[float]:
    from .extraction import extract_fcots_delay  # Local import to avoid circular dependency

    return extract_fcots_delay(milestones, case)


def _pair(metric_id: str, start: str, end: str, description: str) -> MetricDefinition:
    return MetricDefinition(metric_id, description, start_milestone=start, end_milestone=end)


BUILTIN_METRICS: tuple[MetricDefinition, ...] = (
    # Timing
    _pair("total_case_time", "patient_in", "patient_out", "Patient in room to patient out"),
    _pair("surgical_time", "incision", "closing", "Incision to start of closing"),
    _pair("pre_op_time", "patient_in", "incision", "Patient in room to incision"),
    _pair("anesthesia_time", "anes_start", "anes_end", "Anesthesia start to end"),
    _pair("closing_time", "closing", "closing_complete", "Closing start to closing complete"),
    _pair("emergence_time", "closing_complete", "patient_out", "Closing complete to patient out"),
    _pair("prep_to_incision", "prep_drape_complete", "incision", "Prep and drape complete to incision"),
    _pair("surgeon_readiness_gap", "prep_drape_complete", "incision", "Wait for surgeon after prep"),
    # Efficiency
    MetricDefinition(
        FCOTS_METRIC,
        "Minutes the first case of the day started after its scheduled time",
        extractor=_fcots_delay,
        allow_non_positive=True,
        baseline_eligible=False,
    ),
    MetricDefinition("turnover_time", "Previous patient out to next patient in, same room", baseline_eligible=False),
    MetricDefinition("room_idle_gap", "Idle room time between consecutive cases", baseline_eligible=False),
    MetricDefinition(
        EXCESS_TIME_COST_METRIC,
        "OR cost of minutes beyond the median case time",
        allow_non_positive=True,
        baseline_eligible=False,
    ),
    # Financial
    MetricDefinition("case_profit", "Case profit", extractor=_case_profit, allow_non_positive=True),
    MetricDefinition("case_margin", "Profit as a percentage of reimbursement", extractor=_case_margin, allow_non_positive=True),
    MetricDefinition("profit_per_minute", "Profit per case minute", extractor=_profit_per_minute, allow_non_positive=True),
    MetricDefinition("total_case_cost", "Supply debits plus OR time cost", extractor=_total_case_cost, allow_non_positive=True),
    MetricDefinition(
        "reimbursement_variance",
        "Actual versus expected reimbursement, percent",
        extractor=_reimbursement_variance,
        allow_non_positive=True,
    ),
    MetricDefinition("or_time_cost", "OR time cost", extractor=_or_time_cost, allow_non_positive=True),
    # Quality
    MetricDefinition(
        "missing_milestones",
        "Core milestones not recorded",
        extractor=_count_missing_milestones,
        allow_non_positive=True,
    ),
    MetricDefinition(
        "milestone_out_of_order",
        "Core milestones recorded out of sequence",
        extractor=_count_sequence_violations,
        allow_non_positive=True,
    ),
)


def default_metric_registry() -> MetricRegistry:
    """Return a fresh registry holding the built-in metrics."""

    return MetricRegistry(BUILTIN_METRICS)


metric_registry = default_metric_registry()
