"""Per-case rule evaluation."""
from __future__ import annotations

import logging
from typing import AbstractSet, Optional, Sequence

from .config import DEFAULT_SETTINGS, EngineSettings
from .extraction import extract_fcots_delay, extract_metric_value
from .metrics import (
    EXCESS_TIME_COST_METRIC,
    FCOTS_METRIC,
    TURNOVER_METRICS,
    MetricRegistry,
    metric_registry,
)
from .models import (
    BaselineStat,
    CaseFlag,
    CaseWithMilestones,
    FlagBaselines,
    FlagRule,
    FlagType,
    facility_key,
)
from .stats import round_for_storage
from .thresholds import compare_value, lookup_baseline, strategy_for

logger = logging.getLogger(__name__)


def build_flag(
    case: CaseWithMilestones,
    rule: FlagRule,
    metric_value: float,
    threshold: float,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> CaseFlag:
    """Create the output row for a triggered rule, rounding for storage."""

    return CaseFlag(
        case_id=case.id,
        facility_id=case.facility_id,
        flag_type=FlagType.THRESHOLD,
        flag_rule_id=rule.id,
        metric_value=round_for_storage(metric_value, settings.storage_precision),
        threshold_value=round_for_storage(threshold, settings.storage_precision),
        comparison_scope=rule.comparison_scope.value,
        severity=rule.severity,
    )


def _apply_strategy(
    case: CaseWithMilestones,
    rule: FlagRule,
    metric_value: float,
    baseline: Optional[BaselineStat],
    settings: EngineSettings,
) -> Optional[CaseFlag]:
    strategy = strategy_for(rule)
    threshold = strategy.resolve(rule, baseline)
    if threshold is None:
        if strategy.requires_baseline and baseline is None:
            logger.debug(f"Rule {rule.id}: no {rule.comparison_scope.value} baseline with enough samples for case {case.id}")
        return None
    if not strategy.matches(metric_value, threshold, rule):
        return None
    return build_flag(case, rule, metric_value, threshold, settings)


def _excess_time_cost(case: CaseWithMilestones, baselines: FlagBaselines) -> Optional[float]:
    stats = case.completion_stats
    if stats is None or not stats.total_duration_minutes or not stats.or_hourly_rate:
        return None
    case_time = None
    if case.procedure_type_id:
        case_time = baselines.facility.get(facility_key("total_case_time", case.procedure_type_id))
    if case_time is None:
        case_time = baselines.facility.get(facility_key("total_case_time"))
    if case_time is None:
        return None
    excess_minutes = max(0.0, stats.total_duration_minutes - case_time.median)
    return excess_minutes * stats.or_hourly_rate / 60


def evaluate_case(
    case: CaseWithMilestones,
    rules: Sequence[FlagRule],
    baselines: FlagBaselines,
    turnover_baseline: Optional[BaselineStat] = None,
    first_case_ids: AbstractSet[str] = frozenset(),
    turnover_for_case: Optional[float] = None,
    *,
    registry: MetricRegistry = metric_registry,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> list[CaseFlag]:
    """Evaluate one case against every enabled rule.

    Missing data never raises: a rule that cannot be evaluated for this case
    is skipped. A case may trigger several rules.
    """

    flags: list[CaseFlag] = []
    if not case.has_patient_in_and_out():
        return flags

    milestones = case.milestones
    for rule in rules:
        if not rule.is_enabled:
            continue

        if rule.metric in TURNOVER_METRICS:
            if turnover_for_case is None or turnover_for_case <= 0 or turnover_baseline is None:
                continue
            flag = _apply_strategy(case, rule, turnover_for_case, turnover_baseline, settings)

        elif rule.metric == FCOTS_METRIC:
            if case.id not in first_case_ids:
                continue
            delay = extract_fcots_delay(milestones, case, settings.default_timezone)
            if delay is None:
                continue
            # Scheduling variance is never baselined.
            flag = None
            if compare_value(delay, rule.threshold_value, rule.operator):
                flag = build_flag(case, rule, delay, rule.threshold_value, settings)

        elif rule.metric == EXCESS_TIME_COST_METRIC:
            excess = _excess_time_cost(case, baselines)
            if excess is None:
                continue
            baseline = lookup_baseline(baselines, rule, case.surgeon_id, case.procedure_type_id)
            flag = _apply_strategy(case, rule, excess, baseline, settings)

        elif rule.cost_category_id:
            cost = case.category_costs.get(rule.cost_category_id)
            if cost is None:
                continue
            # Zero and negative costs are evaluated too.
            baseline = lookup_baseline(baselines, rule, case.surgeon_id, case.procedure_type_id)
            flag = _apply_strategy(case, rule, cost, baseline, settings)

        else:
            value = extract_metric_value(
                milestones,
                rule.metric,
                rule.start_milestone,
                rule.end_milestone,
                case,
                registry=registry,
            )
            if value is None:
                continue
            if value <= 0 and not registry.allows_non_positive(rule.metric):
                continue
            baseline = None
            if strategy_for(rule).requires_baseline:
                baseline = lookup_baseline(baselines, rule, case.surgeon_id, case.procedure_type_id)
            flag = _apply_strategy(case, rule, value, baseline, settings)

        if flag is not None:
            flags.append(flag)

    return flags
