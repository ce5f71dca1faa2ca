"""Two-phase batch engine: build shared context once, then evaluate every case."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import AbstractSet, Mapping, Optional, Sequence

from .baselines import (
    build_baselines,
    build_turnover_baseline,
    compute_turnovers_per_case,
    identify_first_cases,
)
from .config import DEFAULT_SETTINGS, EngineSettings
from .evaluator import evaluate_case
from .metrics import (
    EXCESS_TIME_COST_METRIC,
    FCOTS_METRIC,
    TURNOVER_METRICS,
    MetricRegistry,
    metric_registry,
)
from .models import BaselineStat, CaseFlag, CaseWithMilestones, FlagBaselines, FlagRule
from .thresholds import check_rule_strategies

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluationContext:
    """Batch-wide state produced by phase one and read-only afterwards."""

    baselines: FlagBaselines
    turnover_baseline: Optional[BaselineStat] = None
    first_case_ids: AbstractSet[str] = frozenset()
    turnover_by_case: Mapping[str, float] = field(default_factory=dict)
    registry: MetricRegistry = field(default=metric_registry, repr=False)
    settings: EngineSettings = DEFAULT_SETTINGS

    def evaluate(self, case: CaseWithMilestones, rules: Sequence[FlagRule]) -> list[CaseFlag]:
        return evaluate_case(
            case,
            rules,
            self.baselines,
            self.turnover_baseline,
            self.first_case_ids,
            self.turnover_by_case.get(case.id),
            registry=self.registry,
            settings=self.settings,
        )


def _baseline_metrics(rules: Sequence[FlagRule]) -> list[str]:
    metrics = list(dict.fromkeys(rule.metric for rule in rules))
    if EXCESS_TIME_COST_METRIC in metrics and "total_case_time" not in metrics:
        metrics.append("total_case_time")
    return metrics


def _custom_pairs(rules: Sequence[FlagRule], registry: MetricRegistry) -> dict[str, tuple[str, str]]:
    pairs: dict[str, tuple[str, str]] = {}
    for rule in rules:
        if rule.has_milestone_pair and rule.metric not in registry:
            pairs.setdefault(rule.metric, (rule.start_milestone, rule.end_milestone))
    return pairs


def _cost_categories(rules: Sequence[FlagRule]) -> dict[str, str]:
    categories: dict[str, str] = {}
    for rule in rules:
        if rule.cost_category_id:
            categories.setdefault(rule.metric, rule.cost_category_id)
    return categories


def build_evaluation_context(
    baseline_cases: Sequence[CaseWithMilestones],
    rules: Sequence[FlagRule],
    *,
    evaluation_cases: Sequence[CaseWithMilestones] | None = None,
    registry: MetricRegistry = metric_registry,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> EvaluationContext:
    """Phase one: baselines plus the cross-case context the enabled rules need.

    Baselines come from ``baseline_cases``; the first-case set and per-case
    turnovers describe ``evaluation_cases`` (defaulting to the baseline set).
    """

    enabled = [rule for rule in rules if rule.is_enabled]
    evaluation_cases = baseline_cases if evaluation_cases is None else evaluation_cases

    baselines = build_baselines(
        baseline_cases,
        _baseline_metrics(enabled),
        custom_pairs=_custom_pairs(enabled, registry),
        cost_categories=_cost_categories(enabled),
        registry=registry,
        settings=settings,
    )

    has_turnover_rule = any(rule.metric in TURNOVER_METRICS for rule in enabled)
    has_fcots_rule = any(rule.metric == FCOTS_METRIC for rule in enabled)

    turnover_baseline = build_turnover_baseline(baseline_cases, settings) if has_turnover_rule else None
    first_case_ids = identify_first_cases(evaluation_cases) if has_fcots_rule else frozenset()
    turnover_by_case = compute_turnovers_per_case(evaluation_cases, settings) if has_turnover_rule else {}

    if has_turnover_rule and turnover_baseline is None:
        logger.info("Turnover rules active but fewer than the minimum valid turnovers; turnover rules will not fire")

    return EvaluationContext(
        baselines=baselines,
        turnover_baseline=turnover_baseline,
        first_case_ids=first_case_ids,
        turnover_by_case=turnover_by_case,
        registry=registry,
        settings=settings,
    )


class FlagEngine:
    """Evaluates batches of cases against flag rules."""

    def __init__(
        self,
        *,
        registry: MetricRegistry | None = None,
        settings: EngineSettings | None = None,
        workers: int = 1,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._registry = registry or metric_registry
        self._settings = settings or DEFAULT_SETTINGS
        self._workers = workers

    def evaluate_batch(
        self,
        cases: Sequence[CaseWithMilestones],
        rules: Sequence[FlagRule],
        *,
        baseline_cases: Sequence[CaseWithMilestones] | None = None,
    ) -> list[CaseFlag]:
        """Return every flag raised by ``cases``, in case order then rule order.

        Without ``baseline_cases`` the evaluation set is also the baseline
        training set. Baselines are rebuilt on every call.
        """

        if not cases or not rules:
            return []

        enabled = [rule for rule in rules if rule.is_enabled]
        check_rule_strategies(enabled)

        context = build_evaluation_context(
            cases if baseline_cases is None else baseline_cases,
            enabled,
            evaluation_cases=cases,
            registry=self._registry,
            settings=self._settings,
        )

        if self._workers > 1:
            with ThreadPoolExecutor(max_workers=self._workers) as executor:
                per_case = list(executor.map(lambda case: context.evaluate(case, enabled), cases))
        else:
            per_case = [context.evaluate(case, enabled) for case in cases]

        flags = [flag for case_flags in per_case for flag in case_flags]
        logger.info(f"Evaluated {len(cases)} cases against {len(enabled)} rules: {len(flags)} flags")
        return flags


def evaluate_cases_batch(
    cases: Sequence[CaseWithMilestones],
    rules: Sequence[FlagRule],
    *,
    baseline_cases: Sequence[CaseWithMilestones] | None = None,
    registry: MetricRegistry | None = None,
    settings: EngineSettings | None = None,
    workers: int = 1,
) -> list[CaseFlag]:
    """Convenience wrapper around :class:`FlagEngine`."""

    engine = FlagEngine(registry=registry, settings=settings, workers=workers)
    return engine.evaluate_batch(cases, rules, baseline_cases=baseline_cases)
