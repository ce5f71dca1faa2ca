"""Threshold strategies, baseline lookup and comparison."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import ClassVar, Dict, Iterable, Optional, Type

from .models import (
    BaselineStat,
    ComparisonScope,
    FlagBaselines,
    FlagRule,
    Operator,
    ThresholdType,
    facility_key,
    personal_key,
)

logger = logging.getLogger(__name__)


def compare_value(actual: float, threshold: float, operator: Operator | str) -> bool:
    """Strict numeric comparison with no tolerance."""

    op = Operator(operator)
    if op is Operator.GT:
        return actual > threshold
    if op is Operator.GTE:
        return actual >= threshold
    if op is Operator.LT:
        return actual < threshold
    return actual <= threshold


def _is_upper_bound(rule: FlagRule) -> bool:
    return rule.operator in (Operator.GT, Operator.GTE)


class ThresholdStrategy(ABC):
    """One arm of the threshold-type variant."""

    threshold_type: ClassVar[ThresholdType]
    requires_baseline: ClassVar[bool] = False
    supported: ClassVar[bool] = True

    @abstractmethod
    def resolve(self, rule: FlagRule, baseline: Optional[BaselineStat]) -> Optional[float]:
        """Return the concrete cutoff for ``rule``, or None when it cannot be resolved."""

    def matches(self, actual: float, threshold: float, rule: FlagRule) -> bool:
        return compare_value(actual, threshold, rule.operator)


class AbsoluteStrategy(ThresholdStrategy):
    threshold_type = ThresholdType.ABSOLUTE

    def resolve(self, rule: FlagRule, baseline: Optional[BaselineStat]) -> Optional[float]:
        return rule.threshold_value


class MedianPlusSdStrategy(ThresholdStrategy):
    """``threshold_value`` is a sigma multiplier around the baseline median."""

    threshold_type = ThresholdType.MEDIAN_PLUS_SD
    requires_baseline = True

    def resolve(self, rule: FlagRule, baseline: Optional[BaselineStat]) -> Optional[float]:
        if baseline is None:
            return None
        offset = rule.threshold_value * baseline.std_dev
        return baseline.median + offset if _is_upper_bound(rule) else baseline.median - offset


class PercentageOfMedianStrategy(ThresholdStrategy):
    threshold_type = ThresholdType.PERCENTAGE_OF_MEDIAN
    requires_baseline = True

    def resolve(self, rule: FlagRule, baseline: Optional[BaselineStat]) -> Optional[float]:
        if baseline is None:
            return None
        ratio = rule.threshold_value / 100
        return baseline.median * (1 + ratio) if _is_upper_bound(rule) else baseline.median * (1 - ratio)


class BetweenStrategy(ThresholdStrategy):
    """Flags values inside ``[threshold_value, threshold_value_max]``; the operator is ignored."""

    threshold_type = ThresholdType.BETWEEN

    def resolve(self, rule: FlagRule, baseline: Optional[BaselineStat]) -> Optional[float]:
        if rule.threshold_value_max is None:
            return None
        return rule.threshold_value

    def matches(self, actual: float, threshold: float, rule: FlagRule) -> bool:
        if rule.threshold_value_max is None:
            return False
        return threshold <= actual <= rule.threshold_value_max


class UnsupportedStrategy(ThresholdStrategy):
    """Reserved strategy that never resolves."""

    threshold_type = ThresholdType.PERCENTILE
    supported = False

    def resolve(self, rule: FlagRule, baseline: Optional[BaselineStat]) -> Optional[float]:
        return None


_STRATEGIES: Dict[ThresholdType, ThresholdStrategy] = {}


def _register(strategy_cls: Type[ThresholdStrategy]) -> None:
    if strategy_cls.threshold_type in _STRATEGIES:
        raise ValueError(f"Strategy '{strategy_cls.threshold_type.value}' already registered")
    _STRATEGIES[strategy_cls.threshold_type] = strategy_cls()


for _strategy_cls in (AbsoluteStrategy, MedianPlusSdStrategy, PercentageOfMedianStrategy, BetweenStrategy, UnsupportedStrategy):
    _register(_strategy_cls)


def strategy_for(rule: FlagRule) -> ThresholdStrategy:
    return _STRATEGIES[rule.threshold_type]


def resolve_threshold(rule: FlagRule, baseline: Optional[BaselineStat]) -> Optional[float]:
    """Convert ``rule``'s threshold configuration into a numeric cutoff."""

    return strategy_for(rule).resolve(rule, baseline)


def check_rule_strategies(rules: Iterable[FlagRule]) -> list[FlagRule]:
    """Log a warning for every enabled rule whose strategy can never fire.

    Returns the offending rules so callers can surface them elsewhere.
    """

    unsupported: list[FlagRule] = []
    for rule in rules:
        if not rule.is_enabled or strategy_for(rule).supported:
            continue
        logger.warning(
            f"Flag rule {rule.id} ({rule.metric}) uses unsupported threshold type "
            f"'{rule.threshold_type.value}' and will never produce flags"
        )
        unsupported.append(rule)
    return unsupported


def lookup_baseline(
    baselines: FlagBaselines,
    rule: FlagRule,
    surgeon_id: Optional[str],
    procedure_id: Optional[str],
) -> Optional[BaselineStat]:
    """Most specific baseline for the rule's scope; never crosses scopes."""

    if rule.comparison_scope is ComparisonScope.PERSONAL:
        if not surgeon_id:
            return None
        if procedure_id:
            specific = baselines.personal.get(personal_key(rule.metric, surgeon_id, procedure_id))
            if specific is not None:
                return specific
        return baselines.personal.get(personal_key(rule.metric, surgeon_id))

    if procedure_id:
        specific = baselines.facility.get(facility_key(rule.metric, procedure_id))
        if specific is not None:
            return specific
    return baselines.facility.get(facility_key(rule.metric))
