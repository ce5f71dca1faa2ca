"""Surgical case flag evaluation library."""

from .config import EngineSettings
from .engine import EvaluationContext, FlagEngine, build_evaluation_context, evaluate_cases_batch
from .evaluator import evaluate_case
from .metrics import MetricDefinition, MetricRegistry, metric_registry
from .models import (
    BaselineStat,
    CaseCompletionStats,
    CaseFlag,
    CaseWithMilestones,
    ComparisonScope,
    FlagBaselines,
    FlagRule,
    FlagType,
    MilestoneMap,
    Operator,
    ThresholdType,
)

__all__ = [
    "BaselineStat",
    "CaseCompletionStats",
    "CaseFlag",
    "CaseWithMilestones",
    "ComparisonScope",
    "EngineSettings",
    "EvaluationContext",
    "FlagBaselines",
    "FlagEngine",
    "FlagRule",
    "FlagType",
    "MetricDefinition",
    "MetricRegistry",
    "MilestoneMap",
    "Operator",
    "ThresholdType",
    "build_evaluation_context",
    "evaluate_case",
    "evaluate_cases_batch",
    "metric_registry",
]
