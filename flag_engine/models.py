"""Core data models for case flag evaluation."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

import pandas as pd

MilestoneMap = Mapping[str, Optional[pd.Timestamp]]


def to_utc(value) -> Optional[pd.Timestamp]:
    """Coerce a timestamp to tz-aware UTC; naive values are taken to be UTC already."""

    if value is None or pd.isna(value):
        return None
    timestamp = pd.Timestamp(value)
    if timestamp.tzinfo is None:
        return timestamp.tz_localize("UTC")
    return timestamp.tz_convert("UTC")


class Operator(str, Enum):
    """Comparison applied between a metric value and its threshold."""

    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"


class ThresholdType(str, Enum):
    ABSOLUTE = "absolute"
    MEDIAN_PLUS_SD = "median_plus_sd"
    PERCENTAGE_OF_MEDIAN = "percentage_of_median"
    BETWEEN = "between"
    PERCENTILE = "percentile"


class ComparisonScope(str, Enum):
    FACILITY = "facility"
    PERSONAL = "personal"


class FlagType(str, Enum):
    THRESHOLD = "threshold"
    DELAY = "delay"


@dataclass(frozen=True)
class CaseCompletionStats:
    """Financial roll-up recorded once a case is completed."""

    profit: Optional[float] = None
    reimbursement: Optional[float] = None
    total_debits: Optional[float] = None
    or_time_cost: Optional[float] = None
    total_duration_minutes: Optional[float] = None
    or_hourly_rate: Optional[float] = None


@dataclass(frozen=True)
class CaseWithMilestones:
    """A case's identity plus its resolved milestone timestamps."""

    id: str
    facility_id: str
    scheduled_date: str
    start_time: Optional[str] = None
    surgeon_id: Optional[str] = None
    or_room_id: Optional[str] = None
    procedure_type_id: Optional[str] = None
    milestones: MilestoneMap = field(default_factory=dict)
    case_number: Optional[str] = None
    local_timezone: Optional[str] = None
    completion_stats: Optional[CaseCompletionStats] = None
    expected_reimbursement: Optional[float] = None
    category_costs: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "milestones", {name: to_utc(value) for name, value in self.milestones.items()})

    def milestone(self, name: str) -> Optional[pd.Timestamp]:
        value = self.milestones.get(name)
        if value is None or pd.isna(value):
            return None
        return value

    def has_patient_in_and_out(self) -> bool:
        return self.milestone("patient_in") is not None and self.milestone("patient_out") is not None


@dataclass(frozen=True)
class FlagRule:
    """Configured condition evaluated against every case."""

    id: str
    metric: str
    operator: Operator
    threshold_type: ThresholdType
    threshold_value: float
    comparison_scope: ComparisonScope = ComparisonScope.FACILITY
    severity: str = "warning"
    is_enabled: bool = True
    start_milestone: Optional[str] = None
    end_milestone: Optional[str] = None
    threshold_value_max: Optional[float] = None
    name: Optional[str] = None
    facility_id: Optional[str] = None
    category: Optional[str] = None
    cost_category_id: Optional[str] = None

    def __post_init__(self) -> None:
        # Accept raw strings from configuration rows.
        object.__setattr__(self, "operator", Operator(self.operator))
        object.__setattr__(self, "threshold_type", ThresholdType(self.threshold_type))
        object.__setattr__(self, "comparison_scope", ComparisonScope(self.comparison_scope))

    @property
    def has_milestone_pair(self) -> bool:
        return bool(self.start_milestone and self.end_milestone)


@dataclass(frozen=True)
class BaselineStat:
    """Summary statistics for one baseline key."""

    median: float
    std_dev: float
    count: int


@dataclass(frozen=True)
class FlagBaselines:
    """Facility-wide and per-surgeon baselines keyed by composite strings."""

    facility: Mapping[str, BaselineStat] = field(default_factory=dict)
    personal: Mapping[str, BaselineStat] = field(default_factory=dict)


def facility_key(metric: str, procedure_id: Optional[str] = None) -> str:
    return f"{metric}:{procedure_id}" if procedure_id else metric


def personal_key(metric: str, surgeon_id: str, procedure_id: Optional[str] = None) -> str:
    if procedure_id:
        return f"{metric}:{surgeon_id}:{procedure_id}"
    return f"{metric}:{surgeon_id}"


@dataclass(frozen=True)
class CaseFlag:
    """Standardized output row for a case that crossed a rule threshold."""

    case_id: str
    facility_id: str
    severity: str
    flag_type: FlagType = FlagType.THRESHOLD
    flag_rule_id: Optional[str] = None
    metric_value: Optional[float] = None
    threshold_value: Optional[float] = None
    comparison_scope: Optional[str] = None
    delay_type_id: Optional[str] = None
    duration_minutes: Optional[float] = None
    note: Optional[str] = None
    created_by: Optional[str] = None
