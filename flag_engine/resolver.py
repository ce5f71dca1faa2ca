"""Convert raw case and rule rows into engine types."""
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

import pandas as pd

from models.case_models import (
    CaseCompletionStatsRecord,
    CaseRecord,
    FlagRuleRecord,
)

from .models import CaseCompletionStats, CaseWithMilestones, FlagRule
from .thresholds import check_rule_strategies

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Optional[str]) -> Optional[pd.Timestamp]:
    if not value:
        return None
    try:
        parsed = pd.to_datetime(value, utc=True)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring unparseable timestamp {value!r}")
        return None
    return None if pd.isna(parsed) else parsed


def build_milestone_map(record: CaseRecord) -> dict[str, Optional[pd.Timestamp]]:
    """Map milestone name to its recorded timestamp.

    ``surgeon_left_at`` on the case row fills ``surgeon_left`` when no such
    milestone was recorded.
    """

    milestones: dict[str, Optional[pd.Timestamp]] = {}
    for entry in record.case_milestones:
        name = entry.name
        if not name:
            continue
        timestamp = _parse_timestamp(entry.recorded_at)
        if timestamp is None:
            continue
        milestones[name] = timestamp

    if milestones.get("surgeon_left") is None and record.surgeon_left_at:
        surgeon_left = _parse_timestamp(record.surgeon_left_at)
        if surgeon_left is not None:
            milestones["surgeon_left"] = surgeon_left
    return milestones


def _completion_stats(record: Optional[CaseCompletionStatsRecord]) -> Optional[CaseCompletionStats]:
    if record is None:
        return None
    return CaseCompletionStats(**record.model_dump())


def case_from_record(record: CaseRecord | Mapping[str, Any]) -> CaseWithMilestones:
    if not isinstance(record, CaseRecord):
        record = CaseRecord.model_validate(record)
    return CaseWithMilestones(
        id=record.id,
        facility_id=record.facility_id,
        scheduled_date=record.scheduled_date,
        start_time=record.start_time,
        surgeon_id=record.surgeon_id,
        or_room_id=record.or_room_id,
        procedure_type_id=record.procedure_types.id if record.procedure_types else None,
        milestones=build_milestone_map(record),
        case_number=record.case_number,
        local_timezone=record.local_timezone,
        completion_stats=_completion_stats(record.completion_stats),
        expected_reimbursement=record.expected_reimbursement,
        category_costs=dict(record.category_costs),
    )


def rule_from_record(record: FlagRuleRecord | Mapping[str, Any]) -> FlagRule:
    if not isinstance(record, FlagRuleRecord):
        record = FlagRuleRecord.model_validate(record)
    return FlagRule(
        id=record.id,
        metric=record.metric,
        operator=record.operator,
        threshold_type=record.threshold_type,
        threshold_value=record.threshold_value,
        comparison_scope=record.comparison_scope,
        severity=record.severity,
        is_enabled=record.is_enabled,
        start_milestone=record.start_milestone,
        end_milestone=record.end_milestone,
        threshold_value_max=record.threshold_value_max,
        name=record.name,
        facility_id=record.facility_id,
        category=record.category,
        cost_category_id=record.cost_category_id,
    )


def load_cases(records: Iterable[CaseRecord | Mapping[str, Any]]) -> list[CaseWithMilestones]:
    return [case_from_record(record) for record in records]


def load_flag_rules(records: Iterable[FlagRuleRecord | Mapping[str, Any]]) -> list[FlagRule]:
    """Convert rule rows, dropping inactive or soft-deleted ones."""

    rules: list[FlagRule] = []
    for record in records:
        if not isinstance(record, FlagRuleRecord):
            record = FlagRuleRecord.model_validate(record)
        if not record.is_active or record.deleted_at:
            continue
        rules.append(rule_from_record(record))
    check_rule_strategies(rules)
    return rules
