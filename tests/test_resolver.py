import logging

import pandas as pd
import pytest
from pydantic import ValidationError

from flag_engine.models import ComparisonScope, Operator, ThresholdType
from flag_engine.resolver import (
    build_milestone_map,
    case_from_record,
    load_cases,
    load_flag_rules,
    rule_from_record,
)
from models.case_models import CaseRecord


def _case_row(**overrides) -> dict:
    row = {
        "id": "case-1",
        "case_number": "C-0001",
        "facility_id": "facility-1",
        "scheduled_date": "2026-02-15",
        "start_time": "07:30:00",
        "surgeon_id": "surgeon-1",
        "or_room_id": "room-1",
        "local_timezone": "America/Chicago",
        "procedure_types": {"id": "proc-1", "name": "Knee arthroscopy"},
        "case_milestones": [
            {"recorded_at": "2026-02-15T13:32:00Z", "milestone_types": {"name": "patient_in"}},
            {"recorded_at": "2026-02-15T07:50:00-06:00", "facility_milestones": {"name": "incision"}},
            {"recorded_at": None, "milestone_types": {"name": "closing"}},
            {"recorded_at": "2026-02-15T15:10:00Z", "milestone_types": {"name": "patient_out"}},
            {"recorded_at": "2026-02-15T15:00:00Z"},
        ],
        "completion_stats": {"profit": 1200.5, "reimbursement": 4000, "unused_column": 1},
        "expected_reimbursement": 4200,
    }
    row.update(overrides)
    return row


def _rule_row(**overrides) -> dict:
    row = {
        "id": "rule-1",
        "facility_id": "facility-1",
        "name": "Long surgical time",
        "category": "timing",
        "metric": "surgical_time",
        "operator": "gt",
        "threshold_type": "median_plus_sd",
        "threshold_value": 2,
        "comparison_scope": "personal",
        "severity": "critical",
        "display_order": 3,
        "is_built_in": True,
    }
    row.update(overrides)
    return row


def test_milestone_map_uses_joined_names_and_utc():
    milestones = build_milestone_map(CaseRecord.model_validate(_case_row()))
    assert set(milestones) == {"patient_in", "incision", "patient_out"}
    assert milestones["patient_in"] == pd.Timestamp("2026-02-15 13:32", tz="UTC")
    assert milestones["incision"] == pd.Timestamp("2026-02-15 13:50", tz="UTC")
    assert str(milestones["incision"].tz) == "UTC"


def test_surgeon_left_at_fills_missing_milestone():
    record = CaseRecord.model_validate(_case_row(surgeon_left_at="2026-02-15T14:40:00Z"))
    assert build_milestone_map(record)["surgeon_left"] == pd.Timestamp("2026-02-15 14:40", tz="UTC")

    recorded = _case_row(surgeon_left_at="2026-02-15T14:40:00Z")
    recorded["case_milestones"].append(
        {"recorded_at": "2026-02-15T14:30:00Z", "milestone_types": {"name": "surgeon_left"}}
    )
    record = CaseRecord.model_validate(recorded)
    assert build_milestone_map(record)["surgeon_left"] == pd.Timestamp("2026-02-15 14:30", tz="UTC")


def test_unparseable_timestamp_is_dropped_with_warning(caplog):
    row = _case_row(case_milestones=[{"recorded_at": "not a time", "milestone_types": {"name": "patient_in"}}])
    with caplog.at_level(logging.WARNING, logger="flag_engine.resolver"):
        milestones = build_milestone_map(CaseRecord.model_validate(row))
    assert milestones == {}
    assert "not a time" in caplog.text


def test_case_from_record_accepts_plain_rows():
    case = case_from_record(_case_row())
    assert case.id == "case-1"
    assert case.procedure_type_id == "proc-1"
    assert case.local_timezone == "America/Chicago"
    assert case.completion_stats.profit == 1200.5
    assert case.completion_stats.or_hourly_rate is None
    assert case.expected_reimbursement == 4200
    assert case.has_patient_in_and_out()

    bare = case_from_record(_case_row(procedure_types=None, completion_stats=None, case_milestones=[]))
    assert bare.procedure_type_id is None
    assert bare.completion_stats is None
    assert not bare.has_patient_in_and_out()


def test_load_cases_requires_identifiers():
    with pytest.raises(ValidationError):
        load_cases([{"facility_id": "facility-1", "scheduled_date": "2026-02-15"}])


def test_rule_from_record_coerces_enums():
    rule = rule_from_record(_rule_row())
    assert rule.operator is Operator.GT
    assert rule.threshold_type is ThresholdType.MEDIAN_PLUS_SD
    assert rule.comparison_scope is ComparisonScope.PERSONAL
    assert rule.severity == "critical"
    assert rule.name == "Long surgical time"
    assert rule.category == "timing"


def test_rule_defaults_when_columns_missing():
    rule = rule_from_record({"id": "rule-2", "metric": "total_case_time", "threshold_value": 120})
    assert rule.operator is Operator.GT
    assert rule.threshold_type is ThresholdType.ABSOLUTE
    assert rule.comparison_scope is ComparisonScope.FACILITY
    assert rule.severity == "warning"
    assert rule.is_enabled


def test_invalid_operator_is_rejected():
    with pytest.raises(ValueError):
        rule_from_record(_rule_row(operator="eq"))


def test_load_flag_rules_drops_inactive_and_deleted_rows():
    rows = [
        _rule_row(id="kept"),
        _rule_row(id="disabled", is_enabled=False),
        _rule_row(id="inactive", is_active=False),
        _rule_row(id="deleted", deleted_at="2026-01-01T00:00:00Z"),
    ]
    rules = load_flag_rules(rows)
    assert [rule.id for rule in rules] == ["kept", "disabled"]
    assert rules[1].is_enabled is False


def test_load_flag_rules_warns_about_percentile(caplog):
    with caplog.at_level(logging.WARNING, logger="flag_engine.thresholds"):
        rules = load_flag_rules([_rule_row(id="pct", threshold_type="percentile", threshold_value=90)])
    assert [rule.id for rule in rules] == ["pct"]
    assert "pct" in caplog.text


def test_cost_category_columns_flow_through():
    case = case_from_record(_case_row(category_costs={"implants": 1850, "supplies": 0}))
    assert case.category_costs == {"implants": 1850.0, "supplies": 0.0}
    assert case_from_record(_case_row()).category_costs == {}

    rule = rule_from_record(_rule_row(metric="implant_cost", cost_category_id="implants"))
    assert rule.cost_category_id == "implants"
    assert rule_from_record(_rule_row()).cost_category_id is None
