import json
from pathlib import Path

import pytest

from flag_engine.config import EngineSettings
from flag_engine.models import CaseFlag
from flag_engine.run_batch import flag_to_dict, parse_args, run

SURGICAL_TIMES = [40, 42, 45, 41, 43, 44, 46, 42, 160, 43]


def _case_row(index: int, minutes: int) -> dict:
    day = f"2026-02-{index + 1:02d}"
    closing_minute = 50 + minutes
    closing = f"{day}T{7 + closing_minute // 60:02d}:{closing_minute % 60:02d}:00Z"
    out_minute = closing_minute + 15
    patient_out = f"{day}T{7 + out_minute // 60:02d}:{out_minute % 60:02d}:00Z"
    return {
        "id": f"case-{index}",
        "facility_id": "facility-1",
        "scheduled_date": day,
        "start_time": "07:30",
        "surgeon_id": "surgeon-1",
        "or_room_id": "room-1",
        "case_milestones": [
            {"recorded_at": f"{day}T07:30:00Z", "milestone_types": {"name": "patient_in"}},
            {"recorded_at": f"{day}T07:50:00Z", "milestone_types": {"name": "incision"}},
            {"recorded_at": closing, "milestone_types": {"name": "closing"}},
            {"recorded_at": patient_out, "milestone_types": {"name": "patient_out"}},
        ],
    }


def _write(path: Path, payload) -> Path:
    path.write_text(json.dumps(payload))
    return path


def test_run_flags_outlier_from_json_files(tmp_path: Path):
    cases_path = _write(tmp_path / "cases.json", [_case_row(i, m) for i, m in enumerate(SURGICAL_TIMES)])
    rules_path = _write(
        tmp_path / "rules.json",
        {
            "data": [
                {
                    "id": "rule-1",
                    "metric": "surgical_time",
                    "operator": "gt",
                    "threshold_type": "median_plus_sd",
                    "threshold_value": 2,
                    "severity": "warning",
                }
            ]
        },
    )

    results = run(cases_path, rules_path, settings=EngineSettings())

    assert len(results) == 1
    assert results[0]["case_id"] == "case-8"
    assert results[0]["metric_value"] == 160.0
    assert results[0]["threshold_value"] == 117.2
    assert results[0]["flag_type"] == "threshold"
    json.dumps(results)


def test_run_with_separate_baseline_file(tmp_path: Path):
    cases_path = _write(tmp_path / "cases.json", [_case_row(8, 160)])
    baseline_path = _write(tmp_path / "history.json", [_case_row(i, m) for i, m in enumerate(SURGICAL_TIMES[:5])])
    rules_path = _write(
        tmp_path / "rules.json",
        [{"id": "rule-1", "metric": "surgical_time", "threshold_type": "median_plus_sd", "threshold_value": 2}],
    )

    assert run(cases_path, rules_path, settings=EngineSettings()) == []
    results = run(cases_path, rules_path, baseline_path=baseline_path, settings=EngineSettings())
    assert [row["case_id"] for row in results] == ["case-8"]


def test_missing_or_malformed_input_exits(tmp_path: Path):
    rules_path = _write(tmp_path / "rules.json", [])
    with pytest.raises(SystemExit):
        run(tmp_path / "absent.json", rules_path)

    bad_path = _write(tmp_path / "bad.json", {"rows": []})
    with pytest.raises(SystemExit):
        run(bad_path, rules_path)

    broken_path = tmp_path / "broken.json"
    broken_path.write_text("[{\"id\": ")
    with pytest.raises(SystemExit, match="Invalid JSON"):
        run(broken_path, rules_path)


def test_flag_to_dict_serializes_enum():
    flag = CaseFlag(
        case_id="case-1",
        facility_id="facility-1",
        severity="critical",
        flag_rule_id="rule-1",
        metric_value=12.5,
        threshold_value=10.0,
        comparison_scope="facility",
    )
    payload = flag_to_dict(flag)
    assert payload["flag_type"] == "threshold"
    assert payload["severity"] == "critical"
    assert payload["delay_type_id"] is None
    assert set(payload) >= {"case_id", "facility_id", "flag_rule_id", "metric_value", "threshold_value"}


def test_parse_args_defaults():
    args = parse_args(["--cases", "cases.json", "--rules", "rules.json"])
    assert args.cases == Path("cases.json")
    assert args.rules == Path("rules.json")
    assert args.baseline_cases is None
    assert args.workers == 1
    assert args.output is None
    assert args.log_level == "WARNING"


def test_parse_args_requires_inputs():
    with pytest.raises(SystemExit):
        parse_args(["--cases", "cases.json"])
