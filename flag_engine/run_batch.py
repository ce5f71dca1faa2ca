"""Command-line utility for evaluating flag rules over a batch of cases.

The tool expects JSON files holding lists of raw rows::

    cases.json  -> [{"id": "c1", "facility_id": "f1", "scheduled_date": "2026-02-15",
                     "start_time": "07:30", "or_room_id": "r1",
                     "case_milestones": [{"recorded_at": "2026-02-15T07:32:00Z",
                                          "milestone_types": {"name": "patient_in"}}, ...]},
                    ...]
    rules.json  -> [{"id": "rule-1", "metric": "surgical_time", "operator": "gt",
                     "threshold_type": "median_plus_sd", "threshold_value": 2}, ...]

Use ``--baseline-cases`` to compute baselines from a separate (e.g. trailing)
window instead of the evaluated cases themselves. Flags are written as JSON to
stdout or to ``--output`` if provided.
"""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

from flag_engine.config import EngineSettings
from flag_engine.engine import FlagEngine
from flag_engine.models import CaseFlag
from flag_engine.resolver import load_cases, load_flag_rules


def _load_rows(path: Path) -> list[dict[str, Any]]:
    if not path.is_file():
        raise SystemExit(f"Input file not found: {path}")
    with path.open() as handle:
        try:
            rows = json.load(handle)
        except json.JSONDecodeError as exc:
            raise SystemExit(f"Invalid JSON in {path}: {exc}") from exc
    if isinstance(rows, dict) and "data" in rows:
        rows = rows["data"]
    if not isinstance(rows, list):
        raise SystemExit(f"Expected a JSON list of rows in {path}")
    return rows


def flag_to_dict(flag: CaseFlag) -> dict:
    return {
        "case_id": flag.case_id,
        "facility_id": flag.facility_id,
        "flag_type": flag.flag_type.value,
        "flag_rule_id": flag.flag_rule_id,
        "metric_value": flag.metric_value,
        "threshold_value": flag.threshold_value,
        "comparison_scope": flag.comparison_scope,
        "delay_type_id": flag.delay_type_id,
        "duration_minutes": flag.duration_minutes,
        "severity": flag.severity,
        "note": flag.note,
        "created_by": flag.created_by,
    }


def run(
    cases_path: Path,
    rules_path: Path,
    *,
    baseline_path: Path | None = None,
    workers: int = 1,
    settings: EngineSettings | None = None,
) -> list[dict]:
    cases = load_cases(_load_rows(cases_path))
    rules = load_flag_rules(_load_rows(rules_path))
    baseline_cases = load_cases(_load_rows(baseline_path)) if baseline_path else None

    engine = FlagEngine(settings=settings or EngineSettings.from_env(), workers=workers)
    flags = engine.evaluate_batch(cases, rules, baseline_cases=baseline_cases)
    return [flag_to_dict(flag) for flag in flags]


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Evaluate case flag rules in batch")
    parser.add_argument("--cases", type=Path, required=True, help="JSON file with case rows to evaluate")
    parser.add_argument("--rules", type=Path, required=True, help="JSON file with flag rule rows")
    parser.add_argument(
        "--baseline-cases",
        type=Path,
        help="Optional JSON file with historical case rows used only for baselines",
    )
    parser.add_argument("--workers", type=int, default=1, help="Threads used for per-case evaluation")
    parser.add_argument("--output", type=Path, help="Optional output JSON file")
    parser.add_argument("--indent", type=int, default=None, help="Pretty-print JSON with the given indent")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, WARNING, ...)")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:  # pragma: no cover - CLI entry point
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    results = run(args.cases, args.rules, baseline_path=args.baseline_cases, workers=args.workers)

    output_text = json.dumps(results, indent=args.indent)
    if args.output:
        args.output.write_text(output_text)
    else:
        print(output_text)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
