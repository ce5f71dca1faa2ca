"""Baseline statistics and cross-case context built once per batch."""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable, Mapping, Optional, Sequence

import pandas as pd

from .config import DEFAULT_SETTINGS, EngineSettings
from .extraction import extract_metric_value
from .metrics import MetricRegistry, metric_registry
from .models import (
    BaselineStat,
    CaseWithMilestones,
    FlagBaselines,
    facility_key,
    personal_key,
)
from .stats import summarize_values

logger = logging.getLogger(__name__)

_ROOM_DAY_KEYS = ["scheduled_date", "or_room_id"]
_ROOM_DAY_COLUMNS = ["case_id", "scheduled_date", "or_room_id", "start_time", "position", "patient_in", "patient_out"]


def build_baselines(
    historical_cases: Sequence[CaseWithMilestones],
    metric_names: Iterable[str],
    *,
    custom_pairs: Mapping[str, tuple[str, str]] | None = None,
    cost_categories: Mapping[str, str] | None = None,
    registry: MetricRegistry = metric_registry,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> FlagBaselines:
    """Scan ``historical_cases`` once and summarize every requested metric.

    Facility keys are ``metric`` and ``metric:procedure``; personal keys are
    ``metric:surgeon`` and ``metric:surgeon:procedure``. The broad key is
    always filled alongside the narrow one so lookups can fall back within a
    scope. Keys with fewer than ``settings.min_baseline_samples`` values are
    left out entirely.

    ``cost_categories`` maps a rule metric to the cost category whose
    per-case amount it baselines; those amounts may be zero or negative.
    """

    custom_pairs = custom_pairs or {}
    cost_categories = cost_categories or {}
    pairs: dict[str, tuple[Optional[str], Optional[str]]] = {}
    for metric in dict.fromkeys(metric_names):
        if metric in cost_categories:
            continue
        definition = registry.get(metric)
        if definition is not None:
            if not definition.baseline_eligible:
                continue
            pair = definition.milestone_pair or (None, None)
        elif metric in custom_pairs:
            pair = custom_pairs[metric]
        else:
            logger.debug(f"No baseline definition for metric {metric!r}; skipping")
            continue
        pairs[metric] = pair

    facility_values: dict[str, list[float]] = defaultdict(list)
    personal_values: dict[str, list[float]] = defaultdict(list)

    for case in historical_cases:
        surgeon_id = case.surgeon_id
        procedure_id = case.procedure_type_id
        values: list[tuple[str, float]] = []
        for metric, (start, end) in pairs.items():
            value = extract_metric_value(case.milestones, metric, start, end, case, registry=registry)
            if value is None:
                continue
            if value <= 0 and not registry.allows_non_positive(metric):
                continue
            values.append((metric, value))
        for metric, category_id in cost_categories.items():
            cost = case.category_costs.get(category_id)
            if cost is not None:
                values.append((metric, float(cost)))

        for metric, value in values:
            facility_values[facility_key(metric, procedure_id)].append(value)
            if procedure_id:
                facility_values[facility_key(metric)].append(value)

            if surgeon_id:
                personal_values[personal_key(metric, surgeon_id, procedure_id)].append(value)
                if procedure_id:
                    personal_values[personal_key(metric, surgeon_id)].append(value)

    return FlagBaselines(
        facility=_to_stats(facility_values, settings.min_baseline_samples),
        personal=_to_stats(personal_values, settings.min_baseline_samples),
    )


def _to_stats(values_by_key: Mapping[str, list[float]], min_samples: int) -> dict[str, BaselineStat]:
    stats: dict[str, BaselineStat] = {}
    for key, values in values_by_key.items():
        summary = summarize_values(values, min_samples)
        if summary is not None:
            stats[key] = summary
    return stats


def _room_day_frame(cases: Sequence[CaseWithMilestones]) -> pd.DataFrame:
    """Return one row per roomed case, ordered by room-day then start time.

    Missing start times sort first; ties keep their input order.
    """

    rows = [
        {
            "case_id": case.id,
            "scheduled_date": case.scheduled_date,
            "or_room_id": case.or_room_id,
            "start_time": case.start_time or "",
            "position": position,
            "patient_in": case.milestone("patient_in"),
            "patient_out": case.milestone("patient_out"),
        }
        for position, case in enumerate(cases)
        if case.or_room_id
    ]
    frame = pd.DataFrame(rows, columns=_ROOM_DAY_COLUMNS)
    if frame.empty:
        return frame
    frame["patient_in"] = pd.to_datetime(frame["patient_in"], utc=True)
    frame["patient_out"] = pd.to_datetime(frame["patient_out"], utc=True)
    return frame.sort_values(_ROOM_DAY_KEYS + ["start_time", "position"]).reset_index(drop=True)


def _turnover_gaps(
    cases: Sequence[CaseWithMilestones],
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> pd.Series:
    """Valid gaps (minutes) from the previous case's patient_out, indexed by case id."""

    frame = _room_day_frame(cases)
    if frame.empty:
        return pd.Series(dtype=float)
    previous_out = frame.groupby(_ROOM_DAY_KEYS, sort=False)["patient_out"].shift(1)
    gaps = (frame["patient_in"] - previous_out).dt.total_seconds() / 60.0
    gaps.index = pd.Index(frame["case_id"].to_numpy(), name="case_id")
    valid = (gaps > 0) & (gaps < settings.turnover_max_minutes)
    return gaps[valid].astype(float)


def build_turnover_baseline(
    historical_cases: Sequence[CaseWithMilestones],
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> Optional[BaselineStat]:
    """Facility-wide turnover statistics across all room-days."""

    gaps = _turnover_gaps(historical_cases, settings)
    return summarize_values(gaps.tolist(), settings.min_baseline_samples)


def compute_turnovers_per_case(
    cases: Sequence[CaseWithMilestones],
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> dict[str, float]:
    """Turnover before each case that follows another in the same room-day."""

    gaps = _turnover_gaps(cases, settings)
    return {str(case_id): float(gap) for case_id, gap in gaps.items()}


def identify_first_cases(cases: Sequence[CaseWithMilestones]) -> frozenset[str]:
    """Ids of the earliest-scheduled case in each (date, room) group."""

    frame = _room_day_frame(cases)
    if frame.empty:
        return frozenset()
    scheduled = frame[frame["start_time"] != ""]
    firsts = scheduled.drop_duplicates(subset=_ROOM_DAY_KEYS, keep="first")
    return frozenset(firsts["case_id"].astype(str))
