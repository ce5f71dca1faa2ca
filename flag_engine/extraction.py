"""Metric extraction from a case's milestone map."""
from __future__ import annotations

from typing import Optional

import pandas as pd

from .config import DEFAULT_TIMEZONE
from .metrics import MetricRegistry, metric_registry
from .models import CaseWithMilestones, MilestoneMap
from .stats import minutes_between


def scheduled_start(
    case: Optional[CaseWithMilestones],
    default_timezone: str = DEFAULT_TIMEZONE,
) -> Optional[pd.Timestamp]:
    """Combine the scheduled date and start time into a UTC instant.

    The wall-clock time is interpreted in the case's local timezone, falling
    back to ``default_timezone``. Seconds in the start time are ignored.
    On DST changes an ambiguous time is read as daylight time and a
    nonexistent one moves forward to the first valid instant.
    """

    if case is None or not case.scheduled_date or not case.start_time:
        return None
    try:
        hours, minutes = (int(part) for part in case.start_time.split(":")[:2])
        day = pd.Timestamp(case.scheduled_date).normalize()
        local = day + pd.Timedelta(hours=hours, minutes=minutes)
        if local.tzinfo is None:
            local = local.tz_localize(
                case.local_timezone or default_timezone,
                ambiguous=True,
                nonexistent="shift_forward",
            )
        return local.tz_convert("UTC")
    except (KeyError, TypeError, ValueError):
        return None


def extract_fcots_delay(
    milestones: MilestoneMap,
    case: Optional[CaseWithMilestones],
    default_timezone: str = DEFAULT_TIMEZONE,
) -> Optional[float]:
    """Minutes ``patient_in`` is later than scheduled (<= 0 means on time)."""

    scheduled = scheduled_start(case, default_timezone)
    return minutes_between(scheduled, milestones.get("patient_in"))


def extract_metric_value(
    milestones: MilestoneMap,
    metric: str,
    start_milestone: Optional[str] = None,
    end_milestone: Optional[str] = None,
    case: Optional[CaseWithMilestones] = None,
    *,
    registry: MetricRegistry = metric_registry,
) -> Optional[float]:
    """Return the metric value in minutes (or native units), or None if it cannot be computed."""

    if start_milestone and end_milestone:
        return minutes_between(milestones.get(start_milestone), milestones.get(end_milestone))

    definition = registry.get(metric)
    if definition is None:
        return None
    pair = definition.milestone_pair
    if pair is not None:
        return minutes_between(milestones.get(pair[0]), milestones.get(pair[1]))
    if definition.extractor is not None:
        return definition.extractor(milestones, case)
    # Cross-case metrics are resolved from batch context, not from one case.
    return None
