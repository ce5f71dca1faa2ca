"""Statistical helpers shared by baseline construction and evaluation."""
from __future__ import annotations

import math
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from .config import MIN_BASELINE_SAMPLES
from .models import BaselineStat, to_utc


def summarize_values(values: Iterable[float], min_samples: int = MIN_BASELINE_SAMPLES) -> Optional[BaselineStat]:
    """Return median and sample standard deviation, or None below ``min_samples``.

    Even-length inputs use the mean of the two middle values as the median.
    The deviation uses ``ddof=1`` because baseline windows are usually small.
    """

    array = np.asarray([float(v) for v in values], dtype=float)
    array = array[~np.isnan(array)]
    if array.size < max(min_samples, 2):
        return None
    return BaselineStat(
        median=float(np.median(array)),
        std_dev=float(np.std(array, ddof=1)),
        count=int(array.size),
    )


def minutes_between(start: Optional[pd.Timestamp], end: Optional[pd.Timestamp]) -> Optional[float]:
    """Signed minutes from ``start`` to ``end``; None if either is missing.

    Naive timestamps are read as UTC.
    """

    start, end = to_utc(start), to_utc(end)
    if start is None or end is None:
        return None
    return (end - start).total_seconds() / 60.0


def round_for_storage(value: float, digits: int = 1) -> float:
    """Round half up to ``digits`` places (``round`` would round half to even)."""

    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor
