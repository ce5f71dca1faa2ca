"""Runtime settings for the flag engine."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Final

MIN_BASELINE_SAMPLES: Final[int] = 3
TURNOVER_MAX_MINUTES: Final[float] = 180.0
STORAGE_PRECISION: Final[int] = 1
DEFAULT_TIMEZONE: Final[str] = "UTC"


@dataclass(frozen=True)
class EngineSettings:
    """Tunables shared by baseline construction and evaluation."""

    min_baseline_samples: int = MIN_BASELINE_SAMPLES
    turnover_max_minutes: float = TURNOVER_MAX_MINUTES
    storage_precision: int = STORAGE_PRECISION
    default_timezone: str = DEFAULT_TIMEZONE

    def __post_init__(self) -> None:
        if self.min_baseline_samples < 2:
            raise ValueError("min_baseline_samples must be >= 2 for a sample standard deviation")
        if self.turnover_max_minutes <= 0:
            raise ValueError("turnover_max_minutes must be positive")
        if self.storage_precision < 0:
            raise ValueError("storage_precision must be >= 0")

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings from ``FLAG_ENGINE_*`` environment variables."""

        return cls(
            min_baseline_samples=int(os.getenv("FLAG_ENGINE_MIN_BASELINE_SAMPLES") or MIN_BASELINE_SAMPLES),
            turnover_max_minutes=float(os.getenv("FLAG_ENGINE_TURNOVER_MAX_MINUTES") or TURNOVER_MAX_MINUTES),
            storage_precision=int(os.getenv("FLAG_ENGINE_STORAGE_PRECISION") or STORAGE_PRECISION),
            default_timezone=os.getenv("FLAG_ENGINE_TIMEZONE") or DEFAULT_TIMEZONE,
        )


DEFAULT_SETTINGS = EngineSettings()
