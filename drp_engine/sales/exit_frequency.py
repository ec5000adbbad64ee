"""Exit frequency: how often a product leaves a branch (share of days with sales)."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ExitFrequencyLevel(str, Enum):
    HIGH = "high"        # sales on >= 70% of the days
    MEDIUM = "medium"    # 40-69%
    LOW = "low"          # < 40%
    NONE = "none"        # no sale in the period


COVERAGE_DAYS = {
    ExitFrequencyLevel.HIGH: 7,
    ExitFrequencyLevel.MEDIUM: 14,
    ExitFrequencyLevel.LOW: 21,
    ExitFrequencyLevel.NONE: 30,
}


@dataclass(frozen=True)
class ExitFrequency:
    level: ExitFrequencyLevel
    days_with_sales: int
    period_days: int
    pct_days: float

    @property
    def coverage_days(self) -> int:
        """Suggested stock coverage for this turnover level."""
        return COVERAGE_DAYS[self.level]

    def to_dict(self) -> dict:
        return {
            "level": self.level.value,
            "days_with_sales": self.days_with_sales,
            "period_days": self.period_days,
            "pct_days": self.pct_days,
            "coverage_days": self.coverage_days,
        }


def classify_exit_frequency(days_with_sales: int, period_days: int) -> ExitFrequency:
    if period_days <= 0:
        raise ValueError(f"period_days must be positive, got {period_days}")
    pct = days_with_sales * 100 / period_days

    if days_with_sales == 0:
        level = ExitFrequencyLevel.NONE
    elif pct >= 70:
        level = ExitFrequencyLevel.HIGH
    elif pct >= 40:
        level = ExitFrequencyLevel.MEDIUM
    else:
        level = ExitFrequencyLevel.LOW

    return ExitFrequency(
        level=level,
        days_with_sales=days_with_sales,
        period_days=period_days,
        pct_days=round(pct, 1),
    )
