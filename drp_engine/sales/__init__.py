"""Sales aggregation over deduplicated movement history."""

from .aggregator import SalesAggregator, month_window, rolling_window, year_window
from .exit_frequency import ExitFrequency, ExitFrequencyLevel, classify_exit_frequency

__all__ = [
    "SalesAggregator",
    "rolling_window",
    "month_window",
    "year_window",
    "ExitFrequency",
    "ExitFrequencyLevel",
    "classify_exit_frequency",
]
