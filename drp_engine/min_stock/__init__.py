"""
Dynamic minimum stock: ABC classification, trend/seasonal safety stock,
interactive calculator and full-catalog batch pipeline.
"""

from .abc_classification import ABCClass, classify_abc
from .calculator import (
    CalculationMethod,
    MinimumStockCalculator,
    MinimumStockResult,
    ProductRefreshResult,
    SalesFigures,
    compute_minimum_stock,
    seasonal_factor,
    trend_factor,
)
from .job_state import JobState, JobStateStore, JobStatus
from .batch import BatchPrecomputationPipeline, LookupTables, build_lookup_tables, format_eta

__all__ = [
    "ABCClass",
    "classify_abc",
    "CalculationMethod",
    "MinimumStockCalculator",
    "MinimumStockResult",
    "ProductRefreshResult",
    "SalesFigures",
    "compute_minimum_stock",
    "seasonal_factor",
    "trend_factor",
    "JobState",
    "JobStateStore",
    "JobStatus",
    "BatchPrecomputationPipeline",
    "LookupTables",
    "build_lookup_tables",
    "format_eta",
]
