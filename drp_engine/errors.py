"""Exceptions raised by the DRP engine."""

from __future__ import annotations

from typing import Any, Optional


class DRPError(Exception):
    """Base class for engine errors."""


class InvalidPeriodError(DRPError, ValueError):
    """Analysis period outside the accepted range."""

    def __init__(self, period_days: Any, min_days: int, max_days: int):
        self.period_days = period_days
        self.min_days = min_days
        self.max_days = max_days
        super().__init__(
            f"Invalid analysis period {period_days!r}: must be between {min_days} and {max_days} days"
        )


class GroupsNotLoadedError(DRPError, RuntimeError):
    """Combined-group lookups attempted before load()."""

    def __init__(self, message: str = "Combined groups not loaded; call load() first"):
        super().__init__(message)


class MinimumStockNotFoundError(DRPError, LookupError):
    def __init__(self, product_code: str, branch_code: str):
        self.product_code = product_code
        self.branch_code = branch_code
        super().__init__(f"No minimum stock record for product {product_code} at branch {branch_code}")


class JobStateError(DRPError, RuntimeError):
    """Illegal batch job state transition."""

    def __init__(self, message: str, status: Optional[str] = None):
        self.status = status
        super().__init__(message)
