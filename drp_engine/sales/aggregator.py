"""
Sales Aggregator
================

Period-bounded sold quantities per product (or product set) and branch.

Windows are half-open and exactly `days` long, ending at tomorrow so that
today's sales count:

    window(days, offset) = [today + 1 - offset - days, today + 1 - offset)

so window(90) and window(90, offset=90) tile window(180) without overlap.
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, timedelta
from typing import Callable, Iterable, Sequence, Union

from drp_engine.sales.exit_frequency import ExitFrequency, classify_exit_frequency
from drp_engine.sources import SalesReader, SalesWindow

logger = logging.getLogger(__name__)

ProductCodes = Union[str, Sequence[str]]


def rolling_window(today: date, days: int, offset_days: int = 0) -> SalesWindow:
    """Window of `days` days ending `offset_days` before tomorrow."""
    if days <= 0:
        raise ValueError(f"Window length must be positive, got {days}")
    if offset_days < 0:
        raise ValueError(f"Offset must be >= 0, got {offset_days}")
    end = today + timedelta(days=1 - offset_days)
    return SalesWindow(start=end - timedelta(days=days), end=end)


def month_window(year: int, month: int) -> SalesWindow:
    last_day = calendar.monthrange(year, month)[1]
    start = date(year, month, 1)
    return SalesWindow(start=start, end=start + timedelta(days=last_day))


def year_window(year: int) -> SalesWindow:
    return SalesWindow(start=date(year, 1, 1), end=date(year + 1, 1, 1))


def _as_codes(product_codes: ProductCodes) -> list:
    if isinstance(product_codes, str):
        return [product_codes]
    # Preserve order, drop duplicates so a product is never summed twice
    return list(dict.fromkeys(product_codes))


class SalesAggregator:
    """
    Read-only aggregation over a `SalesReader`.

    Args:
        reader: Source of deduplicated sales sums
        clock: Callable returning "today" (injectable for tests)
    """

    def __init__(self, reader: SalesReader, clock: Callable[[], date] = date.today):
        self.reader = reader
        self.clock = clock

    def today(self) -> date:
        return self.clock()

    def window(self, days: int, offset_days: int = 0) -> SalesWindow:
        return rolling_window(self.today(), days, offset_days)

    def sold(self, product_codes: ProductCodes, branch_code: str, days: int, offset_days: int = 0) -> float:
        """Sold quantity over the last `days` days, shifted back by `offset_days`."""
        return self.sold_in(product_codes, branch_code, self.window(days, offset_days))

    def sold_in(self, product_codes: ProductCodes, branch_code: str, window: SalesWindow) -> float:
        codes = _as_codes(product_codes)
        if not codes:
            return 0.0
        return float(self.reader.sold_quantity(codes, branch_code, window))

    def sold_in_month(self, product_code: str, branch_code: str, year: int, month: int) -> float:
        return self.sold_in(product_code, branch_code, month_window(year, month))

    def sold_in_year(self, product_code: str, branch_code: str, year: int) -> float:
        return self.sold_in(product_code, branch_code, year_window(year))

    def sold_by_branch(self, product_codes: ProductCodes, branch_codes: Iterable[str], days: int) -> dict:
        window = self.window(days)
        return {branch: self.sold_in(product_codes, branch, window) for branch in branch_codes}

    def exit_frequency(self, product_code: str, branch_code: str, period_days: int) -> ExitFrequency:
        """Share of days in the period with at least one sale."""
        days_with_sales = self.reader.sale_days(product_code, branch_code, self.window(period_days))
        return classify_exit_frequency(days_with_sales, period_days)
