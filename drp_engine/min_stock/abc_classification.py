"""
ABC (Pareto) classification by revenue.

Products sold at a branch are ranked by revenue descending; the cumulative
revenue share decides the class:

    cumulative_pct <= 0.80  -> A
    cumulative_pct <= 0.95  -> B
    otherwise               -> C

A product absent from the ranking (no sales in the window) is class C, and so
is everything when the branch's total revenue is zero.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Mapping

import pandas as pd


class ABCClass(str, Enum):
    """ABC classification (by revenue)."""
    A = "A"  # Top revenue, up to 80% cumulative
    B = "B"  # Next 15%
    C = "C"  # Remainder / no sales


def classify_abc(
    revenue: Mapping[str, float],
    a_threshold: float = 0.80,
    b_threshold: float = 0.95,
) -> Dict[str, ABCClass]:
    """
    Classify every product of a branch.

    Args:
        revenue: product_code -> revenue (quantity x unit price) in the window
        a_threshold / b_threshold: cumulative share limits

    Returns:
        product_code -> ABCClass
    """
    if not revenue:
        return {}

    df = pd.DataFrame({"product_code": list(revenue.keys()), "revenue": list(revenue.values())})
    df["revenue"] = pd.to_numeric(df["revenue"], errors="coerce").fillna(0.0)

    total = df["revenue"].sum()
    if total <= 0:
        return {code: ABCClass.C for code in df["product_code"]}

    # Ties ranked by product code so the result does not depend on input order
    df = df.sort_values(["revenue", "product_code"], ascending=[False, True], kind="mergesort")
    df["cumulative_pct"] = df["revenue"].cumsum() / total

    def assign_abc(pct: float) -> ABCClass:
        if pct <= a_threshold:
            return ABCClass.A
        elif pct <= b_threshold:
            return ABCClass.B
        return ABCClass.C

    df["abc_class"] = df["cumulative_pct"].apply(assign_abc)
    return dict(zip(df["product_code"], df["abc_class"]))


def class_counts(classes: Mapping[str, ABCClass]) -> Dict[str, int]:
    counts = {cls.value: 0 for cls in ABCClass}
    for abc in classes.values():
        counts[ABCClass(abc).value] += 1
    return counts
