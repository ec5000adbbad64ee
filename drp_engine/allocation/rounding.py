"""
Rounding and priority helpers shared by the allocation engine.

Python's round() is banker's rounding (round(2.5) == 2); allocation
conservation needs half-up, hence `round_half_up`.
"""

from __future__ import annotations

import math
from functools import cmp_to_key
from typing import Callable, Dict, List, Sequence

# Fractions closer than this are considered tied
FRACTION_TIE_TOLERANCE = 1e-4


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def floor_to_multiple(value: float, multiple: int) -> int:
    """Largest multiple of `multiple` <= value (plain floor when multiple <= 1)."""
    step = multiple if multiple and multiple > 1 else 1
    # round() absorbs float noise such as 5.999999999 / 1 -> 6
    return int(math.floor(round(value / step, 9))) * step


def priority_key(priority: Sequence[str]) -> Callable[[str], int]:
    """Sort key: listed branches by position, unlisted ones after them."""
    positions: Dict[str, int] = {code: i for i, code in enumerate(priority)}
    fallback = len(positions)
    return lambda code: positions.get(code, fallback)


def order_by_priority(branch_codes: Sequence[str], priority: Sequence[str]) -> List[str]:
    return sorted(branch_codes, key=priority_key(priority))


def order_by_fraction(fractions: Dict[str, float], priority: Sequence[str]) -> List[str]:
    """
    Branch codes by descending lost fraction.

    Fractions within FRACTION_TIE_TOLERANCE tie and are broken by the
    priority list, so the outcome never depends on input order.
    """
    key = priority_key(priority)

    def compare(a: str, b: str) -> int:
        diff = fractions[b] - fractions[a]
        if abs(diff) < FRACTION_TIE_TOLERANCE:
            return key(a) - key(b)
        return -1 if diff < 0 else 1

    return sorted(fractions, key=cmp_to_key(compare))
