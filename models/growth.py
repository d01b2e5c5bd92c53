"""
Compound annual growth rate between two observed values.
"""
from __future__ import annotations

import math
from typing import Optional


def compound_growth_rate(
    start_value: Optional[float],
    end_value: Optional[float],
    start_year: int,
    end_year: int,
) -> Optional[float]:
    """
    (end / start) ** (1 / (end_year - start_year)) - 1

    Returns None instead of raising when either value is missing, the start
    value is not positive, the years coincide, or the result is not real
    (e.g. a negative end value over an even number of years).
    """
    if start_value is None or end_value is None:
        return None
    if start_value <= 0 or end_year == start_year:
        return None
    ratio = end_value / start_value
    if ratio < 0 or (ratio == 0 and end_year < start_year):
        return None
    rate = ratio ** (1.0 / (end_year - start_year)) - 1.0
    return rate if math.isfinite(rate) else None
