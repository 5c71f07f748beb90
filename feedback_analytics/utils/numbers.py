"""Numeric helpers shared by the aggregators."""

import math
from typing import Optional, Sequence


def round_half_up(value: float, digits: int = 0) -> float:
    """
    Round with ties going towards positive infinity.

    Matches the rounding the dashboard clients apply, so 2.5 rounds to 3 and
    -2.5 rounds to -2 (unlike Python's banker's rounding).
    """
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def round_percent(value: float) -> int:
    """Round a percentage to a whole number."""
    return int(round_half_up(value))


def mean(values: Sequence[float]) -> Optional[float]:
    """Arithmetic mean, or None for an empty sequence."""
    if not values:
        return None
    return sum(values) / len(values)


def percent_change(current: Optional[float], previous: Optional[float]) -> Optional[int]:
    """Whole-number percent change, None when either side is missing or previous is 0."""
    if current is None or previous is None or previous == 0:
        return None
    return round_percent((current - previous) / previous * 100)


def is_finite_number(value: Optional[float]) -> bool:
    """True for real, finite numbers (None, NaN and infinities are not)."""
    return value is not None and math.isfinite(value)
