"""Numeric helpers."""
import math


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up.

    Python's ``round`` rounds halves to even (``round(62.5) == 62``); uptime
    and score percentages are expected to round 62.5 to 63.
    """
    return int(math.floor(value + 0.5))


def clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, value))
