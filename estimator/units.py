"""
Unit and formatting helpers shared by calculator definitions and reporting.

All helpers are pure functions over floats. Lengths are feet unless a name
says otherwise; volumes convert through cubic feet.
"""

from __future__ import annotations

import math
from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Any, Optional


FOOT_TO_METER = 0.3048
INCH_TO_FOOT = 1.0 / 12.0
YARD3_TO_FT3 = 27.0

QUANTITY_PRECISION = 2


def feet_to_meters(value: float) -> float:
    return value * FOOT_TO_METER


def inches_to_feet(value: float) -> float:
    return value * INCH_TO_FOOT


def cubic_feet_to_cubic_yards(value: float) -> float:
    return value / YARD3_TO_FT3


def area_sq_ft(length_ft: float, width_ft: float) -> float:
    return length_ft * width_ft


def volume_ft3(length_ft: float, width_ft: float, thickness_in: float) -> float:
    """Slab-style volume: plan area times a thickness given in inches."""
    return length_ft * width_ft * inches_to_feet(thickness_in)


def volume_yd3(length_ft: float, width_ft: float, thickness_in: float) -> float:
    return cubic_feet_to_cubic_yards(volume_ft3(length_ft, width_ft, thickness_in))


def apply_waste(value: float, waste_percent: float) -> float:
    """Grow a quantity by a waste allowance expressed in percent (5 -> +5%)."""
    return value * (1 + waste_percent / 100.0)


def to_unit(value: float, unit: str) -> float:
    if unit == "m":
        return feet_to_meters(value)
    return value


def round_half_up(value: float, precision: int = 0) -> float:
    """
    Round halves away from zero.

    Python's round() uses banker's rounding, which makes 2.5 -> 2; estimates
    are rounded the way a spreadsheet would.

    Raises:
        ValueError: value is infinite or NaN
    """
    if not math.isfinite(value):
        raise ValueError(f"cannot round non-finite value {value!r}")
    exact = Decimal(repr(value))
    if exact.as_tuple().exponent >= -precision:
        # no digits below the requested precision
        return float(value)
    if exact.adjusted() < -precision - 1:
        return 0.0

    quantum = Decimal(1).scaleb(-precision)
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, exact.adjusted() + precision + 2)
        rounded = exact.quantize(quantum, rounding=ROUND_HALF_UP)
    return float(rounded)


def round_currency(value: float) -> int:
    """Round a currency amount to the nearest whole unit."""
    return int(round_half_up(value, 0))


def round_quantity(value: float) -> float:
    return round_half_up(value, QUANTITY_PRECISION)


def parse_number(raw: Any) -> Optional[float]:
    """
    Parse user-entered numbers such as ``"1,250"`` or ``" 4.5 "``.

    Returns None for blank or unparseable input and for non-finite values.
    Booleans are not numbers.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        text = str(raw).strip().replace(",", "")
        if not text:
            return None
        try:
            value = float(text)
        except ValueError:
            return None
    return value if math.isfinite(value) else None


def format_number(value: float, max_decimals: int = 2, min_decimals: int = 0) -> str:
    """Format with thousands separators, trimming trailing zeros down to min_decimals."""
    text = f"{round_half_up(value, max_decimals):,.{max_decimals}f}"
    if max_decimals > min_decimals and "." in text:
        whole, frac = text.split(".")
        frac = frac.rstrip("0")
        if len(frac) < min_decimals:
            frac = frac.ljust(min_decimals, "0")
        text = f"{whole}.{frac}" if frac else whole
    return text


def format_currency(value: float, decimals: int = 2) -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}${format_number(abs(value), decimals, decimals)}"


def format_percent(rate: float, decimals: int = 1) -> str:
    return f"{rate * 100:.{decimals}f}%"
