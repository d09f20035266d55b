"""Display formatting of cell values (display units and decimal places)."""

from __future__ import annotations

import math

DISPLAY_UNITS = ("auto", "none", "thousands", "millions", "billions")

_UNITS = {
    "thousands": (1e3, "K"),
    "millions": (1e6, "M"),
    "billions": (1e9, "bn"),
}


def resolve_unit(value: float, display_units: str) -> str:
    """Pick the concrete unit for *value*; ``auto`` scales by magnitude."""
    unit = (display_units or "auto").strip().lower()
    if unit not in DISPLAY_UNITS:
        unit = "auto"
    if unit != "auto":
        return unit
    magnitude = abs(value)
    if magnitude >= 1e9:
        return "billions"
    if magnitude >= 1e6:
        return "millions"
    if magnitude >= 1e3:
        return "thousands"
    return "none"


def format_value(value: float | None, display_units: str = "auto", decimals: int = 0) -> str:
    """Render a cell value for display.  Blank and non-finite values give ""."""
    if value is None or isinstance(value, bool):
        return ""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return ""
    if not math.isfinite(number):
        return ""

    decimals = max(0, min(int(decimals), 10))
    unit = resolve_unit(number, display_units)
    suffix = ""
    if unit in _UNITS:
        divisor, suffix = _UNITS[unit]
        number /= divisor
    text = f"{number:,.{decimals}f}"
    # "-0" after rounding reads as noise
    if text.lstrip("-").strip("0.,") == "":
        text = text.lstrip("-")
    return text + suffix
