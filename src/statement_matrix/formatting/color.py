"""Color helpers for gradient fills.

Only ``#RRGGBB`` / ``#RRGGBBAA`` hex colors take part in interpolation.
Named colors, ``rgb()`` strings and the like are still valid flat fills but
are never blended.
"""

from __future__ import annotations

import math
import re

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{6})([0-9a-fA-F]{2})?$")

RGB = tuple[int, int, int]


def parse_hex(color: str | None) -> RGB | None:
    """``"#1f77b4"`` -> ``(31, 119, 180)``; None for anything else."""
    if not isinstance(color, str):
        return None
    match = _HEX_RE.match(color.strip())
    if not match:
        return None
    digits = match.group(1)
    return (int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16))


def to_hex(rgb: RGB) -> str:
    return "#" + "".join(f"{max(0, min(255, c)):02x}" for c in rgb)


def _clamp_t(t: float) -> float:
    if t is None or math.isnan(t):
        return 0.0
    return max(0.0, min(1.0, t))


def lerp_rgb(a: RGB, b: RGB, t: float) -> RGB:
    t = _clamp_t(t)
    return tuple(int(round(x + (y - x) * t)) for x, y in zip(a, b))  # type: ignore[return-value]


def gradient_color(
    min_color: str,
    max_color: str,
    t: float,
    mid_color: str | None = None,
) -> str | None:
    """Color at position *t* in [0, 1] of a 2- or 3-stop gradient.

    Returns None when either end color is not a hex color.  A mid color that
    does not parse is ignored.
    """
    start = parse_hex(min_color)
    end = parse_hex(max_color)
    if start is None or end is None:
        return None
    t = _clamp_t(t)
    mid = parse_hex(mid_color) if mid_color else None
    if mid is None:
        return to_hex(lerp_rgb(start, end, t))
    if t <= 0.5:
        return to_hex(lerp_rgb(start, mid, t / 0.5))
    return to_hex(lerp_rgb(mid, end, (t - 0.5) / 0.5))


def is_css_color(value: object) -> bool:
    """Loose check for a usable flat fill: hex, ``rgb()``/``hsl()`` or a bare name."""
    if not isinstance(value, str):
        return False
    text = value.strip()
    if not text:
        return False
    if text.startswith("#"):
        return bool(re.fullmatch(r"#([0-9a-fA-F]{3,4}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})", text))
    if re.fullmatch(r"(rgb|rgba|hsl|hsla)\([^)]*\)", text, flags=re.IGNORECASE):
        return True
    return text.isalpha()
