"""Built-in icon set for the icon channel."""

from __future__ import annotations

from typing import Any

BUILTIN_ICONS: dict[str, str] = {
    "arrowUp": "▲",
    "arrowDown": "▼",
    "arrowRight": "▶",
    "circleGreen": "\U0001f7e2",
    "circleYellow": "\U0001f7e1",
    "circleRed": "\U0001f534",
    "check": "✔",
    "cross": "✖",
    "warning": "⚠",
    "flag": "⚑",
    "star": "★",
}

# Common names people type into a bound field, lower-cased.
ICON_ALIASES: dict[str, str] = {
    "up": "arrowUp",
    "↑": "arrowUp",
    "increase": "arrowUp",
    "down": "arrowDown",
    "↓": "arrowDown",
    "decrease": "arrowDown",
    "right": "arrowRight",
    "flat": "arrowRight",
    "→": "arrowRight",
    "green": "circleGreen",
    "yellow": "circleYellow",
    "amber": "circleYellow",
    "red": "circleRed",
    "ok": "check",
    "yes": "check",
    "tick": "check",
    "x": "cross",
    "no": "cross",
    "warn": "warning",
    "!": "warning",
}

_KEYS_LOWER = {key.lower(): key for key in BUILTIN_ICONS}


def resolve_icon(raw: Any) -> str | None:
    """Map a raw field value to a builtin icon key or an inline image data URI."""
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    if text.lower().startswith("data:image/"):
        return text
    if text in BUILTIN_ICONS:
        return text
    lowered = text.lower()
    return _KEYS_LOWER.get(lowered) or ICON_ALIASES.get(lowered)


def icon_glyph(icon: str | None) -> str:
    """Text glyph for a builtin key; data URIs and unknown keys give ""."""
    if not icon:
        return ""
    return BUILTIN_ICONS.get(icon, "")
