"""Tooltip items for a hovered cell."""

from __future__ import annotations

import math
from typing import Any


def format_tooltip_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return ""
        if isinstance(value, float) and value.is_integer():
            return f"{int(value):,}"
        return f"{value:,}"
    return str(value)


def build_tooltip_items(
    row_label: str | None = None,
    column_label: str | None = None,
    value_text: str | None = None,
    extra: list[tuple[str, Any]] | None = None,
) -> list[dict[str, str]]:
    """Ordered ``{"displayName", "value"}`` items: Row, Column, Value, then extras.

    Blank labels are skipped, as are extras without a name.
    """
    items: list[dict[str, str]] = []
    for name, text in (("Row", row_label), ("Column", column_label), ("Value", value_text)):
        text = str(text if text is not None else "").strip()
        if text:
            items.append({"displayName": name, "value": text})

    for entry in extra or []:
        name, value = entry
        name = str(name if name is not None else "").strip()
        if not name:
            continue
        items.append({"displayName": name, "value": format_tooltip_value(value)})
    return items
