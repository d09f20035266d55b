"""Declarative layout and formula configuration.

Both arrive as user-edited JSON strings.  They are validated once, here, into
``LayoutRow`` records; anything malformed degrades to an empty configuration
and is logged instead of raised.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Literal

from pydantic import BaseModel, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

_ROW_TYPES = {"data", "calc", "blank"}


def load_json_object(text: Any, what: str) -> dict | None:
    """Parse *text* into a dict; dicts pass through, everything else is None."""
    if text is None:
        return None
    if isinstance(text, dict):
        return text
    if not isinstance(text, str) or not text.strip():
        return None
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError) as exc:
        logger.warning("Ignoring malformed %s JSON: %s", what, exc)
        return None
    if not isinstance(data, dict):
        logger.warning("Ignoring %s JSON: expected an object, got %s", what, type(data).__name__)
        return None
    return data


class LayoutRow(BaseModel):
    """One row of the declarative layout."""

    code: str
    label: str | None = None
    parent: str | None = None
    type: Literal["data", "calc", "blank"] = "data"
    order: float | None = None
    formula: str | None = None
    style: dict[str, Any] | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        row_type = str(data.get("type") or "").strip().lower()
        if row_type not in _ROW_TYPES:
            row_type = "calc" if data.get("formula") and not data.get("type") else "data"
        data["type"] = row_type
        for key in ("code", "label", "parent"):
            value = data.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                data[key] = str(value)
        if not isinstance(data.get("style"), dict):
            data["style"] = None
        return data

    @field_validator("code")
    @classmethod
    def _code_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("row code must not be blank")
        return v

    @field_validator("parent", "formula", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if v is None:
            return None
        if not isinstance(v, str):
            return None
        return v.strip() or None

    @field_validator("order", mode="before")
    @classmethod
    def _order_number(cls, v: Any) -> float | None:
        if v is None or isinstance(v, bool):
            return None
        try:
            number = float(v)
        except (TypeError, ValueError):
            return None
        return None if math.isnan(number) or math.isinf(number) else number


def parse_layout(text: Any) -> list[LayoutRow]:
    """Parse ``{"rows": [...]}``.  Invalid rows are dropped individually."""
    data = load_json_object(text, "layout")
    if not data:
        return []
    raw_rows = data.get("rows")
    if not isinstance(raw_rows, list):
        return []

    rows: list[LayoutRow] = []
    for i, raw in enumerate(raw_rows):
        try:
            rows.append(LayoutRow.model_validate(raw))
        except ValidationError as exc:
            logger.warning("Dropping layout row #%d: %s", i, exc.errors()[0].get("msg", exc))
    return rows


def parse_formulas(text: Any) -> dict[str, str]:
    """Parse ``{rowCode: formulaString}``, keeping only non-empty strings."""
    data = load_json_object(text, "formulas")
    if not data:
        return {}
    return {
        str(code): formula.strip()
        for code, formula in data.items()
        if isinstance(formula, str) and formula.strip()
    }
