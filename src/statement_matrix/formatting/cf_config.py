"""Conditional-formatting configuration.

The configuration is user-edited JSON of the shape::

    {
      "version": 2,
      "rules": [CFRule, ...],
      "surfaces": {"cell:background": CFSurface, ...}
    }

Version 1 configurations only carry rules.  Rules keep their list order,
which is also their evaluation order.  Parsing never raises: broken JSON
yields an empty config and broken rules or surfaces are dropped one by one.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from statement_matrix.layout.layout_config import load_json_object

logger = logging.getLogger(__name__)

TARGETS = ("rowHeader", "columnHeader", "cell")
CHANNELS = ("background", "fontColor", "icon")

Target = Literal["rowHeader", "columnHeader", "cell"]
Channel = Literal["background", "fontColor", "icon"]

NUMERIC_OPERATORS = (">", ">=", "<", "<=", "==", "!=", "between", "notBetween", "isBlank", "isNotBlank")
TEXT_OPERATORS = ("equals", "notEquals", "contains", "notContains", "startsWith", "endsWith")

_OPERATOR_ALIASES = {
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "eq": "==",
    "=": "==",
    "ne": "!=",
    "neq": "!=",
    "<>": "!=",
}


def surface_key(target: str, channel: str) -> str:
    return f"{target}:{channel}"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


class TextMatch(_CamelModel):
    """Header-text filter.  ``any`` matches everything."""

    mode: Literal["any", "equals", "notEquals", "contains", "startsWith", "endsWith"] = "any"
    text: str = ""

    @field_validator("mode", mode="before")
    @classmethod
    def _known_mode(cls, v: Any) -> Any:
        valid = ("any", "equals", "notEquals", "contains", "startsWith", "endsWith")
        return v if v in valid else "any"

    @field_validator("text", mode="before")
    @classmethod
    def _as_text(cls, v: Any) -> Any:
        return "" if v is None else str(v)


class CFCondition(_CamelModel):
    operator: str = ">"
    value: float | str | None = None
    value2: float | str | None = None

    @field_validator("operator", mode="before")
    @classmethod
    def _known_operator(cls, v: Any) -> Any:
        op = str(v or "").strip()
        op = _OPERATOR_ALIASES.get(op.lower(), op)
        if op not in NUMERIC_OPERATORS and op not in TEXT_OPERATORS:
            raise ValueError(f"unknown condition operator '{v}'")
        return op

    @property
    def is_text(self) -> bool:
        return self.operator in TEXT_OPERATORS


class CFStyle(_CamelModel):
    """Style delta; only the properties that are set take effect."""

    background: str | None = None
    font_color: str | None = None
    bold: bool | None = None
    italic: bool | None = None
    underline: bool | None = None
    icon: str | None = None

    @field_validator("background", "font_color", "icon", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class CFRule(_CamelModel):
    id: str | None = None
    enabled: bool = True
    target: Target = "cell"
    channel: Channel = "background"
    row_match: TextMatch = Field(default_factory=TextMatch)
    column_match: TextMatch = Field(default_factory=TextMatch)
    condition: CFCondition | None = None
    style: CFStyle = Field(default_factory=CFStyle)
    scope: Literal["self", "entireRow", "entireColumn"] = "self"

    @field_validator("id", mode="before")
    @classmethod
    def _id_text(cls, v: Any) -> Any:
        return str(v) if isinstance(v, (int, float)) and not isinstance(v, bool) else v

    @field_validator("target", "channel", "scope", mode="before")
    @classmethod
    def _default_when_missing(cls, v: Any, info) -> Any:
        if v is None or v == "":
            return {"target": "cell", "channel": "background", "scope": "self"}[info.field_name]
        return v


# ---------------------------------------------------------------------------
# Surfaces
# ---------------------------------------------------------------------------


class GradientBound(_CamelModel):
    kind: Literal["auto", "number"] = "auto"
    value: float | None = None
    color: str = "#ffffff"

    @field_validator("value", mode="before")
    @classmethod
    def _number_or_none(cls, v: Any) -> Any:
        if v is None or v == "" or isinstance(v, bool):
            return None
        try:
            return float(v)
        except (TypeError, ValueError):
            return None


class GradientSpec(_CamelModel):
    min: GradientBound = Field(default_factory=lambda: GradientBound(color="#f8696b"))
    max: GradientBound = Field(default_factory=lambda: GradientBound(color="#63be7b"))
    mid_color: str | None = None
    field: str | None = None
    empty_values: Literal["exclude", "zero"] = "exclude"


class FieldValueSpec(_CamelModel):
    field: str


class CFSurface(_CamelModel):
    """How one (target, channel) pair is styled."""

    mode: Literal["rules", "gradient", "fieldValue"] = "rules"
    gradient: GradientSpec | None = None
    field_value: FieldValueSpec | None = None

    @model_validator(mode="after")
    def _mode_has_payload(self) -> "CFSurface":
        if self.mode == "gradient" and self.gradient is None:
            self.gradient = GradientSpec()
        if self.mode == "fieldValue" and self.field_value is None:
            raise ValueError("fieldValue surface needs a fieldValue.field")
        return self


class CFConfig(_CamelModel):
    version: Literal[1, 2] = 2
    rules: list[CFRule] = Field(default_factory=list)
    surfaces: dict[str, CFSurface] = Field(default_factory=dict)

    def surface(self, target: str, channel: str) -> CFSurface | None:
        return self.surfaces.get(surface_key(target, channel))

    def uses_rules(self, target: str, channel: str) -> bool:
        surface = self.surface(target, channel)
        return surface is None or surface.mode == "rules"


# ---------------------------------------------------------------------------
# Parse / serialize
# ---------------------------------------------------------------------------


def _parse_rules(raw_rules: Any) -> list[CFRule]:
    if not isinstance(raw_rules, list):
        return []
    rules: list[CFRule] = []
    for i, raw in enumerate(raw_rules):
        try:
            rules.append(CFRule.model_validate(raw))
        except ValidationError as exc:
            logger.warning("Dropping formatting rule #%d: %s", i, exc.errors()[0].get("msg", exc))
    return rules


def _parse_surfaces(raw_surfaces: Any) -> dict[str, CFSurface]:
    if not isinstance(raw_surfaces, dict):
        return {}
    surfaces: dict[str, CFSurface] = {}
    for key, raw in raw_surfaces.items():
        target, _, channel = str(key).partition(":")
        if target not in TARGETS or channel not in CHANNELS:
            logger.warning("Dropping formatting surface with unknown key '%s'", key)
            continue
        try:
            surfaces[surface_key(target, channel)] = CFSurface.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Dropping formatting surface '%s': %s", key, exc.errors()[0].get("msg", exc))
    return surfaces


def parse_cf_config(text: Any) -> CFConfig:
    """Parse the conditional-formatting JSON; never raises."""
    data = load_json_object(text, "conditional formatting")
    if not data:
        return CFConfig()
    version = data.get("version")
    version = 1 if version in (1, "1") else 2
    rules = _parse_rules(data.get("rules"))
    surfaces = _parse_surfaces(data.get("surfaces")) if version == 2 else {}
    return CFConfig(version=version, rules=rules, surfaces=surfaces)


def serialize_cf_config(config: CFConfig) -> str:
    payload = config.model_dump(by_alias=True, mode="json")
    if config.version == 1:
        payload.pop("surfaces", None)
    return json.dumps(payload)
