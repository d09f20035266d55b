"""Conditional-format engine — resolves a style for every displayed target.

Three targets (row headers, column headers, value cells) and three channels
(background, font color, icon).  Per (target, channel) a surface picks the
mode:

* ``rules``       ordered predicates, last-write-wins per style property
* ``gradient``    color interpolated over a numeric range
* ``fieldValue``  color or icon read straight from a bound field

A channel whose surface is not ``rules`` ignores the rules written for it.
The engine works on a finished ``MatrixModel`` and never modifies it.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

from statement_matrix.formatting.cf_config import (
    CHANNELS,
    CFCondition,
    CFConfig,
    CFRule,
    CFStyle,
    CFSurface,
    GradientSpec,
    TextMatch,
)
from statement_matrix.formatting.color import gradient_color, is_css_color
from statement_matrix.formatting.icons import icon_glyph, resolve_icon
from statement_matrix.matrix.models import ColumnKey, MatrixModel, coerce_number, is_blank

logger = logging.getLogger(__name__)

_CHANNEL_PROPERTY = {"background": "background", "fontColor": "font_color", "icon": "icon"}


@dataclass
class ResolvedStyle:
    background: str | None = None
    font_color: str | None = None
    icon: str | None = None
    bold: bool | None = None
    italic: bool | None = None
    underline: bool | None = None

    def apply(self, delta: CFStyle, skip: frozenset[str] = frozenset()) -> None:
        """Overwrite every property the delta defines, except those in *skip*."""
        for name in ("background", "font_color", "icon", "bold", "italic", "underline"):
            if name in skip:
                continue
            value = getattr(delta, name)
            if value is not None:
                setattr(self, name, value)

    def set_channel(self, channel: str, value: str | None) -> None:
        if channel == "background":
            self.background = value
        elif channel == "fontColor":
            self.font_color = value
        elif channel == "icon":
            self.icon = value

    @property
    def is_empty(self) -> bool:
        return all(v is None for v in self.__dict__.values())

    def to_dict(self) -> dict:
        payload = {
            "background": self.background,
            "fontColor": self.font_color,
            "icon": self.icon,
            "iconGlyph": icon_glyph(self.icon) or None,
            "bold": self.bold,
            "italic": self.italic,
            "underline": self.underline,
        }
        return {k: v for k, v in payload.items() if v is not None}


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def _text_matches(match: TextMatch, candidates: list[str]) -> bool:
    """Case-insensitive match of *match* against any candidate text.

    ``notEquals`` passes only when no candidate equals the text.
    """
    if match.mode == "any":
        return True
    needle = match.text.strip().lower()
    texts = [c.strip().lower() for c in candidates if c is not None]
    if match.mode == "notEquals":
        return all(t != needle for t in texts)
    for text in texts:
        if match.mode == "equals" and text == needle:
            return True
        if match.mode == "contains" and needle in text:
            return True
        if match.mode == "startsWith" and text.startswith(needle):
            return True
        if match.mode == "endsWith" and text.endswith(needle):
            return True
    return False


def _compare_number(condition: CFCondition, value: float | None) -> bool:
    op = condition.operator
    if op == "isBlank":
        return value is None
    if op == "isNotBlank":
        return value is not None
    if value is None:
        return False
    a = coerce_number(condition.value)
    if math.isnan(a):
        return False
    if op in ("between", "notBetween"):
        b = coerce_number(condition.value2)
        if math.isnan(b):
            return False
        lo, hi = min(a, b), max(a, b)
        inside = lo <= value <= hi
        return inside if op == "between" else not inside
    if op == ">":
        return value > a
    if op == ">=":
        return value >= a
    if op == "<":
        return value < a
    if op == "<=":
        return value <= a
    if op == "==":
        return value == a
    return value != a


def _compare_text(condition: CFCondition, text: str | None) -> bool:
    subject = (text or "").strip().lower()
    needle = "" if condition.value is None else str(condition.value).strip().lower()
    op = condition.operator
    if op == "equals":
        return subject == needle
    if op == "notEquals":
        return subject != needle
    if op == "contains":
        return needle in subject
    if op == "notContains":
        return needle not in subject
    if op == "startsWith":
        return subject.startswith(needle)
    return subject.endswith(needle)


def condition_holds(condition: CFCondition | None, value: float | None, text: str | None) -> bool:
    """Evaluate a rule condition against a numeric value and/or display text."""
    if condition is None:
        return True
    if condition.is_text:
        return _compare_text(condition, text)
    if value is None and text is not None and condition.operator not in ("isBlank", "isNotBlank"):
        number = coerce_number(text)
        value = None if math.isnan(number) else number
    if condition.operator in ("isBlank", "isNotBlank") and value is None and text is not None:
        return _compare_number(condition, None if is_blank(text) else 0.0)
    return _compare_number(condition, value)


def column_texts(column: ColumnKey) -> list[str]:
    """Texts a column-match is tested against: each level, the leaf, the full label."""
    return [*column.levels, column.leaf, column.label]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ConditionalFormatEngine:
    """Resolves styles for one finished model.

    *visible_rows* is the render context (expanded rows currently on screen);
    automatic gradient bounds are taken over those rows only.  By default
    every row of the flattened model counts as visible.
    """

    def __init__(
        self,
        config: CFConfig | None,
        model: MatrixModel,
        visible_rows: list[str] | None = None,
    ):
        self.config = config or CFConfig()
        self.model = model
        if visible_rows is None:
            visible_rows = [node.code for node in model.rows]
        self.visible_rows = [code for code in visible_rows if code in model.nodes]
        self._rules = [rule for rule in self.config.rules if rule.enabled]
        self._ranges: dict[tuple, tuple[float, float] | None] = {}
        # Style properties owned by a gradient/fieldValue surface, per target.
        self._surface_owned = {
            target: frozenset(
                _CHANNEL_PROPERTY[channel] for channel in CHANNELS
                if not self.config.uses_rules(target, channel)
            )
            for target in ("cell", "rowHeader", "columnHeader")
        }

    # -- rules --------------------------------------------------------------

    def _row_label(self, row_code: str) -> str:
        node = self.model.nodes.get(row_code)
        return node.label if node is not None else row_code

    def _row_header_match(self, rule: CFRule, row_code: str) -> bool:
        label = self._row_label(row_code)
        return (
            _text_matches(rule.row_match, [label])
            and condition_holds(rule.condition, None, label)
        )

    def _column_header_match(self, rule: CFRule, column: ColumnKey) -> bool:
        return (
            _text_matches(rule.column_match, column_texts(column))
            and condition_holds(rule.condition, None, column.label)
        )

    def _cell_match(self, rule: CFRule, row_code: str, column: ColumnKey) -> bool:
        if not _text_matches(rule.row_match, [self._row_label(row_code)]):
            return False
        if not _text_matches(rule.column_match, column_texts(column)):
            return False
        condition = rule.condition
        if condition is not None and condition.operator in ("isBlank", "isNotBlank"):
            value = self.model.stored_value(row_code, column)
        else:
            value = self.model.value(row_code, column)
        raw = self.model.raw(row_code, column)
        text = None if raw is None else str(raw)
        return condition_holds(condition, value, text)

    # -- surfaces -----------------------------------------------------------

    def _range(self, key: tuple, numbers: list[float]) -> tuple[float, float] | None:
        if key not in self._ranges:
            self._ranges[key] = (min(numbers), max(numbers)) if numbers else None
        return self._ranges[key]

    def _counted_rows(self) -> list[str]:
        rows = []
        for code in self.visible_rows:
            node = self.model.nodes[code]
            if node.type == "blank" or node.is_total:
                continue
            rows.append(code)
        return rows

    @staticmethod
    def _number(raw: Any, empty_values: str) -> float | None:
        number = coerce_number(raw)
        if math.isnan(number):
            return 0.0 if empty_values == "zero" else None
        return number

    def _cell_gradient_number(self, spec: GradientSpec, row_code: str, column: ColumnKey) -> float | None:
        if spec.field:
            raw = self.model.cell_field(row_code, column, spec.field)
        else:
            raw = self.model.stored_value(row_code, column)
        return self._number(raw, spec.empty_values)

    def _auto_range(self, target: str, channel: str, spec: GradientSpec, column: ColumnKey | None):
        if target == "cell":
            scope = spec.field or (column.leaf if column is not None else "")
            key = (target, channel, scope)
            if key not in self._ranges:
                numbers = []
                for code in self._counted_rows():
                    for col in self.model.columns:
                        if not spec.field and col.leaf != scope:
                            continue
                        n = self._cell_gradient_number(spec, code, col)
                        if n is not None:
                            numbers.append(n)
                self._range(key, numbers)
            return self._ranges[key]

        key = (target, channel, spec.field)
        if key not in self._ranges:
            if target == "rowHeader":
                raws = [self.model.row_field(code, spec.field) for code in self._counted_rows()]
            else:
                raws = [self.model.column_field(col, spec.field) for col in self.model.columns]
            numbers = [n for n in (self._number(r, spec.empty_values) for r in raws) if n is not None]
            self._range(key, numbers)
        return self._ranges[key]

    def _gradient(
        self,
        target: str,
        channel: str,
        spec: GradientSpec,
        value: float | None,
        column: ColumnKey | None = None,
    ) -> str | None:
        if value is None or channel == "icon":
            return None
        auto = self._auto_range(target, channel, spec, column)
        lo = spec.min.value if spec.min.kind == "number" and spec.min.value is not None else None
        hi = spec.max.value if spec.max.kind == "number" and spec.max.value is not None else None
        if lo is None or math.isnan(lo):
            lo = auto[0] if auto else None
        if hi is None or math.isnan(hi):
            hi = auto[1] if auto else None
        if lo is None or hi is None:
            return None
        t = 0.0 if hi == lo else (value - lo) / (hi - lo)
        return gradient_color(spec.min.color, spec.max.color, t, spec.mid_color)

    @staticmethod
    def _field_value(channel: str, raw: Any) -> str | None:
        if channel == "icon":
            return resolve_icon(raw)
        if is_blank(raw):
            return None
        text = str(raw).strip()
        return text if is_css_color(text) else None

    def _apply_surface(
        self,
        style: ResolvedStyle,
        target: str,
        channel: str,
        surface: CFSurface,
        gradient_value,
        field_lookup,
        column: ColumnKey | None = None,
    ) -> None:
        if surface.mode == "gradient" and surface.gradient is not None:
            spec = surface.gradient
            color = self._gradient(target, channel, spec, gradient_value(spec), column)
            if color is not None:
                style.set_channel(channel, color)
        elif surface.mode == "fieldValue" and surface.field_value is not None:
            resolved = self._field_value(channel, field_lookup(surface.field_value.field))
            if resolved is not None:
                style.set_channel(channel, resolved)

    # -- public -------------------------------------------------------------

    def resolve_cell(self, row_code: str, column: ColumnKey) -> ResolvedStyle:
        style = ResolvedStyle()
        if row_code not in self.model.nodes:
            return style

        for rule in self._rules:
            if not self.config.uses_rules("cell", rule.channel):
                continue
            if rule.target == "cell":
                matched = self._cell_match(rule, row_code, column)
            elif rule.target == "rowHeader" and rule.scope == "entireRow":
                matched = self._row_header_match(rule, row_code)
            elif rule.target == "columnHeader" and rule.scope == "entireColumn":
                matched = self._column_header_match(rule, column)
            else:
                continue
            if matched:
                style.apply(rule.style, self._surface_owned["cell"])

        for channel in CHANNELS:
            surface = self.config.surface("cell", channel)
            if surface is None or surface.mode == "rules":
                continue
            self._apply_surface(
                style, "cell", channel, surface,
                lambda spec: self._cell_gradient_number(spec, row_code, column),
                lambda name: self.model.cell_field(row_code, column, name),
                column,
            )
        return style

    def resolve_row_header(self, row_code: str) -> ResolvedStyle:
        style = ResolvedStyle()
        if row_code not in self.model.nodes:
            return style

        for rule in self._rules:
            if rule.target != "rowHeader" or not self.config.uses_rules("rowHeader", rule.channel):
                continue
            if self._row_header_match(rule, row_code):
                style.apply(rule.style, self._surface_owned["rowHeader"])

        for channel in CHANNELS:
            surface = self.config.surface("rowHeader", channel)
            if surface is None or surface.mode == "rules":
                continue
            self._apply_surface(
                style, "rowHeader", channel, surface,
                lambda spec: self._number(self.model.row_field(row_code, spec.field), spec.empty_values)
                if spec.field else None,
                lambda name: self.model.row_field(row_code, name),
            )
        return style

    def resolve_column_header(self, column: ColumnKey) -> ResolvedStyle:
        style = ResolvedStyle()

        for rule in self._rules:
            if rule.target != "columnHeader" or not self.config.uses_rules("columnHeader", rule.channel):
                continue
            if self._column_header_match(rule, column):
                style.apply(rule.style, self._surface_owned["columnHeader"])

        for channel in CHANNELS:
            surface = self.config.surface("columnHeader", channel)
            if surface is None or surface.mode == "rules":
                continue
            self._apply_surface(
                style, "columnHeader", channel, surface,
                lambda spec: self._number(self.model.column_field(column, spec.field), spec.empty_values)
                if spec.field else None,
                lambda name: self.model.column_field(column, name),
            )
        return style

    def resolve_all(self) -> dict:
        """Every non-empty style of the model, keyed for the rendering payload."""
        cells: dict[str, dict[str, dict]] = {}
        rows: dict[str, dict] = {}
        for node in self.model.rows:
            header = self.resolve_row_header(node.code)
            if not header.is_empty:
                rows[node.code] = header.to_dict()
            for col in self.model.columns:
                cell = self.resolve_cell(node.code, col)
                if not cell.is_empty:
                    cells.setdefault(node.code, {})[col.key] = cell.to_dict()
        columns = {}
        for col in self.model.columns:
            header = self.resolve_column_header(col)
            if not header.is_empty:
                columns[col.key] = header.to_dict()
        logger.debug(
            "Resolved styles: %d styled rows, %d styled columns, %d rows with styled cells",
            len(rows), len(columns), len(cells),
        )
        return {"rowHeaders": rows, "columnHeaders": columns, "cells": cells}
