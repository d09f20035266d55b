"""Shared data model for the matrix pipeline.

Every stage (hierarchy builders, aggregators, formula engine, totals) works
on these dataclasses.  A ``MatrixModel`` is rebuilt wholesale on every data
or configuration change and is treated as read-only once returned.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

# Separator used to join tuple prefixes into row codes and column keys.
KEY_SEP = "||"

# Explicit stand-in for empty category values so tuple length stays stable.
BLANK = "(Blank)"

SUBTOTAL_SUFFIX = KEY_SEP + "__subtotal"
GRAND_TOTAL_CODE = "__grand_total__"
GROUP_PREFIX = "__group__"

# Leaf label used when no value field is bound (tuple-only modes).
PLACEHOLDER_MEASURE = "__value__"

ROW_TYPES = ("data", "calc", "blank")


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------


def coerce_number(value: Any) -> float:
    """Convert anything to a float, returning NaN when it is not numeric.

    Never raises.  Booleans map to 1/0, numeric strings are parsed, and
    infinities are treated like any other unrepresentable input.
    """
    if value is None:
        return math.nan
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return math.nan
        try:
            result = float(text)
        except ValueError:
            return math.nan
    else:
        try:
            result = float(value)
        except (TypeError, ValueError, OverflowError):
            return math.nan
    if math.isnan(result) or math.isinf(result):
        return math.nan
    return result


def to_cell_value(number: float) -> float | None:
    """Map NaN to ``None`` (the "no value" marker of the cell map)."""
    if number is None or math.isnan(number):
        return None
    return number


def is_blank(value: Any) -> bool:
    """True for None, empty/whitespace strings and NaN floats."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, float):
        return math.isnan(value)
    return False


def normalize_category(value: Any) -> str:
    """Normalize a category value; blanks become the ``BLANK`` sentinel."""
    if is_blank(value):
        return BLANK
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def join_key(parts: tuple[str, ...] | list[str]) -> str:
    return KEY_SEP.join(parts)


# ---------------------------------------------------------------------------
# Input records
# ---------------------------------------------------------------------------


@dataclass
class MatrixRecord:
    """One underlying bound-data record."""

    row: tuple[str, ...]
    columns: tuple[str, ...] = ()
    values: dict[str, Any] = field(default_factory=dict)  # measure name -> raw value
    group: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)  # extra bound fields -> raw value


@dataclass
class MatrixInput:
    """The bound data plus the names of the fields that produced it."""

    records: list[MatrixRecord]
    row_fields: list[str] = field(default_factory=list)
    column_fields: list[str] = field(default_factory=list)
    value_fields: list[str] = field(default_factory=list)
    group_field: str | None = None


# ---------------------------------------------------------------------------
# Hierarchy entities
# ---------------------------------------------------------------------------


@dataclass
class RowStyle:
    """Per-row style override from a declarative layout."""

    color: str | None = None
    background: str | None = None
    bold: bool | None = None
    italic: bool | None = None
    underline: bool | None = None

    def to_dict(self) -> dict:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class RowNode:
    """A row in the forest.  ``parent`` and ``children`` are row codes."""

    code: str
    label: str
    parent: str | None = None
    type: str = "data"
    children: list[str] = field(default_factory=list)
    depth: int = 0
    order: float | None = None
    formula: str | None = None
    style: RowStyle | None = None
    is_total: bool = False
    row_level: int = 0  # -1 for the synthetic group root
    seen: int = 0  # first-seen position, used for ordering
    declared: bool = False
    total_of: str | None = None  # subtotals: the row whose children are summed

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @property
    def is_group_root(self) -> bool:
        return self.row_level < 0

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "label": self.label,
            "parent": self.parent,
            "type": self.type,
            "children": list(self.children),
            "depth": self.depth,
            "isTotal": self.is_total,
            "style": self.style.to_dict() if self.style else None,
        }


@dataclass(frozen=True, order=True)
class ColumnKey:
    """An immutable column identity: grouping levels plus the leaf label."""

    levels: tuple[str, ...]
    leaf: str
    # Display only; never part of the column identity.
    show_leaf: bool = field(default=True, compare=False)

    @property
    def key(self) -> str:
        return join_key(self.levels + (self.leaf,))

    @property
    def levels_key(self) -> str:
        return join_key(self.levels)

    @property
    def label(self) -> str:
        parts = [p for p in self.levels if p]
        if self.leaf and self.leaf != PLACEHOLDER_MEASURE and (self.show_leaf or not parts):
            parts.append(self.leaf)
        return " / ".join(parts)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "levels": list(self.levels),
            "leaf": self.leaf,
            "label": self.label,
        }


# ---------------------------------------------------------------------------
# Finalized model
# ---------------------------------------------------------------------------


@dataclass
class MatrixModel:
    """The finalized matrix handed to formatting and rendering."""

    columns: list[ColumnKey]
    rows: list[RowNode]  # flattened display order, totals included
    nodes: dict[str, RowNode]
    values: dict[str, dict[str, float | None]]
    raw_values: dict[str, dict[str, Any]] = field(default_factory=dict)
    row_fields: dict[str, dict[str, Any]] = field(default_factory=dict)
    column_fields: dict[str, dict[str, Any]] = field(default_factory=dict)  # levels key -> fields
    cell_fields: dict[str, dict[str, dict[str, Any]]] = field(default_factory=dict)
    row_header_titles: list[str] = field(default_factory=list)
    has_group: bool = False
    row_field_count: int = 0
    show_column_total: bool = False
    column_total_label: str = "Column total"
    blank_as_zero: bool = False
    formula_errors: set[str] = field(default_factory=set)
    formula_passes: int = 0

    def _col_key(self, column: ColumnKey | str) -> str:
        return column.key if isinstance(column, ColumnKey) else column

    def stored_value(self, row_code: str, column: ColumnKey | str) -> float | None:
        """The value as stored, without the blank-as-zero read policy."""
        return self.values.get(row_code, {}).get(self._col_key(column))

    def value(self, row_code: str, column: ColumnKey | str) -> float | None:
        """Cell value with blank-as-zero applied at read time."""
        v = self.stored_value(row_code, column)
        if v is not None:
            return v
        node = self.nodes.get(row_code)
        if node is None or node.type == "blank" or row_code in self.formula_errors:
            return None
        return 0.0 if self.blank_as_zero else None

    def raw(self, row_code: str, column: ColumnKey | str) -> Any:
        return self.raw_values.get(row_code, {}).get(self._col_key(column))

    def column_total(self, row_code: str) -> float | None:
        """Sum across every real column for one row, computed on demand."""
        total = 0.0
        found = False
        for col in self.columns:
            v = self.value(row_code, col)
            if v is None:
                continue
            total += v
            found = True
        if not found:
            node = self.nodes.get(row_code)
            if self.blank_as_zero and node is not None and node.type != "blank":
                return 0.0
            return None
        return total

    def row_field(self, row_code: str, name: str) -> Any:
        return self.row_fields.get(row_code, {}).get(name)

    def column_field(self, column: ColumnKey, name: str) -> Any:
        return self.column_fields.get(column.levels_key, {}).get(name)

    def cell_field(self, row_code: str, column: ColumnKey, name: str) -> Any:
        """Raw value of a bound field for one cell.

        Looks at the measure sharing the column's levels first, then at the
        extra fields recorded for the cell, then at the row's fields.
        """
        sibling = ColumnKey(column.levels, name).key
        row_raw = self.raw_values.get(row_code, {})
        if sibling in row_raw:
            return row_raw[sibling]
        cell = self.cell_fields.get(row_code, {}).get(column.levels_key, {})
        if name in cell:
            return cell[name]
        return self.row_field(row_code, name)

    def to_dict(self) -> dict:
        """JSON-able payload for the rendering collaborator."""
        cells: dict[str, dict[str, float | None]] = {}
        for node in self.rows:
            cells[node.code] = {col.key: self.value(node.code, col) for col in self.columns}
        payload = {
            "columns": [c.to_dict() for c in self.columns],
            "rows": [n.to_dict() for n in self.rows],
            "cells": cells,
            "rowHeaderTitles": list(self.row_header_titles),
            "hasGroup": self.has_group,
            "rowFieldCount": self.row_field_count,
            "showColumnTotal": self.show_column_total,
            "formulaPasses": self.formula_passes,
        }
        if self.show_column_total:
            payload["columnTotalLabel"] = self.column_total_label
            payload["columnTotals"] = {n.code: self.column_total(n.code) for n in self.rows}
        return payload
