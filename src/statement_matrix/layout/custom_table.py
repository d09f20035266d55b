"""Custom-table mode — rows and columns built from an explicit parent/child layout.

Instead of discovering rows from tuples, the user lists parents and children
and maps each to bound fields with an aggregation.  Children either have a
fixed name or expand into one row per distinct value of a field.  The result
feeds the same downstream stages (auto-aggregation and totals) as the
tuple-driven mode.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from statement_matrix.layout.layout_config import LayoutRow, load_json_object
from statement_matrix.matrix.aggregation import CellAggregator, CellMaps
from statement_matrix.matrix.column_hierarchy import ColumnHierarchyBuilder, column_levels
from statement_matrix.matrix.models import (
    ColumnKey,
    MatrixInput,
    MatrixRecord,
    coerce_number,
    is_blank,
    join_key,
    normalize_category,
)
from statement_matrix.matrix.row_hierarchy import RowHierarchy, RowHierarchyBuilder

logger = logging.getLogger(__name__)

_AGGREGATIONS = ("none", "sum", "avg", "min", "max", "count")


# ---------------------------------------------------------------------------
# Configuration models
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ValueMapping(_CamelModel):
    """A bound field shown as a column, with how to aggregate it."""

    field_name: str = Field(alias="field")
    aggregation: Literal["none", "sum", "avg", "min", "max", "count"] = "none"
    label: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _shorthand(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"field": data}
        if isinstance(data, dict):
            data = dict(data)
            if "field" not in data and "fieldName" in data:
                data["field"] = data.pop("fieldName")
            agg = str(data.get("aggregation") or "none").strip().lower()
            data["aggregation"] = agg if agg in _AGGREGATIONS else "none"
        return data

    @property
    def column_label(self) -> str:
        return self.label or self.field_name


class CellFormat(_CamelModel):
    font_color: str | None = None
    background: str | None = None
    bold: bool | None = None
    italic: bool | None = None
    underline: bool | None = None


class CustomParent(_CamelModel):
    parent_no: int
    parent_name: str
    values: list[ValueMapping] = Field(default_factory=list)
    format: CellFormat | None = None

    @field_validator("parent_name", mode="before")
    @classmethod
    def _name_text(cls, v: Any) -> Any:
        return str(v) if isinstance(v, (int, float)) and not isinstance(v, bool) else v


class CustomChild(_CamelModel):
    id: str
    set_parent_no: int | None = None
    child_name: str | None = None
    child_name_from_field: str | None = None
    parent_match_field: str | None = None
    values: list[ValueMapping] = Field(default_factory=list)
    format: CellFormat | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_text(cls, v: Any) -> Any:
        return str(v) if isinstance(v, (int, float)) and not isinstance(v, bool) else v

    @model_validator(mode="after")
    def _needs_a_name(self) -> "CustomChild":
        if not self.child_name and not self.child_name_from_field:
            raise ValueError("child needs childName or childNameFromField")
        return self


class CustomTableConfig(_CamelModel):
    version: int = 1
    parents: list[CustomParent] = Field(default_factory=list)
    children: list[CustomChild] = Field(default_factory=list)
    show_value_names_in_columns: bool = True
    hidden_column_field_keys: list[str] = Field(default_factory=list)


def _validate_items(model: type[BaseModel], raw_items: Any, what: str) -> list:
    if not isinstance(raw_items, list):
        return []
    items = []
    for i, raw in enumerate(raw_items):
        try:
            items.append(model.model_validate(raw))
        except ValidationError as exc:
            logger.warning("Dropping custom-table %s #%d: %s", what, i, exc.errors()[0].get("msg", exc))
    return items


def parse_custom_table(text: Any) -> CustomTableConfig | None:
    """Parse the custom-table JSON; None when missing, malformed or empty."""
    data = load_json_object(text, "custom table")
    if not data:
        return None
    try:
        config = CustomTableConfig.model_validate(
            {k: v for k, v in data.items() if k not in ("parents", "children")}
        )
    except ValidationError as exc:
        logger.warning("Ignoring custom-table config: %s", exc.errors()[0].get("msg", exc))
        return None
    config.parents = _validate_items(CustomParent, data.get("parents"), "parent")
    config.children = _validate_items(CustomChild, data.get("children"), "child")
    if not config.parents and not config.children:
        return None
    return config


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def _raw_field(record: MatrixRecord, name: str) -> Any:
    if name in record.values:
        return record.values[name]
    return record.fields.get(name)


def aggregate_mapping(
    mapping: ValueMapping, records: list[MatrixRecord], is_measure: bool
) -> tuple[float | None, Any]:
    """Aggregate one mapped field over *records*; returns (value, last raw)."""
    raws = [_raw_field(r, mapping.field_name) for r in records]
    last_raw = raws[-1] if raws else None
    numbers = [n for n in (coerce_number(r) for r in raws) if not math.isnan(n)]
    agg = "none" if is_measure else mapping.aggregation

    if agg == "count":
        return float(sum(1 for r in raws if not is_blank(r))), last_raw
    if not numbers:
        return None, last_raw
    if agg == "none":
        # Measures arrive pre-aggregated per record: sum them like ordinary cells.
        return (math.fsum(numbers) if is_measure else numbers[-1]), last_raw
    if agg == "sum":
        return math.fsum(numbers), last_raw
    if agg == "avg":
        return math.fsum(numbers) / len(numbers), last_raw
    if agg == "min":
        return min(numbers), last_raw
    return max(numbers), last_raw


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


@dataclass
class CustomTableBuild:
    hierarchy: RowHierarchy
    columns: list[ColumnKey]
    maps: CellMaps


def parent_code(parent_no: int) -> str:
    return f"P{parent_no}"


def child_code(child_id: str, value: str | None = None) -> str:
    return f"C{child_id}" if value is None else f"C{child_id}||{value}"


def _style_dict(fmt: CellFormat | None) -> dict | None:
    if fmt is None:
        return None
    return fmt.model_dump(by_alias=True, exclude_none=True) or None


class CustomTableBuilder:
    """Turns a ``CustomTableConfig`` plus bound records into rows, columns and cells."""

    def __init__(self, config: CustomTableConfig, matrix_input: MatrixInput):
        self.config = config
        self.input = matrix_input
        self.measures = set(matrix_input.value_fields)
        self.hidden = set(config.hidden_column_field_keys)
        self._row_records: dict[str, list[MatrixRecord]] = {}
        self._row_mappings: dict[str, list[ValueMapping]] = {}

    def _visible(self, mappings: list[ValueMapping]) -> list[ValueMapping]:
        return [
            m for m in mappings
            if m.field_name not in self.hidden and m.column_label not in self.hidden
        ]

    def _layout_rows(self) -> list[LayoutRow]:
        rows: list[LayoutRow] = []
        parent_names: dict[int, str] = {}
        for parent in sorted(self.config.parents, key=lambda p: p.parent_no):
            code = parent_code(parent.parent_no)
            parent_names[parent.parent_no] = parent.parent_name
            rows.append(LayoutRow(
                code=code,
                label=parent.parent_name,
                order=parent.parent_no,
                style=_style_dict(parent.format),
            ))
            if parent.values:
                self._row_records[code] = list(self.input.records)
                self._row_mappings[code] = parent.values

        for child in self.config.children:
            parent = parent_code(child.set_parent_no) if child.set_parent_no is not None else None
            records = list(self.input.records)
            match_name = parent_names.get(child.set_parent_no) if child.set_parent_no is not None else None
            if child.parent_match_field and match_name is not None:
                records = [
                    r for r in records
                    if normalize_category(_raw_field(r, child.parent_match_field)) == match_name
                ]

            if child.child_name_from_field:
                buckets: dict[str, list[MatrixRecord]] = {}
                for r in records:
                    name = normalize_category(_raw_field(r, child.child_name_from_field))
                    buckets.setdefault(name, []).append(r)
                for name, bucket in buckets.items():
                    code = child_code(child.id, name)
                    rows.append(LayoutRow(code=code, label=name, parent=parent, style=_style_dict(child.format)))
                    self._row_records[code] = bucket
                    self._row_mappings[code] = child.values
            else:
                code = child_code(child.id)
                rows.append(LayoutRow(
                    code=code,
                    label=child.child_name,
                    parent=parent,
                    style=_style_dict(child.format),
                ))
                self._row_records[code] = records
                self._row_mappings[code] = child.values
        return rows

    def build(self) -> CustomTableBuild:
        builder = RowHierarchyBuilder()
        for row in self._layout_rows():
            builder.declare(row)
        hierarchy = builder.build()

        col_builder = ColumnHierarchyBuilder([])
        for record in self.input.records:
            col_builder.add_tuple(record.columns)
        for mappings in self._row_mappings.values():
            for mapping in self._visible(mappings):
                col_builder.add_leaf(mapping.column_label)
        columns = col_builder.build()
        if not self.config.show_value_names_in_columns:
            columns = [replace(c, show_leaf=False) for c in columns]

        aggregator = CellAggregator()
        for code, mappings in self._row_mappings.items():
            by_levels: dict[tuple[str, ...], list[MatrixRecord]] = {}
            for record in self._row_records.get(code, []):
                levels = column_levels(record.columns)
                by_levels.setdefault(levels, []).append(record)
                aggregator.add_fields([code], join_key(levels), record.fields)
            for mapping in self._visible(mappings):
                is_measure = mapping.field_name in self.measures
                for levels, records in by_levels.items():
                    value, raw = aggregate_mapping(mapping, records, is_measure)
                    aggregator.set_value(code, ColumnKey(levels, mapping.column_label), value, raw)

        logger.debug(
            "Custom table built: %d rows, %d columns", len(hierarchy.nodes), len(columns)
        )
        return CustomTableBuild(
            hierarchy=hierarchy,
            columns=columns,
            maps=aggregator.maps,
        )
