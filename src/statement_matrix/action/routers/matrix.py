"""Matrix build routes."""

import logging
from typing import Any, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from config.settings import settings
from statement_matrix.formatting.cf_config import parse_cf_config
from statement_matrix.formatting.conditional_format import ConditionalFormatEngine
from statement_matrix.matrix.engine import build_matrix_model
from statement_matrix.matrix.models import MatrixInput, MatrixModel, MatrixRecord, normalize_category
from statement_matrix.matrix.number_format import format_value
from statement_matrix.matrix.tooltip import build_tooltip_items

logger = logging.getLogger(__name__)

router = APIRouter(tags=["matrix"])


# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------


class RecordIn(BaseModel):
    row: list[Any]
    columns: list[Any] = Field(default_factory=list)
    values: dict[str, Any] = Field(default_factory=dict)
    group: Optional[Any] = None
    fields: dict[str, Any] = Field(default_factory=dict)


class MatrixOptions(BaseModel):
    """Per-request overrides of ``MatrixSettings``; unset fields keep the defaults."""

    auto_aggregate_parents: Optional[bool] = None
    blank_as_zero: Optional[bool] = None
    show_grand_total: Optional[bool] = None
    show_subtotals: Optional[bool] = None
    show_column_total: Optional[bool] = None
    grand_total_label: Optional[str] = None
    subtotal_label_template: Optional[str] = None
    column_total_label: Optional[str] = None
    display_units: Optional[str] = None
    decimals: Optional[int] = None
    conditional_formatting_enabled: Optional[bool] = None
    custom_table_enabled: Optional[bool] = None


class MatrixBuildRequest(BaseModel):
    records: list[RecordIn]
    row_fields: list[str] = Field(default_factory=list)
    column_fields: list[str] = Field(default_factory=list)
    value_fields: list[str] = Field(default_factory=list)
    group_field: Optional[str] = None
    layout_json: Optional[Any] = None
    formulas_json: Optional[Any] = None
    cf_json: Optional[Any] = None
    custom_table_json: Optional[Any] = None
    visible_rows: Optional[list[str]] = None
    tooltip_fields: Optional[list[str]] = None
    options: MatrixOptions = Field(default_factory=MatrixOptions)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_input(req: MatrixBuildRequest) -> MatrixInput:
    records = [
        MatrixRecord(
            row=tuple(normalize_category(v) for v in r.row),
            columns=tuple(normalize_category(v) for v in r.columns),
            values=dict(r.values),
            group=normalize_category(r.group) if r.group is not None else None,
            fields=dict(r.fields),
        )
        for r in req.records
    ]
    return MatrixInput(
        records=records,
        row_fields=req.row_fields,
        column_fields=req.column_fields,
        value_fields=req.value_fields,
        group_field=req.group_field,
    )


def _display(model: MatrixModel, display_units: str, decimals: int) -> dict:
    return {
        node.code: {
            col.key: format_value(model.value(node.code, col), display_units, decimals)
            for col in model.columns
        }
        for node in model.rows
    }


def _tooltips(model: MatrixModel, display: dict, fields: list[str]) -> dict:
    """Hover items per cell: Row, Column, Value, then the requested fields."""
    return {
        node.code: {
            col.key: build_tooltip_items(
                node.label,
                col.label,
                display[node.code][col.key],
                [(name, model.cell_field(node.code, col, name)) for name in fields],
            )
            for col in model.columns
        }
        for node in model.rows
    }


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/matrix/build")
async def build_matrix(req: MatrixBuildRequest) -> dict:
    """Build the matrix model and resolve its conditional formatting."""
    run_settings = settings.model_copy(update=req.options.model_dump(exclude_none=True))
    model = build_matrix_model(
        _to_input(req),
        run_settings,
        layout_json=req.layout_json,
        formulas_json=req.formulas_json,
        custom_table_json=req.custom_table_json,
    )

    display = _display(model, run_settings.display_units, run_settings.decimals)
    result = {
        "status": "ok",
        "model": model.to_dict(),
        "display": display,
    }
    if req.tooltip_fields is not None:
        result["tooltips"] = _tooltips(model, display, req.tooltip_fields)
    if run_settings.conditional_formatting_enabled:
        engine = ConditionalFormatEngine(parse_cf_config(req.cf_json), model, req.visible_rows)
        result["styles"] = engine.resolve_all()
    return result
