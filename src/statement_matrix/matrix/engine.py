"""Matrix engine — runs the full rebuild pipeline.

hierarchy (rows, columns) -> cell aggregation -> parent auto-aggregation
-> calc-row fixpoint -> totals -> finalized ``MatrixModel``.

Every call produces an independent model; nothing is carried over between
rebuilds.
"""

from __future__ import annotations

import logging
from typing import Any

from config.settings import MatrixSettings
from config.settings import settings as default_settings
from statement_matrix.layout.custom_table import CustomTableBuilder, parse_custom_table
from statement_matrix.layout.layout_config import parse_formulas, parse_layout
from statement_matrix.matrix.aggregation import CellAggregator, CellMaps, auto_aggregate
from statement_matrix.matrix.column_hierarchy import ColumnHierarchyBuilder
from statement_matrix.matrix.formula_engine import evaluate_calc_rows
from statement_matrix.matrix.models import (
    ColumnKey,
    MatrixInput,
    MatrixModel,
    RowNode,
    join_key,
)
from statement_matrix.matrix.row_hierarchy import RowHierarchy, RowHierarchyBuilder
from statement_matrix.matrix.totals import TotalsOptions, inject_totals

logger = logging.getLogger(__name__)


def _ancestry(nodes: dict[str, RowNode], code: str) -> list[str]:
    path = [code]
    parent = nodes[code].parent
    while parent is not None and parent not in path:
        path.append(parent)
        parent = nodes[parent].parent
    return path


def _build_from_tuples(
    matrix_input: MatrixInput,
    layout_json: Any,
    formulas_json: Any,
) -> tuple[RowHierarchy, list[ColumnKey], CellMaps]:
    rows = RowHierarchyBuilder(parse_layout(layout_json), parse_formulas(formulas_json))
    for layout_row in rows.layout_rows:
        rows.declare(layout_row)
    cols = ColumnHierarchyBuilder(matrix_input.value_fields)

    placed: list[tuple[str, tuple[str, ...]]] = []
    for record in matrix_input.records:
        leaf = rows.add_tuple(record.row, record.group)
        levels = cols.add_tuple(record.columns)
        placed.append((leaf, levels))

    hierarchy = rows.build()
    columns = cols.build()

    aggregator = CellAggregator()
    for record, (leaf, levels) in zip(matrix_input.records, placed):
        for measure in matrix_input.value_fields:
            if measure in record.values:
                aggregator.add(leaf, ColumnKey(levels, measure), record.values[measure])
        aggregator.add_fields(
            _ancestry(hierarchy.nodes, leaf),
            join_key(levels),
            {**record.values, **record.fields},
        )
    return hierarchy, columns, aggregator.maps


def build_matrix_model(
    matrix_input: MatrixInput,
    settings: MatrixSettings | None = None,
    layout_json: Any = None,
    formulas_json: Any = None,
    custom_table_json: Any = None,
) -> MatrixModel:
    """Rebuild the whole matrix model from bound data and declarative config."""
    settings = settings or default_settings

    custom = parse_custom_table(custom_table_json) if settings.custom_table_enabled else None
    if custom is not None:
        build = CustomTableBuilder(custom, matrix_input).build()
        hierarchy, columns, maps = build.hierarchy, build.columns, build.maps
    else:
        hierarchy, columns, maps = _build_from_tuples(matrix_input, layout_json, formulas_json)

    nodes = hierarchy.nodes
    values = maps.values

    if settings.auto_aggregate_parents:
        auto_aggregate(nodes, hierarchy.order, values, columns, settings.blank_as_zero)

    run = evaluate_calc_rows(nodes, hierarchy.order, values, columns, settings.blank_as_zero)

    order = inject_totals(
        nodes,
        hierarchy.roots,
        values,
        columns,
        TotalsOptions(
            show_grand_total=settings.show_grand_total,
            show_subtotals=settings.show_subtotals,
            grand_total_label=settings.grand_total_label,
            subtotal_label_template=settings.subtotal_label_template,
            blank_as_zero=settings.blank_as_zero,
        ),
    )

    titles = list(matrix_input.row_fields)
    if hierarchy.has_group and matrix_input.group_field:
        titles.insert(0, matrix_input.group_field)

    model = MatrixModel(
        columns=columns,
        rows=[nodes[code] for code in order],
        nodes=nodes,
        values=values,
        raw_values=maps.raw,
        row_fields=maps.row_fields,
        column_fields=maps.column_fields,
        cell_fields=maps.cell_fields,
        row_header_titles=titles,
        has_group=hierarchy.has_group,
        row_field_count=len(matrix_input.row_fields),
        show_column_total=settings.show_column_total,
        column_total_label=settings.column_total_label,
        blank_as_zero=settings.blank_as_zero,
        formula_errors=run.errors,
        formula_passes=run.passes,
    )
    logger.info(
        "Matrix rebuilt: %d records, %d rows, %d columns, %d formula passes%s",
        len(matrix_input.records), len(model.rows), len(columns), run.passes,
        " (custom table)" if custom is not None else "",
    )
    return model
