"""Totals injection — subtotal and grand-total rows.

Subtotal rows are not tree children: they are spliced into the flattened
display order right after their row's subtree, so expand/collapse of the
hierarchy is unaffected.  Column totals are never stored; see
``MatrixModel.column_total``.
"""

from __future__ import annotations

from dataclasses import dataclass

from statement_matrix.matrix.models import (
    GRAND_TOTAL_CODE,
    SUBTOTAL_SUFFIX,
    ColumnKey,
    RowNode,
)


@dataclass
class TotalsOptions:
    show_grand_total: bool = False
    show_subtotals: bool = False
    grand_total_label: str = "Grand Total"
    subtotal_label_template: str = "Total {label}"
    blank_as_zero: bool = False


def subtotal_code(code: str) -> str:
    return code + SUBTOTAL_SUFFIX


def subtotal_label(template: str, label: str) -> str:
    if "{label}" in template:
        return template.replace("{label}", label)
    return f"{template} {label}".strip()


def _read(
    values: dict[str, dict[str, float | None]],
    nodes: dict[str, RowNode],
    code: str,
    key: str,
    blank_as_zero: bool,
) -> float | None:
    v = values.get(code, {}).get(key)
    if v is None and blank_as_zero and nodes[code].type != "blank":
        return 0.0
    return v


def _sum_rows(
    values: dict[str, dict[str, float | None]],
    nodes: dict[str, RowNode],
    codes: list[str],
    columns: list[ColumnKey],
    blank_as_zero: bool,
) -> dict[str, float | None]:
    result: dict[str, float | None] = {}
    for col in columns:
        total = 0.0
        found = False
        for code in codes:
            v = _read(values, nodes, code, col.key, blank_as_zero)
            if v is None:
                continue
            total += v
            found = True
        result[col.key] = total if found else (0.0 if blank_as_zero else None)
    return result


def _spliced_order(nodes: dict[str, RowNode], roots: list[str], with_subtotals: bool) -> list[str]:
    """Pre-order traversal with ``code||__subtotal`` after each eligible subtree."""
    order: list[str] = []

    def visit(code: str) -> None:
        order.append(code)
        node = nodes[code]
        for child in node.children:
            visit(child)
        if with_subtotals and node.children and not node.is_group_root:
            order.append(subtotal_code(code))

    for root in roots:
        visit(root)
    return order


def inject_totals(
    nodes: dict[str, RowNode],
    roots: list[str],
    values: dict[str, dict[str, float | None]],
    columns: list[ColumnKey],
    options: TotalsOptions,
) -> list[str]:
    """Add total rows and values; returns the final flattened display order."""
    # Snapshot of real rows before any synthetic row is added.
    real = [code for code in nodes]
    leaves = [code for code in real if nodes[code].is_leaf and not nodes[code].is_total]

    order = _spliced_order(nodes, roots, options.show_subtotals)

    if options.show_subtotals:
        for code in real:
            node = nodes[code]
            if not node.children or node.is_group_root:
                continue
            sub = subtotal_code(code)
            nodes[sub] = RowNode(
                code=sub,
                label=subtotal_label(options.subtotal_label_template, node.label),
                parent=node.parent,
                depth=node.depth,
                is_total=True,
                total_of=code,
                row_level=node.row_level,
            )
            values[sub] = _sum_rows(values, nodes, node.children, columns, options.blank_as_zero)

    if options.show_grand_total:
        nodes[GRAND_TOTAL_CODE] = RowNode(
            code=GRAND_TOTAL_CODE,
            label=options.grand_total_label,
            is_total=True,
        )
        values[GRAND_TOTAL_CODE] = _sum_rows(values, nodes, leaves, columns, options.blank_as_zero)
        order.append(GRAND_TOTAL_CODE)

    return order
