"""Tests for the row hierarchy builder."""

from __future__ import annotations

from statement_matrix.layout.layout_config import LayoutRow
from statement_matrix.matrix.models import BLANK, MatrixRecord
from statement_matrix.matrix.row_hierarchy import (
    RowHierarchyBuilder,
    build_row_hierarchy,
    group_code,
    row_code,
)


def _records(*rows, group=None) -> list[MatrixRecord]:
    return [MatrixRecord(row=tuple(r), group=group) for r in rows]


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


class TestDiscovery:
    def test_every_prefix_becomes_a_node(self):
        h = build_row_hierarchy(_records(("US", "East"), ("US", "West"), ("EU", "North")))
        assert set(h.nodes) == {"US", "US||East", "US||West", "EU", "EU||North"}
        assert h.roots == ["US", "EU"]
        assert h.nodes["US"].children == ["US||East", "US||West"]

    def test_pre_order(self):
        h = build_row_hierarchy(_records(("US", "East"), ("EU", "North"), ("US", "West")))
        assert h.order == ["US", "US||East", "US||West", "EU", "EU||North"]

    def test_depth_and_labels(self):
        h = build_row_hierarchy(_records(("US", "East")))
        assert h.nodes["US"].depth == 0
        assert h.nodes["US||East"].depth == 1
        assert h.nodes["US||East"].label == "East"
        assert h.max_depth == 1

    def test_blank_values_normalized(self):
        h = build_row_hierarchy(_records(("US", None)))
        assert f"US||{BLANK}" in h.nodes

    def test_empty_tuple_is_blank_row(self):
        builder = RowHierarchyBuilder()
        assert builder.add_tuple(()) == BLANK

    def test_rediscovery_is_idempotent(self):
        h = build_row_hierarchy(_records(("US",), ("US",), ("US",)))
        assert list(h.nodes) == ["US"]


class TestGroups:
    def test_group_becomes_root(self):
        h = build_row_hierarchy(_records(("US",), group="Americas"))
        g = group_code("Americas")
        assert h.has_group
        assert h.roots == [g]
        assert h.nodes[g].row_level == -1
        assert h.nodes[g].is_group_root
        assert h.nodes[g].children == [row_code(("US",), "Americas")]

    def test_group_roots_come_first(self):
        records = _records(("X",)) + _records(("US",), group="Americas")
        h = build_row_hierarchy(records)
        assert h.roots[0] == group_code("Americas")


# ---------------------------------------------------------------------------
# Declared layout
# ---------------------------------------------------------------------------


class TestLayout:
    def test_declared_label_wins(self):
        layout = [LayoutRow(code="US", label="United States")]
        h = build_row_hierarchy(_records(("US", "East")), layout)
        assert h.nodes["US"].label == "United States"
        assert h.nodes["US"].declared

    def test_declared_parent_wins(self):
        layout = [LayoutRow(code="TOTAL", label="Total"), LayoutRow(code="US", parent="TOTAL")]
        h = build_row_hierarchy(_records(("US",)), layout)
        assert h.nodes["US"].parent == "TOTAL"
        assert h.roots == ["TOTAL"]
        assert h.nodes["US"].label == "US"

    def test_unknown_parent_becomes_root(self):
        layout = [LayoutRow(code="A", label="A", parent="MISSING")]
        h = build_row_hierarchy([], layout)
        assert h.nodes["A"].parent is None
        assert h.roots == ["A"]

    def test_parent_cycle_broken(self):
        layout = [LayoutRow(code="A", parent="B"), LayoutRow(code="B", parent="A")]
        h = build_row_hierarchy([], layout)
        assert h.roots
        assert set(h.order) == {"A", "B"}

    def test_row_leading_into_cycle_keeps_parent(self):
        layout = [
            LayoutRow(code="A", parent="B"),
            LayoutRow(code="B", parent="C"),
            LayoutRow(code="C", parent="B"),
        ]
        h = build_row_hierarchy([], layout)
        assert h.nodes["A"].parent == "B"
        assert h.nodes["B"].parent is None
        assert h.nodes["C"].parent == "B"
        assert h.roots == ["B"]

    def test_unlabelled_layout_row_uses_code(self):
        h = build_row_hierarchy([], [LayoutRow(code="NET", type="calc")])
        assert h.nodes["NET"].label == "NET"

    def test_unlabelled_layout_row_takes_data_label(self):
        h = build_row_hierarchy(_records(("US", "East")), [LayoutRow(code="US||East")])
        assert h.nodes["US||East"].label == "East"

    def test_explicit_order_before_first_seen(self):
        layout = [
            LayoutRow(code="B", label="B", order=2),
            LayoutRow(code="A", label="A", order=1),
            LayoutRow(code="C", label="C"),
        ]
        h = build_row_hierarchy([], layout)
        assert h.roots == ["A", "B", "C"]

    def test_formula_map_only_for_calc_rows(self):
        layout = [LayoutRow(code="M", type="calc"), LayoutRow(code="D", type="data")]
        h = build_row_hierarchy([], layout, {"M": "[X]*2", "D": "[X]*3"})
        assert h.nodes["M"].formula == "[X]*2"
        assert h.nodes["D"].formula is None

    def test_inline_formula_beats_map(self):
        layout = [LayoutRow(code="M", type="calc", formula="1+1")]
        h = build_row_hierarchy([], layout, {"M": "2+2"})
        assert h.nodes["M"].formula == "1+1"

    def test_style_parsed(self):
        layout = [LayoutRow(code="M", style={"bold": True, "fontColor": "#ff0000"})]
        h = build_row_hierarchy([], layout)
        assert h.nodes["M"].style.bold is True
        assert h.nodes["M"].style.color == "#ff0000"
