"""Tests for matrix models — coercion helpers, column keys and model reads."""

from __future__ import annotations

import math

from statement_matrix.matrix.models import (
    BLANK,
    PLACEHOLDER_MEASURE,
    ColumnKey,
    MatrixModel,
    RowNode,
    coerce_number,
    is_blank,
    join_key,
    normalize_category,
    to_cell_value,
)


# ---------------------------------------------------------------------------
# Coercion
# ---------------------------------------------------------------------------


class TestCoerceNumber:
    def test_numbers_pass_through(self):
        assert coerce_number(5) == 5.0
        assert coerce_number(2.5) == 2.5

    def test_booleans(self):
        assert coerce_number(True) == 1.0
        assert coerce_number(False) == 0.0

    def test_numeric_strings(self):
        assert coerce_number(" 12.5 ") == 12.5
        assert coerce_number("-3") == -3.0

    def test_non_numeric_is_nan(self):
        for raw in (None, "", "abc", object(), [1]):
            assert math.isnan(coerce_number(raw))

    def test_infinity_is_nan(self):
        assert math.isnan(coerce_number(float("inf")))
        assert math.isnan(coerce_number("-inf"))

    def test_to_cell_value(self):
        assert to_cell_value(math.nan) is None
        assert to_cell_value(3.0) == 3.0


class TestCategories:
    def test_blank_values(self):
        assert is_blank(None)
        assert is_blank("  ")
        assert is_blank(float("nan"))
        assert not is_blank(0)

    def test_normalize_blank(self):
        assert normalize_category(None) == BLANK
        assert normalize_category("") == BLANK

    def test_normalize_integral_float(self):
        assert normalize_category(2023.0) == "2023"
        assert normalize_category(2.5) == "2.5"

    def test_normalize_strips(self):
        assert normalize_category("  US ") == "US"

    def test_join_key(self):
        assert join_key(("US", "East")) == "US||East"


# ---------------------------------------------------------------------------
# ColumnKey
# ---------------------------------------------------------------------------


class TestColumnKey:
    def test_key_and_label(self):
        col = ColumnKey(("2023", "Q1"), "Sales")
        assert col.key == "2023||Q1||Sales"
        assert col.levels_key == "2023||Q1"
        assert col.label == "2023 / Q1 / Sales"

    def test_placeholder_hidden_in_label(self):
        col = ColumnKey(("2023",), PLACEHOLDER_MEASURE)
        assert col.label == "2023"

    def test_sorting_by_levels_then_leaf(self):
        cols = [ColumnKey(("2024",), "A"), ColumnKey(("2023",), "B"), ColumnKey(("2023",), "A")]
        assert [c.key for c in sorted(cols)] == ["2023||A", "2023||B", "2024||A"]


# ---------------------------------------------------------------------------
# MatrixModel reads
# ---------------------------------------------------------------------------


def _model(blank_as_zero: bool = True) -> MatrixModel:
    col_a = ColumnKey(("2023",), "Sales")
    col_b = ColumnKey(("2024",), "Sales")
    nodes = {
        "US": RowNode(code="US", label="US"),
        "SEP": RowNode(code="SEP", label="", type="blank"),
    }
    return MatrixModel(
        columns=[col_a, col_b],
        rows=list(nodes.values()),
        nodes=nodes,
        values={"US": {col_a.key: 100.0}},
        raw_values={"US": {col_a.key: "100", "2023||Margin": "high"}},
        row_fields={"US": {"Region": "Americas"}},
        column_fields={"2023": {"Year": 2023}},
        cell_fields={"US": {"2023": {"Owner": "Ana"}}},
        blank_as_zero=blank_as_zero,
        show_column_total=True,
    )


class TestMatrixModel:
    def test_blank_as_zero_applied_on_read(self):
        model = _model()
        assert model.value("US", "2024||Sales") == 0.0
        assert model.stored_value("US", "2024||Sales") is None

    def test_blank_rows_stay_empty(self):
        model = _model()
        assert model.value("SEP", "2023||Sales") is None

    def test_without_blank_as_zero(self):
        model = _model(blank_as_zero=False)
        assert model.value("US", "2024||Sales") is None

    def test_column_total(self):
        model = _model()
        assert model.column_total("US") == 100.0
        assert model.column_total("SEP") is None

    def test_cell_field_prefers_sibling_measure(self):
        model = _model()
        col = ColumnKey(("2023",), "Sales")
        assert model.cell_field("US", col, "Margin") == "high"
        assert model.cell_field("US", col, "Owner") == "Ana"
        assert model.cell_field("US", col, "Region") == "Americas"
        assert model.cell_field("US", col, "Missing") is None

    def test_column_field(self):
        model = _model()
        assert model.column_field(ColumnKey(("2023",), "Sales"), "Year") == 2023

    def test_to_dict_payload(self):
        payload = _model().to_dict()
        assert [c["key"] for c in payload["columns"]] == ["2023||Sales", "2024||Sales"]
        assert payload["cells"]["US"]["2024||Sales"] == 0.0
        assert payload["columnTotals"]["US"] == 100.0
        assert payload["columnTotalLabel"] == "Column total"
