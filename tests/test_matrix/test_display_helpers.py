"""Tests for number formatting and tooltip items."""

from __future__ import annotations

import math

import pytest

from statement_matrix.matrix.number_format import format_value, resolve_unit
from statement_matrix.matrix.tooltip import build_tooltip_items, format_tooltip_value


class TestFormatValue:
    @pytest.mark.parametrize("value", [None, math.nan, math.inf, True, "abc"])
    def test_blank_outputs(self, value):
        assert format_value(value) == ""

    def test_no_units(self):
        assert format_value(1234.5, "none", 1) == "1,234.5"

    def test_auto_units(self):
        assert format_value(999, "auto") == "999"
        assert format_value(12_000, "auto") == "12K"
        assert format_value(2_500_000, "auto", 1) == "2.5M"
        assert format_value(3e9, "auto") == "3bn"

    def test_fixed_units(self):
        assert format_value(1234, "millions", 2) == "0.00M"
        assert format_value(4_000, "thousands") == "4K"

    def test_negative_zero_dropped(self):
        assert format_value(-0.001, "none", 0) == "0"

    def test_unknown_unit_falls_back_to_auto(self):
        assert resolve_unit(5_000_000, "lakhs") == "millions"


class TestTooltip:
    def test_ordered_items(self):
        items = build_tooltip_items("US", "2023 / Sales", "100", [("Owner", "Ana")])
        assert items == [
            {"displayName": "Row", "value": "US"},
            {"displayName": "Column", "value": "2023 / Sales"},
            {"displayName": "Value", "value": "100"},
            {"displayName": "Owner", "value": "Ana"},
        ]

    def test_blank_labels_skipped(self):
        items = build_tooltip_items("  ", None, "5")
        assert items == [{"displayName": "Value", "value": "5"}]

    def test_unnamed_extras_skipped(self):
        assert build_tooltip_items(extra=[("", 1), (None, 2)]) == []

    def test_extra_value_formatting(self):
        assert format_tooltip_value(None) == ""
        assert format_tooltip_value(True) == "True"
        assert format_tooltip_value(False) == "False"
        assert format_tooltip_value(math.inf) == ""
        assert format_tooltip_value(1234.0) == "1,234"
        assert format_tooltip_value(0.5) == "0.5"
