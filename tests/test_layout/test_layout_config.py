"""Tests for layout and formula JSON parsing."""

from __future__ import annotations

import json
import logging

from statement_matrix.layout.layout_config import (
    LayoutRow,
    load_json_object,
    parse_formulas,
    parse_layout,
)


class TestLoadJsonObject:
    def test_dict_passes_through(self):
        data = {"rows": []}
        assert load_json_object(data, "layout") is data

    def test_blank_and_none(self):
        assert load_json_object(None, "layout") is None
        assert load_json_object("   ", "layout") is None

    def test_malformed_logged(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert load_json_object("{oops", "layout") is None
        assert "malformed layout JSON" in caplog.text

    def test_non_object(self):
        assert load_json_object("[1, 2]", "layout") is None


class TestParseLayout:
    def test_rows_parsed(self):
        text = json.dumps({"rows": [
            {"code": "REV", "label": "Revenue", "order": "1"},
            {"code": "NET", "label": "Net", "type": "calc", "formula": "[REV] - [COST]"},
            {"code": "GAP", "type": "blank"},
        ]})
        rows = parse_layout(text)
        assert [r.code for r in rows] == ["REV", "NET", "GAP"]
        assert rows[0].order == 1.0
        assert rows[1].type == "calc"
        assert rows[2].type == "blank"

    def test_invalid_rows_dropped_individually(self):
        rows = parse_layout({"rows": [{"label": "no code"}, {"code": "  "}, {"code": "OK"}, "junk"]})
        assert [r.code for r in rows] == ["OK"]

    def test_unknown_type_is_data(self):
        rows = parse_layout({"rows": [{"code": "A", "type": "fancy"}]})
        assert rows[0].type == "data"

    def test_formula_without_type_is_calc(self):
        rows = parse_layout({"rows": [{"code": "A", "formula": "1 + 1"}]})
        assert rows[0].type == "calc"

    def test_numbers_become_text(self):
        rows = parse_layout({"rows": [{"code": 100, "parent": 10, "label": 2023}]})
        assert rows[0].code == "100"
        assert rows[0].parent == "10"
        assert rows[0].label == "2023"

    def test_blank_parent_and_bad_style(self):
        row = LayoutRow.model_validate({"code": "A", "parent": " ", "style": "bold", "order": "x"})
        assert row.parent is None
        assert row.style is None
        assert row.order is None

    def test_missing_rows_key(self):
        assert parse_layout({"columns": []}) == []
        assert parse_layout("not json") == []


class TestParseFormulas:
    def test_strings_only(self):
        formulas = parse_formulas(json.dumps({"A": " [B] + 1 ", "B": 5, "C": "  "}))
        assert formulas == {"A": "[B] + 1"}

    def test_malformed(self):
        assert parse_formulas("{") == {}
