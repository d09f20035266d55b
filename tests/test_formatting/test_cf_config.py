"""Tests for conditional-formatting config parsing and serialization."""

from __future__ import annotations

import json

from statement_matrix.formatting.cf_config import (
    CFConfig,
    CFRule,
    parse_cf_config,
    serialize_cf_config,
)

FULL_CONFIG = {
    "version": 2,
    "rules": [
        {
            "id": "r1",
            "target": "cell",
            "channel": "background",
            "rowMatch": {"mode": "contains", "text": "us"},
            "condition": {"operator": ">", "value": 100},
            "style": {"background": "#ff0000", "bold": True},
        },
        {
            "id": "r2",
            "enabled": False,
            "target": "rowHeader",
            "channel": "fontColor",
            "scope": "entireRow",
            "condition": {"operator": "startsWith", "value": "Net"},
            "style": {"fontColor": "#0000ff"},
        },
    ],
    "surfaces": {
        "cell:fontColor": {
            "mode": "gradient",
            "gradient": {
                "min": {"kind": "number", "value": 0, "color": "#ffffff"},
                "max": {"kind": "auto", "color": "#000000"},
                "midColor": "#888888",
                "emptyValues": "zero",
            },
        },
        "rowHeader:icon": {"mode": "fieldValue", "fieldValue": {"field": "Trend"}},
    },
}


class TestParse:
    def test_rules_in_order(self):
        config = parse_cf_config(json.dumps(FULL_CONFIG))
        assert [r.id for r in config.rules] == ["r1", "r2"]
        assert config.rules[0].row_match.mode == "contains"
        assert config.rules[0].condition.value == 100
        assert config.rules[1].enabled is False
        assert config.rules[1].scope == "entireRow"

    def test_surfaces(self):
        config = parse_cf_config(FULL_CONFIG)
        gradient = config.surface("cell", "fontColor").gradient
        assert gradient.min.kind == "number"
        assert gradient.min.value == 0
        assert gradient.mid_color == "#888888"
        assert gradient.empty_values == "zero"
        assert config.surface("rowHeader", "icon").field_value.field == "Trend"
        assert not config.uses_rules("cell", "fontColor")
        assert config.uses_rules("cell", "background")

    def test_rule_defaults(self):
        config = parse_cf_config({"version": 2, "rules": [{"style": {"background": "#eeeeee"}}]})
        rule = config.rules[0]
        assert rule.target == "cell"
        assert rule.channel == "background"
        assert rule.scope == "self"
        assert rule.row_match.mode == "any"
        assert rule.condition is None

    def test_version_one_has_rules_only(self):
        config = parse_cf_config({**FULL_CONFIG, "version": 1})
        assert config.version == 1
        assert len(config.rules) == 2
        assert config.surfaces == {}

    def test_bad_rules_and_surfaces_dropped(self):
        config = parse_cf_config({
            "rules": [
                {"target": "table"},
                {"condition": {"operator": "roughly"}},
                {"style": {"bold": True}},
            ],
            "surfaces": {
                "cell:border": {"mode": "gradient"},
                "cell:icon": {"mode": "fieldValue"},
                "cell:background": {"mode": "gradient"},
            },
        })
        assert len(config.rules) == 1
        assert list(config.surfaces) == ["cell:background"]
        assert config.surfaces["cell:background"].gradient is not None

    def test_operator_aliases(self):
        config = parse_cf_config({"rules": [{"condition": {"operator": "gte", "value": 1}}]})
        assert config.rules[0].condition.operator == ">="

    def test_never_raises(self):
        for text in (None, "", "{", "[]", "42", {"rules": "nope"}):
            assert parse_cf_config(text) == CFConfig()


class TestRoundTrip:
    def test_full_config(self):
        config = parse_cf_config(FULL_CONFIG)
        again = parse_cf_config(serialize_cf_config(config))
        assert again == config

    def test_defaults_stable(self):
        config = CFConfig(rules=[CFRule()])
        text = serialize_cf_config(config)
        assert parse_cf_config(text) == config
        assert serialize_cf_config(parse_cf_config(text)) == text

    def test_camel_case_keys(self):
        payload = json.loads(serialize_cf_config(parse_cf_config(FULL_CONFIG)))
        rule = payload["rules"][0]
        assert "rowMatch" in rule and "columnMatch" in rule
        assert "fontColor" in rule["style"]
        assert "midColor" in payload["surfaces"]["cell:fontColor"]["gradient"]

    def test_version_one_omits_surfaces(self):
        config = parse_cf_config({"version": 1, "rules": []})
        assert "surfaces" not in json.loads(serialize_cf_config(config))
