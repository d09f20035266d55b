"""Tests for color helpers and icon resolution."""

from __future__ import annotations

from statement_matrix.formatting.color import (
    gradient_color,
    is_css_color,
    lerp_rgb,
    parse_hex,
    to_hex,
)
from statement_matrix.formatting.icons import icon_glyph, resolve_icon


class TestHex:
    def test_parse_six_digit(self):
        assert parse_hex("#1f77b4") == (31, 119, 180)

    def test_parse_eight_digit_ignores_alpha(self):
        assert parse_hex("#FF000080") == (255, 0, 0)

    def test_rejects_other_forms(self):
        for color in ("red", "#fff", "rgb(1,2,3)", None, "", "#12345g"):
            assert parse_hex(color) is None

    def test_to_hex_lowercase(self):
        assert to_hex((255, 171, 0)) == "#ffab00"


class TestGradient:
    def test_endpoints(self):
        assert gradient_color("#000000", "#ffffff", 0.0) == "#000000"
        assert gradient_color("#000000", "#ffffff", 1.0) == "#ffffff"

    def test_midpoint_two_stop(self):
        assert gradient_color("#000000", "#ffffff", 0.5) == "#808080"

    def test_three_stop(self):
        assert gradient_color("#ff0000", "#0000ff", 0.5, "#00ff00") == "#00ff00"
        assert gradient_color("#ff0000", "#0000ff", 0.25, "#00ff00") == "#808000"

    def test_t_clamped(self):
        assert gradient_color("#000000", "#ffffff", -3) == "#000000"
        assert gradient_color("#000000", "#ffffff", 7) == "#ffffff"

    def test_named_colors_not_interpolated(self):
        assert gradient_color("red", "#ffffff", 0.5) is None

    def test_bad_mid_ignored(self):
        assert gradient_color("#000000", "#ffffff", 1.0, "green") == "#ffffff"

    def test_monotonic_channel(self):
        reds = [lerp_rgb((10, 0, 0), (250, 0, 0), t / 10)[0] for t in range(11)]
        assert reds == sorted(reds)


class TestCssColor:
    def test_accepted(self):
        for color in ("#fff", "#a1b2c3", "rgb(1, 2, 3)", "hsla(1, 2%, 3%, .5)", "teal"):
            assert is_css_color(color)

    def test_rejected(self):
        for color in ("", "  ", "#12", "not a color", None, 5):
            assert not is_css_color(color)


class TestIcons:
    def test_builtin_keys(self):
        assert resolve_icon("arrowUp") == "arrowUp"
        assert resolve_icon("ARROWDOWN") == "arrowDown"

    def test_aliases(self):
        assert resolve_icon("up") == "arrowUp"
        assert resolve_icon("Amber") == "circleYellow"
        assert resolve_icon("tick") == "check"
        assert resolve_icon("!") == "warning"

    def test_data_uri(self):
        uri = "data:image/png;base64,AAAA"
        assert resolve_icon(uri) == uri

    def test_unknown(self):
        assert resolve_icon("rocket") is None
        assert resolve_icon(None) is None
        assert resolve_icon("  ") is None

    def test_glyph(self):
        assert icon_glyph("star") == "★"
        assert icon_glyph("data:image/png;base64,AAAA") == ""
