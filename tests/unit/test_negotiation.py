"""
Unit tests for Accept header negotiation.
"""

import pytest

from finalhandler.http.negotiation import parse_accept, preferred_type


class TestParseAccept:
    """Tests for parse_accept()."""

    def test_quality_values(self):
        ranges = parse_accept("text/html, application/xhtml+xml;q=0.9, */*;q=0.8")

        assert [(r.type, r.subtype, r.q) for r in ranges] == [
            ("text", "html", 1.0),
            ("application", "xhtml+xml", 0.9),
            ("*", "*", 0.8),
        ]
        assert [r.index for r in ranges] == [0, 1, 2]

    def test_lowercases(self):
        ranges = parse_accept("Text/HTML")

        assert (ranges[0].type, ranges[0].subtype) == ("text", "html")

    def test_params_kept(self):
        ranges = parse_accept("text/plain; charset=UTF-8; q=0.5")

        assert ranges[0].params == {"charset": "utf-8"}
        assert ranges[0].q == 0.5

    def test_malformed_entries_skipped(self):
        """Test entries without a slash are ignored."""
        ranges = parse_accept("garbage, text/plain, ;q=1")

        assert [(r.type, r.subtype) for r in ranges] == [("text", "plain")]

    def test_params_after_q_ignored(self):
        """Test accept-extensions after q are not read as parameters."""
        ranges = parse_accept("text/html;q=0.5;ext=1")

        assert ranges[0].params == {}
        assert ranges[0].q == 0.5

    def test_bad_q_is_zero(self):
        assert parse_accept("text/html;q=high")[0].q == 0.0

    def test_comma_inside_quotes(self):
        """Test a quoted parameter value containing a comma stays whole."""
        ranges = parse_accept('text/html;level="1,2", text/plain')

        assert len(ranges) == 2
        assert ranges[0].params == {"level": "1,2"}


class TestPreferredType:
    """Tests for preferred_type() with the html/text candidates."""

    def test_missing_header(self):
        assert preferred_type(None) is None

    @pytest.mark.parametrize("accept,expected", [
        ("text/html", "html"),
        ("text/plain", "text"),
        ("*/*", "html"),
        ("text/*", "html"),
        ("text/plain, text/html", "text"),
        ("text/html;q=0.5, text/plain", "text"),
        ("text/html;q=0, */*", "text"),
        ("text/*;q=0.5, text/plain;q=0.5", "text"),
        ("text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8", "html"),
    ])
    def test_preference(self, accept, expected):
        assert preferred_type(accept) == expected

    @pytest.mark.parametrize("accept", [
        "application/json",
        "image/*",
        "text/html;q=0, text/plain;q=0",
        "",
    ])
    def test_nothing_acceptable(self, accept):
        assert preferred_type(accept) is None

    def test_more_specific_range_wins(self):
        """Test text/plain;q=0 overrides a broader */* for text."""
        assert preferred_type("*/*, text/plain;q=0", ["text"]) is None

    def test_wildcard_parameter_matches(self):
        assert preferred_type("text/html;level=*") == "html"

    def test_concrete_parameter_does_not_match(self):
        """Test a range parameter the candidate lacks rules the range out."""
        assert preferred_type("text/html;level=1") is None
        assert preferred_type("text/html;level=1, text/plain;q=0.5") == "text"

    def test_later_range_wins_tie(self):
        """Test the later of two equal ranges decides the candidate's position."""
        assert preferred_type("text/plain, text/html, text/plain", ["text", "html"]) == "html"

    def test_full_media_types(self):
        candidates = ["application/json", "text/plain"]

        assert preferred_type("application/json", candidates) == "application/json"
        assert preferred_type("text/*", candidates) == "text/plain"
