"""
Unit tests for error body rendering.
"""

from finalhandler.http.body import (
    HTML_MEDIA_TYPE,
    TEXT_MEDIA_TYPE,
    escape_html,
    render_html_body,
    render_text_body,
)


class TestEscapeHtml:
    """Tests for escape_html()."""

    def test_all_special_characters(self):
        assert escape_html("""<a href="x">Tom & Jerry's</a>""") == (
            "&lt;a href=&quot;x&quot;&gt;Tom &amp; Jerry&#39;s&lt;/a&gt;"
        )

    def test_plain_text_unchanged(self):
        assert escape_html("Cannot GET /missing") == "Cannot GET /missing"

    def test_ampersand_first(self):
        """Test already escaped text is escaped again, not double-decoded."""
        assert escape_html("&lt;") == "&amp;lt;"


class TestRenderHtml:
    """Tests for render_html_body()."""

    def test_exact_document(self):
        body = render_html_body(500, "Internal Server Error")

        assert body.content == (
            b"<!doctype html>\n"
            b"<html lang=en>\n"
            b"<head>\n"
            b"<meta charset=utf-8>\n"
            b"<title>Internal Server Error</title>\n"
            b"</head>\n"
            b"<body>\n"
            b"Internal Server Error\n"
            b"</body>\n"
        )
        assert body.media_type == HTML_MEDIA_TYPE

    def test_no_closing_html_tag(self):
        assert b"</html>" not in render_html_body(404, "x").content

    def test_newlines_and_indentation(self):
        """Test line breaks become <br> and double spaces keep their width."""
        body = render_html_body(500, "Traceback:\n  File \"app.py\"\n    raise")

        assert b"Traceback:<br> &nbsp;File &quot;app.py&quot;<br> &nbsp; &nbsp;raise\n" in body.content

    def test_title_escaped(self):
        assert b"<title>I&#39;m a Teapot</title>" in render_html_body(418, "tea").content

    def test_title_for_unknown_status(self):
        assert b"<title>Unknown</title>" in render_html_body(499, "x").content

    def test_utf8(self):
        body = render_html_body(404, "Cannot GET /café")

        assert "café".encode("utf-8") in body.content
        assert len(body) == len(body.content)


class TestRenderText:
    """Tests for render_text_body()."""

    def test_trailing_newline(self):
        body = render_text_body(404, "Cannot GET /missing")

        assert body.content == b"Cannot GET /missing\n"
        assert body.media_type == TEXT_MEDIA_TYPE
        assert len(body) == 20

    def test_not_escaped(self):
        assert render_text_body(400, "<b>").content == b"<b>\n"
