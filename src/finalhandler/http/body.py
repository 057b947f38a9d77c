"""
=============================================================================
ERROR BODY RENDERING
=============================================================================

Turns a (status, message) pair into the bytes of an error response.

Two representations exist, chosen by content negotiation:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  html                                                               │
    │  ─────────────────────────────────────────────────────────────────  │
    │  <!doctype html>                                                    │
    │  <html lang=en>                                                     │
    │  <head>                                                             │
    │  <meta charset=utf-8>                                               │
    │  <title>Not Found</title>                                           │
    │  </head>                                                            │
    │  <body>                                                             │
    │  Cannot GET /missing                                                │
    │  </body>                                                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │  text                                                               │
    │  ─────────────────────────────────────────────────────────────────  │
    │  Cannot GET /missing\n                                              │
    └─────────────────────────────────────────────────────────────────────┘

The HTML shell is reproduced byte for byte (there is no closing </html>),
so clients and fixtures comparing raw bodies keep working.

=============================================================================
"""

from dataclasses import dataclass

from .status_codes import reason_phrase


HTML_MEDIA_TYPE = "text/html; charset=utf-8"
TEXT_MEDIA_TYPE = "text/plain; charset=utf-8"

_HTML_ESCAPES = str.maketrans({
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#39;",
})

_HTML_DOCUMENT = (
    "<!doctype html>\n"
    "<html lang=en>\n"
    "<head>\n"
    "<meta charset=utf-8>\n"
    "<title>{title}</title>\n"
    "</head>\n"
    "<body>\n"
    "{message}\n"
    "</body>\n"
)


@dataclass(frozen=True)
class RenderedBody:
    """
    A response payload tagged with its media type.

    Attributes:
        content: Encoded body bytes.
        media_type: Value for the Content-Type header.
    """

    content: bytes
    media_type: str

    def __len__(self) -> int:
        return len(self.content)


def escape_html(text: str) -> str:
    """
    Escape the five HTML-significant characters.

    & < > " ' become &amp; &lt; &gt; &quot; &#39; respectively.
    """
    return str(text).translate(_HTML_ESCAPES)


def render_html_body(status: int, message: str) -> RenderedBody:
    """
    Render the HTML error page.

    The message is escaped first, then newlines become <br> and runs of
    two spaces become " &nbsp;" so indentation in stack traces survives
    HTML whitespace collapsing.

    Args:
        status: Resolved status code (used for the <title>).
        message: Message to show in the body.

    Returns:
        UTF-8 encoded page tagged text/html.
    """
    msg = escape_html(message).replace("\n", "<br>").replace("  ", " &nbsp;")

    html = _HTML_DOCUMENT.format(
        title=escape_html(reason_phrase(status)),
        message=msg,
    )

    return RenderedBody(html.encode("utf-8"), HTML_MEDIA_TYPE)


def render_text_body(status: int, message: str) -> RenderedBody:
    """Render the plain text body: the message and one trailing newline."""
    return RenderedBody((message + "\n").encode("utf-8"), TEXT_MEDIA_TYPE)
