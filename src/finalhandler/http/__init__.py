"""
HTTP protocol pieces used by the final handler: reason phrases, Accept
negotiation and error body rendering. The request and response handles
live in .request and .response.
"""

from .status_codes import HTTPStatus, reason_phrase
from .negotiation import preferred_type, parse_accept
from .body import RenderedBody, escape_html, render_html_body, render_text_body

__all__ = [
    "HTTPStatus",
    "reason_phrase",
    "preferred_type",
    "parse_accept",
    "RenderedBody",
    "escape_html",
    "render_html_body",
    "render_text_body",
]
