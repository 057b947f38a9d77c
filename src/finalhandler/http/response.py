"""
=============================================================================
SERVER RESPONSE
=============================================================================

A ServerResponse is written incrementally, the way handlers in a
middleware chain need it:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     RESPONSE LIFECYCLE                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   mutable head          headers sent             finished           │
    │   ────────────          ────────────             ────────           │
    │   status_code = 404     HTTP/1.1 404 ...         end() returned     │
    │   set_header(...)  ──►  first write() or  ──►    nothing more is    │
    │                         end() sends the head     accepted           │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Once the head is on the wire (`headers_sent`), the status and headers
cannot change any more. A handler that finds a response in that state can
only finish the body it started, or give up on the connection.

=============================================================================
SERIALIZATION FORMAT
=============================================================================

    HTTP/1.1 404 Not Found\r\n              ← status line
    X-Content-Type-Options: nosniff\r\n
    Content-Type: text/plain; charset=utf-8\r\n
    Content-Length: 20\r\n                  ← added by end() if missing
    Date: Mon, 19 Oct 2026 12:00:00 GMT\r\n ← added if missing
    Server: finalhandler/1.0\r\n            ← added if missing
    Connection: keep-alive\r\n              ← added if missing
    \r\n
    Cannot GET /missing\n

=============================================================================
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from ..core.connection import Connection
from .status_codes import HTTPStatus, reason_phrase


logger = logging.getLogger(__name__)


class ServerResponse:
    """
    Response side of one request/response exchange.

    Without a connection the response is written to `output`, which is
    how in-memory exchanges (and tests) observe what would hit the wire.

    Attributes:
        status_code: Status to send; mutable until headers_sent.
        headers_sent: True once the head was written.
        finished: True once end() completed.
        keep_alive: Whether the connection may serve another request.
    """

    def __init__(
        self,
        connection: Optional[Connection] = None,
        server_name: str = "finalhandler/1.0",
        keep_alive: bool = False,
        version: str = "HTTP/1.1",
    ):
        self.connection = connection
        self.server_name = server_name
        self.keep_alive = keep_alive
        self.version = version

        self.status_code: int = HTTPStatus.OK
        self.headers_sent = False
        self.finished = False
        self.output = bytearray()

        # lowercase name → (name as set, value)
        self._headers: Dict[str, Tuple[str, str]] = {}
        self._finish_callbacks: List[Callable[[], Any]] = []

    # =========================================================================
    # HEADERS
    # =========================================================================

    def set_header(self, name: str, value: Union[str, int]) -> "ServerResponse":
        """
        Set a response header, replacing any previous value.

        Raises:
            RuntimeError: The head was already sent.
        """
        if self.headers_sent:
            raise RuntimeError(f"Cannot set header {name!r} after headers are sent")
        self._headers[name.lower()] = (name, str(value))
        return self

    def get_header(self, name: str) -> Optional[str]:
        entry = self._headers.get(name.lower())
        return entry[1] if entry else None

    def has_header(self, name: str) -> bool:
        return name.lower() in self._headers

    def remove_header(self, name: str) -> None:
        if self.headers_sent:
            raise RuntimeError(f"Cannot remove header {name!r} after headers are sent")
        self._headers.pop(name.lower(), None)

    @property
    def headers(self) -> Dict[str, str]:
        """Snapshot of the headers with their original casing."""
        return dict(self._headers.values())

    # =========================================================================
    # WRITING
    # =========================================================================

    def flush_headers(self) -> None:
        """Send the head now, without any body."""
        if not self.headers_sent:
            if not self.has_header("Content-Length"):
                self.keep_alive = False
            self._send(self._serialize_head())

    def write(self, chunk: Union[str, bytes]) -> bool:
        """
        Send part of the body, sending the head first if needed.

        A response streamed without Content-Length is delimited by closing
        the connection, so keep-alive is switched off in that case.
        """
        if self.finished:
            raise RuntimeError("write() after end()")

        data = chunk.encode("utf-8") if isinstance(chunk, str) else chunk

        if not self.headers_sent:
            if not self.has_header("Content-Length"):
                self.keep_alive = False
            return self._send(self._serialize_head() + data)

        return self._send(data)

    def end(self, body: Union[str, bytes, None] = None) -> None:
        """
        Finish the response.

        When the head was not sent yet and no Content-Length was set, it is
        computed from `body`. Calling end() twice is a no-op.
        """
        if self.finished:
            logger.debug("end() called on a finished response")
            return

        data = b""
        if body is not None:
            data = body.encode("utf-8") if isinstance(body, str) else bytes(body)

        if not self.headers_sent:
            if not self.has_header("Content-Length"):
                self.set_header("Content-Length", len(data))
            self._send(self._serialize_head() + data)
        elif data:
            self._send(data)

        self.finished = True
        callbacks, self._finish_callbacks = self._finish_callbacks, []
        for callback in callbacks:
            callback()

    def on_finish(self, callback: Callable[[], Any]) -> None:
        """Run `callback` once end() completed (immediately if it already has)."""
        if self.finished:
            callback()
        else:
            self._finish_callbacks.append(callback)

    def _send(self, data: bytes) -> bool:
        if self.connection is None:
            self.output += data
            return True
        return self.connection.send(data)

    def _serialize_head(self) -> bytes:
        if not self.has_header("Date"):
            self.set_header("Date", format_http_date(datetime.now(timezone.utc)))
        if not self.has_header("Server"):
            self.set_header("Server", self.server_name)
        if not self.has_header("Connection"):
            self.set_header("Connection", "keep-alive" if self.keep_alive else "close")
        elif self.get_header("Connection").lower() == "close":
            self.keep_alive = False

        lines = [f"{self.version} {int(self.status_code)} {reason_phrase(self.status_code)}"]
        lines.extend(f"{name}: {value}" for name, value in self._headers.values())

        self.headers_sent = True
        return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231).

    Format: Day, DD Mon YYYY HH:MM:SS GMT, always in GMT.
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )
