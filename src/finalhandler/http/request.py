"""
=============================================================================
INCOMING REQUEST
=============================================================================

An IncomingRequest is the parsed head of a request plus a body that is
still sitting on the socket. The body is consumed on demand:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     REQUEST BODY LIFECYCLE                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   parse_request_head()                                              │
    │        │                                                             │
    │        ▼                                                             │
    │   body pending ──read()/resume()──► body drained ──► FINISHED        │
    │        │                                               ▲             │
    │        └──────────── peer closed / destroyed ──────────┘             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

A request without a body (Content-Length 0 or absent) is finished as soon
as it is parsed.

=============================================================================
WHY "FINISHED" MATTERS
=============================================================================

On a keep-alive connection the bytes after this request's body belong to
the NEXT request. If a response is written and the connection moves on
while part of the body is still unread, those body bytes get parsed as a
request head. So code that wants to end the exchange early:

    1. unpipe()           detach every reader that was consuming the body
    2. on_finished(cb)    subscribe to the terminal state
    3. resume()           drain what is left, which fires cb exactly once

=============================================================================
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

from ..core.connection import Connection
from ..errors import HTTPParseError


logger = logging.getLogger(__name__)

BodyReader = Callable[[bytes], Any]

REQUEST_LINE_PATTERN = re.compile(r"^([!#$%&'*+.^_`|~0-9A-Za-z-]+) ([^ ]+) (HTTP/\d\.\d)$")
HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")


@dataclass
class IncomingRequest:
    """
    A parsed request whose body can be read, drained, or observed.

    Attributes:
        method: Request method as sent ("GET", "HEAD", ...).
        url: Request target as sent, including the query string.
        version: "HTTP/1.0" or "HTTP/1.1".
        headers: Header name (lowercase) → value.
        connection: Transport the body is read from. None for requests
                    built in memory.
        original_url: URL before any rewriting by upstream handlers
                      (mount points, rewrites). None if never rewritten.
    """

    method: str
    url: str
    version: str = "HTTP/1.1"
    headers: Dict[str, str] = field(default_factory=dict)
    connection: Optional[Connection] = None
    original_url: Optional[str] = None

    _remaining: int = field(default=0, init=False, repr=False)
    _finished: bool = field(default=False, init=False, repr=False)
    _readers: List[BodyReader] = field(default_factory=list, init=False, repr=False)
    _finished_callbacks: List[Callable[[], Any]] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self):
        self._remaining = self.content_length
        if self._remaining == 0:
            self._finished = True

    # =========================================================================
    # HEAD ACCESSORS
    # =========================================================================

    @property
    def path(self) -> str:
        """Path component of the URL, without the query string."""
        return urlparse(self.url).path or "/"

    @property
    def content_length(self) -> int:
        try:
            return max(int(self.headers.get("content-length", 0)), 0)
        except ValueError:
            return 0

    @property
    def accept(self) -> Optional[str]:
        """Raw Accept header, None when the client sent none."""
        return self.headers.get("accept")

    @property
    def is_keep_alive(self) -> bool:
        """HTTP/1.1 keeps alive unless told to close; HTTP/1.0 the reverse."""
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"

    @property
    def socket(self) -> Optional[Connection]:
        """The transport handle, for callers that must destroy it."""
        return self.connection

    def get_header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    # =========================================================================
    # BODY STREAM
    # =========================================================================

    @property
    def finished(self) -> bool:
        """
        True once no more body bytes will arrive.

        That is the case when the body was fully read, or when the
        underlying connection is already closed.
        """
        if self._finished:
            return True
        return self.connection is not None and self.connection.closed

    def pipe(self, reader: BodyReader) -> BodyReader:
        """Attach a reader that receives every body chunk read from now on."""
        self._readers.append(reader)
        return reader

    def unpipe(self, reader: Optional[BodyReader] = None) -> None:
        """Detach one reader, or every reader when none is given."""
        if reader is None:
            self._readers.clear()
        elif reader in self._readers:
            self._readers.remove(reader)

    def read(self, size: int = 8192) -> bytes:
        """
        Read the next body chunk and hand it to attached readers.

        Returns:
            The chunk, or b"" once the body is finished.
        """
        if self.finished:
            self._finish()
            return b""

        chunk = b""
        if self.connection is not None:
            chunk = self.connection.read_body(min(size, self._remaining))

        if not chunk:
            # Peer went away before sending the whole body
            logger.debug(f"Request body ended early, {self._remaining} bytes missing")
            self._remaining = 0
            self._finish()
            return b""

        self._remaining -= len(chunk)
        for reader in list(self._readers):
            reader(chunk)

        if self._remaining <= 0:
            self._finish()

        return chunk

    def resume(self) -> None:
        """
        Consume the rest of the body, then fire the finished callbacks.

        Blocks the calling thread until the body is drained or the peer
        goes away; each read waits at most the connection timeout. The
        server runs one thread per connection, so this only stalls the
        exchange being finalized.
        """
        while not self._finished:
            self.read()

    def on_finished(self, callback: Callable[[], Any]) -> None:
        """
        Run `callback` once, when the request reaches its finished state.

        Runs immediately when the request is already finished.
        """
        if self.finished:
            self._finish()
            callback()
            return
        self._finished_callbacks.append(callback)

    def _finish(self) -> None:
        self._finished = True
        callbacks, self._finished_callbacks = self._finished_callbacks, []
        for callback in callbacks:
            callback()


def parse_request_head(head: bytes, connection: Optional[Connection] = None) -> IncomingRequest:
    """
    Parse a request head (request line + headers) into an IncomingRequest.

    Args:
        head: Head bytes without the terminating blank line.
        connection: Connection the body will be read from.

    Raises:
        HTTPParseError: Malformed request line, unsupported version or
                        unsupported transfer coding.
    """
    text = head.decode("latin-1")
    lines = text.split("\r\n")

    match = REQUEST_LINE_PATTERN.match(lines[0])
    if not match:
        raise HTTPParseError(f"Invalid request line: {lines[0]!r}")

    method, url, version = match.groups()

    if version not in ("HTTP/1.0", "HTTP/1.1"):
        raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)

    headers = _parse_headers(lines[1:])

    if "transfer-encoding" in headers:
        raise HTTPParseError("Transfer-Encoding is not supported", status_code=501)

    if not headers.get("content-length", "0").strip().isdigit():
        raise HTTPParseError(f"Invalid Content-Length: {headers['content-length']!r}")

    return IncomingRequest(
        method=method,
        url=url,
        version=version,
        headers=headers,
        connection=connection,
    )


def _parse_headers(lines: List[str]) -> Dict[str, str]:
    """
    Parse header lines into a dict with lowercase names.

    Repeated headers are joined with ", ". Continuation lines (leading
    whitespace) extend the previous header. Malformed lines are skipped.
    """
    headers: Dict[str, str] = {}
    current_name = None

    for line in lines:
        if not line:
            continue

        if line[0] in (" ", "\t"):
            if current_name is not None:
                headers[current_name] += " " + line.strip()
            continue

        match = HEADER_PATTERN.match(line)
        if not match:
            continue

        name, value = match.groups()
        name = name.strip().lower()
        value = value.strip()
        current_name = name

        if name in headers:
            headers[name] += ", " + value
        else:
            headers[name] = value

    return headers
