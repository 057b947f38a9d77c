"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps a client socket with the small set of operations the request,
the response and the final handler need.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL
=============================================================================

recv() returns whatever the kernel has, not "one request". A single recv()
might hold half a request line, or a full request plus the start of the
next one (pipelining). So reading is split in two steps:

    ┌─────────────────────────────────────────────────────────────────┐
    │  read_head()                                                     │
    │  ─────────────────────────────────────────────────────────────  │
    │  Buffer until \r\n\r\n, return the head, KEEP the rest buffered  │
    ├─────────────────────────────────────────────────────────────────┤
    │  read_body(n)                                                    │
    │  ─────────────────────────────────────────────────────────────  │
    │  Hand out up to n body bytes, buffered bytes first               │
    └─────────────────────────────────────────────────────────────────┘

The body is NOT read eagerly. Whoever owns the request decides whether
to consume it or drain it; a response must not be written while some
other reader is still halfway through the body.

=============================================================================
CLOSE VS DESTROY
=============================================================================

    close()    Graceful: FIN, drain leftovers, release fd.
               Used when the exchange completed normally.

    destroy()  Abrupt: shut down both directions and release fd now.
               Used when a response was already partially sent and can
               no longer be completed; the client sees the connection
               drop instead of a malformed response.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──► READING ──► PROCESSING ──► WRITING
     │         ▲                           │
     │         └──── keep-alive ───────────┤
     │                                     ▼
     └────────────────────────────────► CLOSING
                                           │
                                           ▼
                                        CLOSED            (destroy() jumps straight here)

=============================================================================
"""

import socket
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional
import uuid


logger = logging.getLogger(__name__)

HEAD_TERMINATOR = b"\r\n\r\n"


class ConnectionState(Enum):
    """Connection lifecycle states."""

    NEW = "new"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Connection:
    """
    One accepted client socket plus the bytes read ahead of the parser.

    Attributes:
        socket: Accepted socket.
        address: Peer (ip, port).
        id: Short identifier used in log lines.
        state: Current connection state.
        requests_handled: Number of request heads read so far.
        destroyed: True once destroy() ran.
    """

    socket: socket.socket
    address: tuple

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    requests_handled: int = 0
    destroyed: bool = False

    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive_timeout: float = 5.0
    max_head_size: int = 64 * 1024

    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0] if self.address else ""

    @property
    def closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    # =========================================================================
    # READING
    # =========================================================================

    def read_head(self) -> Optional[bytes]:
        """
        Read one request head (request line + headers).

        Bytes after the blank line stay buffered for read_body() or the
        next request on a keep-alive connection.

        Returns:
            Head bytes without the terminating blank line, or None if the
            client closed the connection (or went idle on keep-alive).

        Raises:
            TimeoutError: First request did not arrive in time.
            ValueError: Head grew beyond max_head_size.
        """
        self.state = ConnectionState.READING

        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            while HEAD_TERMINATOR not in self._buffer:
                chunk = self._recv(self.buffer_size)
                if not chunk:
                    return None
                self._buffer += chunk

                if len(self._buffer) > self.max_head_size:
                    raise ValueError(f"Request head too large: {len(self._buffer)} bytes")

            head_end = self._buffer.find(HEAD_TERMINATOR)
            head = self._buffer[:head_end]
            self._buffer = self._buffer[head_end + len(HEAD_TERMINATOR):]

            self.requests_handled += 1
            self.state = ConnectionState.PROCESSING
            return head

        except socket.timeout:
            if self.requests_handled > 0:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")

        finally:
            if not self.closed:
                self.socket.settimeout(self.timeout)

    def read_body(self, size: int) -> bytes:
        """
        Read up to `size` body bytes.

        Buffered bytes (read together with the head) are served first.

        Returns:
            Between 1 and `size` bytes, or b"" if the peer closed.
        """
        if size <= 0:
            return b""

        if self._buffer:
            chunk = self._buffer[:size]
            self._buffer = self._buffer[size:]
            return chunk

        return self._recv(min(size, self.buffer_size))

    def _recv(self, size: int) -> bytes:
        if self.closed:
            return b""
        try:
            return self.socket.recv(size)
        except (ConnectionResetError, BrokenPipeError):
            return b""

    # =========================================================================
    # WRITING
    # =========================================================================

    def send(self, data: bytes) -> bool:
        """
        Send bytes to the client.

        Returns:
            True if everything was sent, False if the connection is gone.
        """
        if self.closed:
            logger.warning(f"[{self.id}] Send on closed connection dropped")
            return False

        self.state = ConnectionState.WRITING

        try:
            self.socket.sendall(data)
            return True
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self, linger: float = 0.5):
        """
        Half-close, drain for up to `linger` seconds, then release the fd.

        Draining keeps a client that is still sending from getting a reset
        before it read the response.
        """
        if self.closed:
            return

        self.state = ConnectionState.CLOSING
        sock = self.socket

        try:
            sock.shutdown(socket.SHUT_WR)
            sock.settimeout(linger)
            while sock.recv(self.buffer_size):
                pass
        except OSError:
            # peer gone or linger expired
            pass
        finally:
            sock.close()

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    def destroy(self):
        """
        Tear the connection down immediately.

        No FIN handshake and no draining. Pending reads and writes on the
        socket fail at once, which unblocks anything waiting on it.
        """
        if self.closed:
            return

        self.destroyed = True
        self._buffer = b""

        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection destroyed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
