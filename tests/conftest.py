"""
pytest configuration and fixtures.
"""

import socket
import threading
from typing import Dict, Generator, List, Optional, Tuple
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from finalhandler import HTTPError, ServerConfig
from finalhandler.core.connection import Connection
from finalhandler.core.scheduler import CallbackScheduler
from finalhandler.http.request import IncomingRequest
from finalhandler.http.response import ServerResponse
from finalhandler.server import HTTPServer


def parse_output(raw: bytes) -> Tuple[int, Dict[str, str], bytes]:
    """Split raw response bytes into (status, headers, body)."""
    head, _, body = raw.partition(b"\r\n\r\n")
    lines = head.decode("latin-1").split("\r\n")
    status = int(lines[0].split(" ")[1])
    headers = {}
    for line in lines[1:]:
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()
    return status, headers, body


class FakeSocket:
    """Transport stand-in that records destroy()."""

    def __init__(self):
        self.destroyed = False

    def destroy(self):
        self.destroyed = True


class PendingRequest:
    """
    Request handle whose body is still being read.

    resume() only records the call; the test decides when the request
    finishes by calling finish().
    """

    def __init__(self, method: str = "POST", url: str = "/upload", headers: Optional[dict] = None):
        self.method = method
        self.url = url
        self.original_url = None
        self.headers = headers or {}
        self.socket = FakeSocket()
        self.finished = False
        self.readers: List = [print]
        self.resumed = 0
        self.unpiped = 0
        self._callbacks: List = []

    def unpipe(self):
        self.unpiped += 1
        self.readers.clear()

    def on_finished(self, callback):
        if self.finished:
            callback()
        else:
            self._callbacks.append(callback)

    def resume(self):
        self.resumed += 1

    def finish(self):
        self.finished = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()


@pytest.fixture
def scheduler() -> CallbackScheduler:
    """Scheduler whose callbacks only run on run_pending()."""
    return CallbackScheduler(threaded=False)


@pytest.fixture
def make_request():
    """Factory for in-memory GET-style requests."""
    def factory(method: str = "GET", url: str = "/missing", **headers) -> IncomingRequest:
        return IncomingRequest(
            method=method,
            url=url,
            headers={name.replace("_", "-").lower(): value for name, value in headers.items()},
        )
    return factory


@pytest.fixture
def response() -> ServerResponse:
    """In-memory response; written bytes land in response.output."""
    return ServerResponse()


@pytest.fixture
def pending_request() -> PendingRequest:
    return PendingRequest()


@pytest.fixture
def socket_pair() -> Generator[Tuple[Connection, socket.socket], None, None]:
    """A server-side Connection and the client socket talking to it."""
    server_sock, client_sock = socket.socketpair()
    client_sock.settimeout(5.0)
    conn = Connection(socket=server_sock, address=("127.0.0.1", 0), timeout=5.0)

    yield conn, client_sock

    conn.destroy()
    client_sock.close()


def recv_all(sock: socket.socket) -> bytes:
    """Read from a socket until the peer closes it."""
    chunks = []
    while True:
        try:
            chunk = sock.recv(4096)
        except (ConnectionResetError, socket.timeout):
            break
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


class TestServer:
    """Test server helper that runs in a background thread."""

    __test__ = False

    def __init__(self, server: HTTPServer):
        self.server = server
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self.server.port

    def start(self):
        """Start server in background thread."""
        self._thread = threading.Thread(target=self.server.run, daemon=True)
        self._thread.start()

        if not self.server.wait_until_ready(timeout=5.0):
            raise RuntimeError("Server failed to start")

    def stop(self):
        """Stop the server."""
        self.server.shutdown()

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)

    def request(self, raw: bytes) -> bytes:
        """Send raw bytes on a fresh connection and read until close."""
        with socket.create_connection(("127.0.0.1", self.port), timeout=5.0) as sock:
            sock.sendall(raw)
            data = recv_all(sock)

        # EOF on the client can arrive before the server thread finishes the
        # request (e.g. deferring onerror); wait for connection threads to exit.
        for thread in threading.enumerate():
            if thread.name.startswith("conn-") and thread is not threading.current_thread():
                thread.join(timeout=5.0)
        return data


@pytest.fixture
def errors_seen() -> List:
    return []


@pytest.fixture
def test_server(errors_seen) -> Generator[TestServer, None, None]:
    """Running demo server with a few routes and an onerror recorder."""
    server = HTTPServer(
        ServerConfig(host="127.0.0.1", port=0, log_level="WARNING", keep_alive_timeout=1.0),
        {"onerror": lambda err, req, res: errors_seen.append((err, req.url))},
        scheduler=CallbackScheduler(),
    )

    @server.use
    def routes(req, res, next):
        if req.path == "/ok":
            res.set_header("Content-Type", "text/plain; charset=utf-8")
            res.end("ok\n")
        elif req.path == "/forbidden":
            raise HTTPError(403)
        elif req.path == "/boom":
            raise RuntimeError("kaboom")
        elif req.path == "/partial":
            res.write("partial body")
            next(RuntimeError("failed mid-stream"))
        else:
            next()

    test_srv = TestServer(server)
    test_srv.start()

    yield test_srv

    test_srv.stop()
