"""
Unit tests for request parsing and the request body stream.
"""

import pytest

from finalhandler.errors import HTTPParseError
from finalhandler.http.request import IncomingRequest, parse_request_head


class TestParseRequestHead:
    """Tests for parse_request_head()."""

    def test_parse_simple_get(self):
        """Test parsing a simple GET request."""
        request = parse_request_head(
            b"GET /api/users?page=2 HTTP/1.1\r\n"
            b"Host: localhost:8080\r\n"
            b"Accept: text/html"
        )

        assert request.method == "GET"
        assert request.url == "/api/users?page=2"
        assert request.path == "/api/users"
        assert request.version == "HTTP/1.1"
        assert request.accept == "text/html"
        assert request.original_url is None

    def test_headers_lowercased(self):
        request = parse_request_head(b"GET / HTTP/1.1\r\nX-Custom-Header: Value")

        assert request.headers == {"x-custom-header": "Value"}
        assert request.get_header("X-CUSTOM-HEADER") == "Value"

    def test_repeated_headers_joined(self):
        request = parse_request_head(b"GET / HTTP/1.1\r\nAccept: text/html\r\nAccept: */*")

        assert request.headers["accept"] == "text/html, */*"

    def test_continuation_line(self):
        request = parse_request_head(b"GET / HTTP/1.1\r\nX-Long: first\r\n  second")

        assert request.headers["x-long"] == "first second"

    def test_malformed_header_skipped(self):
        request = parse_request_head(b"GET / HTTP/1.1\r\nnot a header\r\nHost: x")

        assert request.headers == {"host": "x"}

    @pytest.mark.parametrize("line", [
        b"GET /",
        b"GET / HTTP/1.1 extra",
        b"G(T / HTTP/1.1",
        b"",
    ])
    def test_invalid_request_line(self, line):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request_head(line)

        assert exc_info.value.status_code == 400

    def test_unsupported_version(self):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request_head(b"GET / HTTP/2.0")

        assert exc_info.value.status_code == 505

    def test_chunked_rejected(self):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request_head(b"POST / HTTP/1.1\r\nTransfer-Encoding: chunked")

        assert exc_info.value.status_code == 501

    def test_invalid_content_length(self):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request_head(b"POST / HTTP/1.1\r\nContent-Length: -5")

        assert exc_info.value.status_code == 400

    def test_custom_method_accepted(self):
        """Test extension methods pass through untouched."""
        assert parse_request_head(b"PURGE /cache HTTP/1.1").method == "PURGE"


class TestIncomingRequest:
    """Tests for IncomingRequest state."""

    @pytest.mark.parametrize("version,connection,expected", [
        ("HTTP/1.1", None, True),
        ("HTTP/1.1", "close", False),
        ("HTTP/1.1", "Close", False),
        ("HTTP/1.0", None, False),
        ("HTTP/1.0", "keep-alive", True),
    ])
    def test_keep_alive(self, version, connection, expected):
        headers = {"connection": connection} if connection else {}
        request = IncomingRequest("GET", "/", version=version, headers=headers)

        assert request.is_keep_alive is expected

    def test_no_body_is_finished(self):
        request = IncomingRequest("GET", "/")

        assert request.finished
        assert request.content_length == 0

    def test_on_finished_runs_immediately_when_finished(self):
        calls = []
        IncomingRequest("GET", "/").on_finished(lambda: calls.append(1))

        assert calls == [1]

    def test_socket_is_connection(self):
        assert IncomingRequest("GET", "/").socket is None


class TestRequestBody:
    """Tests for reading and draining the body over a socket."""

    def test_read_feeds_readers(self, socket_pair):
        conn, client = socket_pair
        client.sendall(b"POST /upload HTTP/1.1\r\nContent-Length: 5\r\n\r\nhello")

        request = parse_request_head(conn.read_head(), conn)
        chunks = []
        request.pipe(chunks.append)

        assert not request.finished
        assert request.read() == b"hello"
        assert chunks == [b"hello"]
        assert request.finished
        assert request.read() == b""

    def test_unpipe_detaches(self, socket_pair):
        conn, client = socket_pair
        client.sendall(b"POST / HTTP/1.1\r\nContent-Length: 3\r\n\r\nabc")

        request = parse_request_head(conn.read_head(), conn)
        chunks = []
        request.pipe(chunks.append)
        request.unpipe(chunks.append)
        request.read()

        assert chunks == []

    def test_resume_drains_and_fires_once(self, socket_pair):
        conn, client = socket_pair
        client.sendall(b"POST / HTTP/1.1\r\nContent-Length: 6\r\n\r\nabc")

        request = parse_request_head(conn.read_head(), conn)
        calls = []
        request.on_finished(lambda: calls.append("done"))

        client.sendall(b"def")
        request.resume()
        request.resume()

        assert request.finished
        assert calls == ["done"]

    def test_early_close_finishes(self, socket_pair):
        """Test a peer that hangs up mid-body still finishes the request."""
        conn, client = socket_pair
        client.sendall(b"POST / HTTP/1.1\r\nContent-Length: 100\r\n\r\npartial")
        client.close()

        request = parse_request_head(conn.read_head(), conn)
        calls = []
        request.on_finished(lambda: calls.append("done"))
        request.resume()

        assert request.finished
        assert calls == ["done"]

    def test_next_request_left_buffered(self, socket_pair):
        """Test a pipelined request after the body is not consumed."""
        conn, client = socket_pair
        client.sendall(
            b"POST / HTTP/1.1\r\nContent-Length: 2\r\n\r\nok"
            b"GET /next HTTP/1.1\r\n\r\n"
        )

        first = parse_request_head(conn.read_head(), conn)
        first.resume()
        second = parse_request_head(conn.read_head(), conn)

        assert second.url == "/next"

    def test_destroyed_connection_is_finished(self, socket_pair):
        conn, client = socket_pair
        client.sendall(b"POST / HTTP/1.1\r\nContent-Length: 10\r\n\r\n")

        request = parse_request_head(conn.read_head(), conn)
        assert not request.finished

        conn.destroy()

        assert request.finished
