"""
=============================================================================
DEMO HTTP SERVER
=============================================================================

A small threaded HTTP/1.1 server whose middleware chain always ends in
the final handler. It exists to run the final handler against real
sockets; it is not meant to compete with a production server.

=============================================================================
REQUEST FLOW
=============================================================================

    accept() ──► Connection ──► read_head() ──► parse_request_head()
                                                        │
                      ┌─────────────────────────────────┘
                      ▼
    middleware[0](req, res, next)
          │ next()
          ▼
    middleware[1](req, res, next)
          │ next(err)  or raise
          ▼
    FinalHandler(req, res)(err)   ← chain exhausted, or an error skipped
                                     the remaining middleware

=============================================================================
KEEP-ALIVE RULES
=============================================================================

The connection is reused only when all of these hold:

    - the client asked for it and the server allows it
    - the response was ended with a known length
    - the request body was fully drained
    - nobody destroyed the socket

Anything else closes the connection after the response.

=============================================================================
"""

import logging
import signal
import socket
import threading
from typing import Any, Callable, List, Mapping, Optional, Union

from .config import HandlerConfig, ServerConfig
from .core.connection import Connection
from .core.scheduler import CallbackScheduler, default_scheduler
from .errors import HTTPParseError
from .handler import FinalHandler
from .http.body import render_text_body
from .http.request import IncomingRequest, parse_request_head
from .http.response import ServerResponse
from .http.status_codes import HTTPStatus, reason_phrase


logger = logging.getLogger(__name__)

NextFunction = Callable[..., None]
Middleware = Callable[[IncomingRequest, ServerResponse, NextFunction], Any]


class HTTPServer:
    """
    Threaded HTTP server with a connect-style middleware chain.

    Example:
        server = HTTPServer(ServerConfig(port=8080), {"stacktrace": True})

        @server.use
        def hello(req, res, next):
            if req.path != "/":
                return next()
            res.set_header("Content-Type", "text/plain")
            res.end("hello\\n")

        server.run()
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        handler_config: Union[HandlerConfig, Mapping[str, Any], None] = None,
        scheduler: Optional[CallbackScheduler] = None,
    ):
        self.config = config or ServerConfig()
        self.config.validate()
        self.handler_config = HandlerConfig.from_options(handler_config)
        self.scheduler = scheduler or default_scheduler()

        self._middleware: List[Middleware] = []
        self._socket: Optional[socket.socket] = None
        self._running = False
        self._ready = threading.Event()
        self._original_handlers: dict = {}

    # =========================================================================
    # MIDDLEWARE
    # =========================================================================

    def use(self, middleware: Middleware) -> Middleware:
        """
        Append a middleware to the chain.

        Returns the middleware unchanged so it can be used as a decorator.
        """
        self._middleware.append(middleware)
        logger.debug(f"Added middleware: {getattr(middleware, '__name__', middleware)!r}")
        return middleware

    def handle(self, request: IncomingRequest, response: ServerResponse) -> None:
        """
        Run one request through the chain.

        Each middleware gets next(err=None). Calling next() moves on;
        calling next(err) or raising skips the rest of the chain and
        hands the error to the final handler.
        """
        done = FinalHandler(request, response, self.handler_config, self.scheduler)
        stack = list(self._middleware)
        index = 0

        def next_(err: Any = None) -> None:
            nonlocal index

            if err is not None or index >= len(stack):
                index = len(stack)
                done(err)
                return

            middleware = stack[index]
            index += 1

            try:
                middleware(request, response, next_)
            except Exception as e:
                logger.debug(f"Middleware {getattr(middleware, '__name__', middleware)!r} raised {e!r}")
                next_(e)

        next_()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def port(self) -> int:
        """Bound port; differs from config.port when that was 0."""
        if self._socket is not None:
            return self._socket.getsockname()[1]
        return self.config.port

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        return self._ready.wait(timeout)

    def setup_logging(self) -> None:
        """Configure logging from config.log_level."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        logging.getLogger("finalhandler").setLevel(level)

    def run(self) -> None:
        """Bind, listen and serve until shutdown() is called. Blocks."""
        self._socket = self._create_socket()

        try:
            self._socket.bind((self.config.host, self.config.port))
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            self._socket.close()
            self._socket = None
            raise

        self._socket.listen(self.config.backlog)
        self._running = True
        self._setup_signals()

        logger.info(f"Server listening on {self.config.host}:{self.port}")
        self._ready.set()

        try:
            self._accept_loop()
        finally:
            self._cleanup()

    def shutdown(self) -> None:
        """Stop accepting connections. Safe to call more than once."""
        if self._running:
            logger.info("Shutting down server...")
        self._running = False

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        # accept() wakes up every second to notice shutdown()
        sock.settimeout(1.0)
        return sock

    def _setup_signals(self) -> None:
        # signal.signal() only works on the main thread
        if threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, initiating shutdown...")
            self.shutdown()

        for sig in (signal.SIGTERM, signal.SIGINT):
            self._original_handlers[sig] = signal.signal(sig, shutdown_handler)

    def _cleanup(self) -> None:
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None

        self._ready.clear()
        logger.info("Server stopped")

    def _accept_loop(self) -> None:
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    logger.error(f"Accept error: {e}")
                break

            conn = Connection(
                socket=client_socket,
                address=client_address,
                buffer_size=self.config.buffer_size,
                timeout=self.config.timeout,
                keep_alive_timeout=self.config.keep_alive_timeout,
                max_head_size=self.config.max_head_size,
            )
            logger.debug(f"[{conn.id}] Accepted connection from {conn.client_ip}")

            threading.Thread(
                target=self._process_connection,
                args=(conn,),
                name=f"conn-{conn.id}",
                daemon=True,
            ).start()

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _process_connection(self, conn: Connection) -> None:
        """Serve requests on one connection until it cannot be reused."""
        with conn:
            while self._running:
                try:
                    head = conn.read_head()
                except TimeoutError:
                    self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT)
                    break
                except ValueError as e:
                    logger.warning(f"[{conn.id}] {e}")
                    self._send_error(conn, HTTPStatus.REQUEST_HEADER_FIELDS_TOO_LARGE)
                    break

                if head is None:
                    break

                try:
                    request = parse_request_head(head, conn)
                except HTTPParseError as e:
                    logger.warning(f"[{conn.id}] {e}")
                    self._send_error(conn, e.status_code)
                    break

                response = ServerResponse(
                    conn,
                    server_name=self.config.server_name,
                    keep_alive=self.config.keep_alive and request.is_keep_alive,
                )

                try:
                    self.handle(request, response)
                except Exception as e:
                    logger.exception(f"[{conn.id}] Unhandled error in {request.method} {request.url}: {e}")
                    break

                if conn.closed:
                    break

                if not response.finished:
                    logger.warning(f"[{conn.id}] {request.method} {request.url} was never ended, closing")
                    break

                if not (response.keep_alive and request.finished):
                    break

    def _send_error(self, conn: Connection, status: int) -> None:
        """Answer a request that never made it to the middleware chain."""
        body = render_text_body(status, reason_phrase(status))
        response = ServerResponse(conn, server_name=self.config.server_name)
        response.status_code = status
        response.set_header("X-Content-Type-Options", "nosniff")
        response.set_header("Content-Type", body.media_type)
        response.set_header("Content-Length", len(body))
        response.end(body.content)
