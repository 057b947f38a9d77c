"""
=============================================================================
CLI ENTRY POINT
=============================================================================

Runs the demo server so the final handler can be poked with curl:

    python -m finalhandler --port 3000

    curl -i localhost:3000/missing                  # 404, text/plain
    curl -i -H 'Accept: text/html' localhost:3000/  # 404, HTML page
    curl -i localhost:3000/error                    # 500
    curl -i localhost:3000/error/403                # 403 Forbidden
    curl -I localhost:3000/error/418                # HEAD: headers only

With --stacktrace the body of /error shows the Python traceback instead
of the reason phrase. Every error is also logged through the onerror
callback.

=============================================================================
"""

import argparse
import logging
import sys

from . import __version__
from .config import HandlerConfig, ServerConfig
from .errors import HTTPError
from .server import HTTPServer


logger = logging.getLogger("finalhandler.cli")


def log_error(err, request, response):
    """onerror callback: one WARNING line per failed request."""
    logger.warning(f"{request.method} {request.url} failed: {err!r}")


def error_routes(request, response, next):
    """Raise on /error and /error/<status>; everything else falls through."""
    parts = request.path.strip("/").split("/")

    if parts[0] != "error":
        return next()

    if len(parts) == 1:
        raise RuntimeError("Something broke")

    try:
        status = int(parts[1])
    except ValueError:
        return next()

    raise HTTPError(status)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m finalhandler",
        description="Demo server whose every request ends in the final handler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m finalhandler                    # Run with defaults
  python -m finalhandler --port 3000        # Custom port
  python -m finalhandler --stacktrace       # Show tracebacks in bodies
        """,
    )

    parser.add_argument(
        "--host", "-H",
        default=None,
        help="Host to bind to (default: $HTTP_HOST or 127.0.0.1)",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help="Port to listen on (default: $HTTP_PORT or 8080)",
    )
    parser.add_argument(
        "--stacktrace",
        action="store_true",
        help="Put error tracebacks in response bodies (never in production)",
    )
    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: $HTTP_LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"finalhandler {__version__}",
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    config = ServerConfig.from_env()
    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.log_level is not None:
        config.log_level = args.log_level

    handler_config = HandlerConfig.from_env(onerror=log_error)
    if args.stacktrace:
        handler_config = HandlerConfig(onerror=log_error, stacktrace=True)

    try:
        server = HTTPServer(config, handler_config)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    server.setup_logging()
    server.use(error_routes)

    try:
        server.run()
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
