"""
=============================================================================
FINALHANDLER - The Last Handler In An HTTP Middleware Chain
=============================================================================

When no handler produced a response, or a handler failed and passed its
error along, somebody still has to answer the client. This package does
exactly that, once per request:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   done = finalhandler(req, res, {"onerror": report})                │
    │                                                                      │
    │   done()          → 404  "Cannot GET /missing"                       │
    │   done(err)       → err.status_code / err.status, else 500           │
    │                     body: reason phrase, or traceback if             │
    │                     stacktrace=True                                  │
    │                                                                      │
    │   HTML or plain text, picked from the Accept header                  │
    │   X-Content-Type-Options: nosniff, exact Content-Length              │
    │   written only after the request body is drained                     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    finalhandler/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m finalhandler)
    ├── handler.py           # FinalHandler, resolve(), send()
    ├── errors.py            # HTTPError, ErrorSignal
    ├── config.py            # HandlerConfig, ServerConfig
    ├── server.py            # Demo HTTP server with middleware chain
    ├── core/
    │   ├── connection.py    # Socket wrapper (read head/body, destroy)
    │   └── scheduler.py     # Deferred callbacks for onerror
    └── http/
        ├── request.py       # IncomingRequest with drainable body
        ├── response.py      # ServerResponse
        ├── body.py          # HTML / text error bodies
        ├── negotiation.py   # Accept header negotiation
        └── status_codes.py  # Reason phrases

=============================================================================
"""

__version__ = "1.0.0"

from .config import HandlerConfig, ServerConfig
from .errors import ErrorSignal, HTTPError
from .handler import FinalHandler, finalhandler

__all__ = [
    "finalhandler",
    "FinalHandler",
    "HandlerConfig",
    "ServerConfig",
    "ErrorSignal",
    "HTTPError",
    "__version__",
]
