"""
=============================================================================
FINAL HANDLER
=============================================================================

The last link of a middleware chain. It runs when nothing earlier produced
a response (404), or when something earlier failed and passed the error
along (4xx/5xx).

    middleware ─► middleware ─► router ─► ... ─► FINAL HANDLER
                      │                              ▲
                      └──────── next(err) ───────────┘

=============================================================================
THREE STEPS PER CALL
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │  1. RESOLVE                                                          │
    │     err is None  → 404 "Cannot GET /missing"                         │
    │     err present  → status from err (status_code, then status),       │
    │                    else the response's current status; anything     │
    │                    falsy or below 400 becomes 500                    │
    │                    message = traceback (stacktrace=True) or the      │
    │                    reason phrase (default)                           │
    ├─────────────────────────────────────────────────────────────────────┤
    │  2. RENDER                                                           │
    │     Accept prefers html → small HTML page                            │
    │     anything else      → message + "\n" as text/plain                │
    ├─────────────────────────────────────────────────────────────────────┤
    │  3. FINALIZE                                                         │
    │     request finished → write now                                     │
    │     otherwise        → unpipe, wait for finished, drain, then write  │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
WHEN HEADERS ARE ALREADY SENT
=============================================================================

    no error  → do nothing. A response is already under way; a late
                fall-through must not turn it into a 404.

    error     → destroy the socket. A half-sent response cannot be
                replaced by an error page; the client has to see the
                connection fail.

=============================================================================
USAGE
=============================================================================

    from finalhandler import finalhandler

    def app(req, res):
        done = finalhandler(req, res, {"onerror": log_error})
        try:
            handle(req, res, done)
        except Exception as e:
            done(e)

=============================================================================
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Union

from .config import HandlerConfig
from .core.scheduler import CallbackScheduler, default_scheduler
from .errors import ErrorSignal
from .http.body import RenderedBody, render_html_body, render_text_body
from .http.negotiation import preferred_type
from .http.status_codes import HTTPStatus, reason_phrase


logger = logging.getLogger(__name__)

# Candidates in order of preference when the client accepts both equally
NEGOTIABLE_TYPES = ("html", "text")

_RENDERERS = {
    "html": render_html_body,
    "text": render_text_body,
}


@dataclass(frozen=True)
class Resolution:
    """
    Outcome of the resolve step.

    skip=True means "do nothing at all": status and message are None.
    """

    status: Optional[int]
    message: Optional[str]
    skip: bool = False


def resolve(
    signal: Optional[ErrorSignal],
    current_status: int,
    method: str,
    url: str,
    original_url: Optional[str] = None,
    headers_sent: bool = False,
    stacktrace: bool = False,
) -> Resolution:
    """
    Decide status and message for one final handler call.

    Args:
        signal: The error, or None for the not-found path.
        current_status: Status currently set on the response.
        method: Request method, quoted in the 404 message.
        url: Current request URL.
        original_url: URL before rewrites; preferred in the 404 message.
        headers_sent: Whether the response head is already on the wire.
        stacktrace: Use the error detail instead of the reason phrase.

    Returns:
        The Resolution. Never raises.
    """
    if signal is None and headers_sent:
        return Resolution(status=None, message=None, skip=True)

    if signal is None:
        return Resolution(
            status=int(HTTPStatus.NOT_FOUND),
            message=f"Cannot {method} {original_url or url}",
        )

    status = signal.preferred_status or current_status

    if not status or status < 400:
        status = HTTPStatus.INTERNAL_SERVER_ERROR

    message = signal.describe() if stacktrace else reason_phrase(status)

    return Resolution(status=int(status), message=message)


def select_renderer(accept: Optional[str]) -> Callable[[int, str], RenderedBody]:
    """Map the Accept header to a body renderer, plain text by default."""
    kind = preferred_type(accept, NEGOTIABLE_TYPES)
    return _RENDERERS.get(kind, render_text_body)


def send(request: Any, response: Any, status: int, body: RenderedBody) -> None:
    """
    Write the error response once the request body is out of the way.

    The response is never ended while the request body is still being
    read: on a pipelined or proxied connection the unread bytes would be
    taken for the next message. So when the request is not finished yet,
    every reader is detached, the write is registered for the finished
    state, and the body is drained to get there.

    `write` runs exactly once, on whichever path reaches it. With
    IncomingRequest, resume() drains on the calling thread, so the write
    has usually happened by the time send() returns; handles that finish
    asynchronously write later.
    """

    def write():
        response.status_code = status

        # security header for content sniffing
        response.set_header("X-Content-Type-Options", "nosniff")

        response.set_header("Content-Type", body.media_type)
        response.set_header("Content-Length", str(len(body)))

        if request.method == "HEAD":
            response.end()
            return

        response.end(body.content)

    if request.finished:
        write()
        return

    request.unpipe()
    request.on_finished(write)
    request.resume()


class FinalHandler:
    """
    Callable that produces the terminal response for one request.

    Built once per request with its options; the options apply to every
    call. Typically called exactly once, as done() / next(err).

    Args:
        request: Request handle (method, url, original_url, headers,
                 socket, finished, on_finished, unpipe, resume).
        response: Response handle (status_code, headers_sent, set_header,
                  end).
        options: HandlerConfig, or a dict with "onerror" / "stacktrace".
        scheduler: Where onerror callbacks are deferred to. Defaults to
                   the process-wide scheduler.
    """

    def __init__(
        self,
        request: Any,
        response: Any,
        options: Union[HandlerConfig, Mapping[str, Any], None] = None,
        scheduler: Optional[CallbackScheduler] = None,
    ):
        self.request = request
        self.response = response
        self.config = HandlerConfig.from_options(options)
        self.scheduler = scheduler or default_scheduler()

    def __call__(self, err: Any = None) -> None:
        request = self.request
        response = self.response

        signal = None if err is None else ErrorSignal.coerce(err)

        resolution = resolve(
            signal,
            current_status=response.status_code,
            method=request.method,
            url=request.url,
            original_url=getattr(request, "original_url", None),
            headers_sent=response.headers_sent,
            stacktrace=self.config.stacktrace,
        )

        if resolution.skip:
            logger.debug("cannot 404 after headers sent")
            return

        logger.debug(f"default {resolution.status}")

        try:
            self._respond(resolution)
        finally:
            # onerror is only submitted once the response work above returned
            if signal is not None and self.config.onerror is not None:
                self.scheduler.defer(self.config.onerror, err, request, response)

    def _respond(self, resolution: Resolution) -> None:
        request = self.request
        response = self.response

        # cannot actually respond
        if response.headers_sent:
            logger.debug(f"headers already sent, destroying socket for {request.method} {request.url}")
            transport = getattr(request, "socket", None)
            if transport is not None:
                transport.destroy()
            return

        headers = getattr(request, "headers", None) or {}
        render = select_renderer(headers.get("accept"))
        body = render(resolution.status, resolution.message)

        send(request, response, resolution.status, body)


def finalhandler(
    request: Any,
    response: Any,
    options: Union[HandlerConfig, Mapping[str, Any], None] = None,
    scheduler: Optional[CallbackScheduler] = None,
) -> FinalHandler:
    """
    Create the function that handles the final response.

    Args:
        request: Request handle.
        response: Response handle.
        options: {"onerror": callable, "stacktrace": bool} or HandlerConfig.
        scheduler: Optional scheduler for deferred onerror calls.

    Returns:
        A FinalHandler; call it with an error or with nothing.
    """
    return FinalHandler(request, response, options, scheduler)
