"""
=============================================================================
ERROR SIGNALS
=============================================================================

Upstream handlers pass "something went wrong" to the final handler in
many shapes: a raised exception, an exception class with a status code,
a dict, or just a string. The final handler only needs three facts:

    ┌──────────────────┬─────────────────────────────────────────────────┐
    │ preferred status │ status_code first, then status                   │
    │ detail           │ traceback / stack text for stacktrace mode       │
    │ string form      │ fallback when there is no detail                 │
    └──────────────────┴─────────────────────────────────────────────────┘

ErrorSignal.coerce() reads those facts once, by plain attribute or key
access, and the rest of the package works with the structured value.

The two status fields are checked in a fixed order (status_code, then
status). That order is what existing error classes expect; it carries no
meaning beyond that.

=============================================================================
"""

import traceback
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .http.status_codes import HTTPStatus, reason_phrase


class HTTPError(Exception):
    """
    Exception carrying the HTTP status an application wants to respond with.

        raise HTTPError(403)
        raise HTTPError(HTTPStatus.CONFLICT, "Version mismatch")

    The message defaults to the reason phrase for the status.
    """

    def __init__(self, status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR, message: Optional[str] = None):
        super().__init__(message or reason_phrase(status_code))
        self.status_code = int(status_code)


class HTTPParseError(HTTPError):
    """Raised when a request head cannot be parsed."""

    def __init__(self, message: str, status_code: int = HTTPStatus.BAD_REQUEST):
        super().__init__(status_code, message)


def _as_status(value: Any) -> Optional[int]:
    # bool is an int subclass; True must not read as status 1
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return int(value)


@dataclass(frozen=True)
class ErrorSignal:
    """
    Structured view of an error passed to the final handler.

    Attributes:
        status_code: First-choice status override.
        status: Second-choice status override.
        detail: Long diagnostic text (formatted traceback or stack).
        message: Short string form of the error.
        original: The value the caller actually passed, handed unchanged
                  to the onerror callback.
    """

    status_code: Optional[int] = None
    status: Optional[int] = None
    detail: Optional[str] = None
    message: Optional[str] = None
    original: Any = None

    @property
    def preferred_status(self) -> Optional[int]:
        """status_code if set and non-zero, else status if set and non-zero."""
        return self.status_code or self.status or None

    def __str__(self) -> str:
        if self.message is not None:
            return self.message
        if self.original is not None and self.original is not self:
            return str(self.original)
        return "Error"

    @classmethod
    def coerce(cls, err: Any) -> "ErrorSignal":
        """
        Build an ErrorSignal from whatever an upstream handler passed.

        Args:
            err: ErrorSignal, exception, mapping, or any other value.

        Returns:
            The structured signal. `original` always refers to `err`.
        """
        if isinstance(err, ErrorSignal):
            return err

        if isinstance(err, BaseException):
            return cls.from_exception(err)

        if isinstance(err, Mapping):
            return cls.from_mapping(err)

        return cls(message=str(err), original=err)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorSignal":
        """
        Read status attributes and the formatted traceback of an exception.

        Both `status_code` and the camel-case `statusCode` are honored for
        the first-choice field.
        """
        status_code = _as_status(getattr(exc, "status_code", None))
        if status_code is None:
            status_code = _as_status(getattr(exc, "statusCode", None))

        detail = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        ).rstrip("\n")

        return cls(
            status_code=status_code,
            status=_as_status(getattr(exc, "status", None)),
            detail=detail,
            message=f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__,
            original=exc,
        )

    @classmethod
    def from_mapping(cls, data: Mapping) -> "ErrorSignal":
        """Read a plain dict such as {"status": 403} or {"statusCode": 502}."""
        status_code = _as_status(data.get("statusCode"))
        if status_code is None:
            status_code = _as_status(data.get("status_code"))

        detail = data.get("stack", data.get("detail"))
        message = data.get("message")

        return cls(
            status_code=status_code,
            status=_as_status(data.get("status")),
            detail=str(detail) if detail else None,
            message=str(message) if message is not None else None,
            original=data,
        )

    def describe(self) -> str:
        """Diagnostic text for stacktrace mode: detail, else string form."""
        return self.detail or str(self)
