"""
=============================================================================
CONFIGURATION
=============================================================================

Two configuration objects live here:

    HandlerConfig   Options of one final handler (onerror, stacktrace).
                    Frozen: a constructed handler applies the same options
                    to every invocation.

    ServerConfig    Network settings of the bundled demo server.

Both follow the same rules:

1. Typed dataclasses with sensible defaults
2. from_env() for 12-factor style deployment
3. validate() at construction time, failing fast with a clear message

=============================================================================
STACKTRACE IN PRODUCTION
=============================================================================

stacktrace=True puts the raw traceback of every error in the response
body, unsanitized. That is what you want on a laptop and never what you
want on the internet. It defaults to False; turn it on explicitly:

    FINALHANDLER_STACKTRACE=1 python -m finalhandler

=============================================================================
"""

import os
from dataclasses import dataclass, fields
from typing import Any, Callable, Mapping, Optional, Union


ErrorCallback = Callable[[Any, Any, Any], None]

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


@dataclass(frozen=True)
class HandlerConfig:
    """
    Options for a final handler.

    Attributes:
        onerror: Called as onerror(err, request, response) whenever the
                 handler is invoked with an error. Always deferred to a
                 later turn, never run inside the handler call.
        stacktrace: Show the error's traceback in the body instead of the
                    generic reason phrase.
    """

    onerror: Optional[ErrorCallback] = None
    stacktrace: bool = False

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        if self.onerror is not None and not callable(self.onerror):
            raise TypeError(f"onerror must be callable, got {type(self.onerror).__name__}")

    @classmethod
    def from_options(
        cls,
        options: Union["HandlerConfig", Mapping[str, Any], None] = None,
    ) -> "HandlerConfig":
        """
        Normalize the options argument of finalhandler().

        Accepts None, a HandlerConfig, or a dict with the keys
        "onerror" and "stacktrace".

        Raises:
            ValueError: For keys this handler does not understand.
        """
        if options is None:
            return cls()

        if isinstance(options, HandlerConfig):
            return options

        known = {f.name for f in fields(cls)}
        unknown = set(options) - known
        if unknown:
            raise ValueError(f"Unknown finalhandler options: {', '.join(sorted(unknown))}")

        return cls(
            onerror=options.get("onerror"),
            stacktrace=bool(options.get("stacktrace", False)),
        )

    @classmethod
    def from_env(cls, onerror: Optional[ErrorCallback] = None) -> "HandlerConfig":
        """
        Build options from the environment.

        FINALHANDLER_STACKTRACE   "1"/"true"/"yes"/"on" enables stack traces
        """
        return cls(
            onerror=onerror,
            stacktrace=_env_flag("FINALHANDLER_STACKTRACE"),
        )


@dataclass
class ServerConfig:
    """
    Configuration for the demo HTTP server.

    Development:
        ServerConfig(port=8080, log_level="DEBUG")

    Containers:
        ServerConfig(host="0.0.0.0", port=80, log_level="INFO")
    """

    # Network
    host: str = "127.0.0.1"
    port: int = 8080
    backlog: int = 128
    buffer_size: int = 8192
    timeout: Optional[float] = 30.0

    # HTTP
    keep_alive: bool = True
    keep_alive_timeout: float = 5.0
    max_head_size: int = 64 * 1024

    # Logging
    log_level: str = "INFO"

    server_name: str = "finalhandler/1.0"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        HTTP_HOST       Server host (default: 127.0.0.1)
        HTTP_PORT       Server port (default: 8080)
        HTTP_TIMEOUT    Socket timeout in seconds (default: 30)
        HTTP_LOG_LEVEL  Logging level (default: INFO)
        """
        return cls(
            host=os.getenv("HTTP_HOST", "127.0.0.1"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            timeout=float(os.getenv("HTTP_TIMEOUT", "30")),
            log_level=os.getenv("HTTP_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """Validate values at startup rather than at first use."""
        # port 0 lets the OS pick a free port
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.log_level.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log_level: {self.log_level}")
