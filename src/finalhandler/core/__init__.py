"""
Low-level building blocks: the socket wrapper and the deferred callback
queue.
"""

from .connection import Connection, ConnectionState
from .scheduler import CallbackScheduler, default_scheduler

__all__ = [
    "Connection",
    "ConnectionState",
    "CallbackScheduler",
    "default_scheduler",
]
