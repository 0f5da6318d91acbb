"""
TagCache - Transport Module

Wire transports implementing the shared Transport interface.
"""

from .factory import attempt_then_fallback, create_transport
from .http import AuthState, HttpTransport
from .interface import STATS_FIELDS, Transport
from .tcp import ConnectionPool, TcpTransport

__all__ = [
    # Interface
    "Transport",
    "STATS_FIELDS",
    # Implementations
    "HttpTransport",
    "TcpTransport",
    "AuthState",
    "ConnectionPool",
    # Factory
    "create_transport",
    "attempt_then_fallback",
]
