"""
TagCache - Transport Factory

Creates the transport for a configuration. This is the only place the
transport mode is interpreted.

Key points:
- ``http``: HttpTransport
- ``tcp``: TcpTransport, dialed lazily on first use
- ``auto``: dial TCP now; on any failure build HttpTransport instead.
  The fallback is decided once, at construction, never per call.

Examples:
    from tagcache.config import load_config
    from tagcache.transport import create_transport

    transport = create_transport(load_config({"mode": "auto"}))
    print(transport.name)  # "tcp" when the TCP port answered, else "http"
"""

import logging
from collections.abc import Callable
from typing import TypeVar

from ..config import TagCacheConfig, TransportMode
from ..errors import ConfigurationError
from .http import HttpTransport
from .interface import Transport
from .tcp import TcpTransport

logger = logging.getLogger(__name__)

T = TypeVar("T")


def attempt_then_fallback(attempt: Callable[[], T], fallback: Callable[[], T]) -> T:
    """
    Run ``attempt``; if it raises, log the failure and return ``fallback()``.

    Errors raised by ``fallback`` propagate unchanged.
    """
    try:
        return attempt()
    except Exception as e:
        logger.info(
            f"Primary attempt failed, using fallback: {e}",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
    return fallback()


def _dial_tcp(config: TagCacheConfig) -> Transport:
    return TcpTransport(config).connect()


def create_transport(config: TagCacheConfig) -> Transport:
    """
    Create a transport instance based on configuration.

    Args:
        config: Resolved client configuration

    Returns:
        Configured transport instance

    Raises:
        ConfigurationError: If the mode is unknown or the transport cannot be built
    """
    mode = config.mode
    logger.info(
        "Creating transport for mode: %s",
        mode.value,
        extra={"mode": mode.value},
    )

    try:
        if mode is TransportMode.HTTP:
            transport: Transport = HttpTransport(config)
        elif mode is TransportMode.TCP:
            transport = TcpTransport(config)
        elif mode is TransportMode.AUTO:
            transport = attempt_then_fallback(
                lambda: _dial_tcp(config),
                lambda: HttpTransport(config),
            )
        else:
            raise ConfigurationError(
                f"Unknown transport mode: {mode}",
                details={"mode": str(mode), "supported": [m.value for m in TransportMode]},
            )

        logger.info(
            "Transport '%s' created successfully",
            transport.name,
            extra={"mode": mode.value, "transport": transport.name},
        )
        return transport

    except ConfigurationError:
        raise
    except Exception as e:
        logger.error(
            "Unexpected error creating transport for mode '%s': %s",
            mode.value,
            e,
            extra={"mode": mode.value, "error": str(e)},
            exc_info=True,
        )
        raise ConfigurationError(
            f"Failed to create transport for mode '{mode.value}': {e}",
            details={"mode": mode.value, "error": str(e)},
        ) from e
