"""
TagCache — Python Client

Synchronous client for the TagCache tag-aware cache server, over its
REST/JSON API or its line-oriented TCP protocol.
"""

import logging

__version__ = "1.0.0"

from .client import TagCacheClient
from .config import TagCacheConfig, TransportMode, load_config
from .errors import (
    ApiError,
    CacheConnectionError,
    CacheTimeoutError,
    ConfigurationError,
    NotFoundError,
    ServerError,
    TagCacheError,
    UnauthorizedError,
    UnsupportedOperationError,
)
from .models import CacheEntry, CacheStats, InvalidationMode, SearchParams

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "TagCacheClient",
    # Configuration
    "TagCacheConfig",
    "TransportMode",
    "load_config",
    # Models
    "CacheEntry",
    "CacheStats",
    "InvalidationMode",
    "SearchParams",
    # Errors
    "TagCacheError",
    "ConfigurationError",
    "ApiError",
    "UnsupportedOperationError",
    "CacheConnectionError",
    "CacheTimeoutError",
    "UnauthorizedError",
    "NotFoundError",
    "ServerError",
]
