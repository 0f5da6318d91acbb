"""
TagCache - Configuration Module

Provides typed configuration loading and validation.
"""

from .credentials import Credentials, default_search_paths, load_credentials
from .loader import load_config
from .schemas import (
    AuthSettings,
    HttpSettings,
    TagCacheConfig,
    TcpSettings,
    TransportMode,
)

__all__ = [
    # Loader functions
    "load_config",
    "load_credentials",
    "default_search_paths",
    "Credentials",
    # Main config
    "TagCacheConfig",
    # Enums
    "TransportMode",
    # Config sections
    "HttpSettings",
    "TcpSettings",
    "AuthSettings",
]
