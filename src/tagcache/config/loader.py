"""
TagCache - Configuration Loader

Resolves a frozen TagCacheConfig from, in order of precedence:

1. explicit options passed by the caller
2. environment variables (optionally seeded from a .env file)
3. the credential file (username/password only)
4. hard defaults declared on the schema models
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import ValidationError

from ..errors import ConfigurationError
from .credentials import Credentials, load_credentials
from .schemas import TagCacheConfig

logger = logging.getLogger(__name__)

# (section, field) -> (environment variable, is_integer)
ENV_VARIABLES: dict[tuple[str | None, str], tuple[str, bool]] = {
    (None, "mode"): ("TAGCACHE_MODE", False),
    ("http", "base_url"): ("TAGCACHE_HTTP_URL", False),
    ("http", "timeout_ms"): ("TAGCACHE_HTTP_TIMEOUT_MS", True),
    ("http", "max_retries"): ("TAGCACHE_HTTP_MAX_RETRIES", True),
    ("http", "retry_delay_ms"): ("TAGCACHE_HTTP_RETRY_DELAY_MS", True),
    ("tcp", "host"): ("TAGCACHE_TCP_HOST", False),
    ("tcp", "port"): ("TAGCACHE_TCP_PORT", True),
    ("tcp", "timeout_ms"): ("TAGCACHE_TCP_TIMEOUT_MS", True),
    ("tcp", "pool_size"): ("TAGCACHE_TCP_POOL", True),
    ("auth", "token"): ("TAGCACHE_TOKEN", False),
    ("auth", "username"): ("TAGCACHE_USERNAME", False),
    ("auth", "password"): ("TAGCACHE_PASSWORD", False),
}


def _merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge override into a copy of base. None values never override."""
    merged = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        elif isinstance(value, Mapping):
            merged[key] = _merge({}, value)
        else:
            merged[key] = value
    return merged


def _environment_layer(environ: Mapping[str, str | None]) -> dict[str, Any]:
    """Translate TAGCACHE_* variables into a nested options dict."""
    layer: dict[str, Any] = {}
    for (section, field), (name, is_int) in ENV_VARIABLES.items():
        raw = environ.get(name)
        if raw is None or raw == "":
            continue

        value: Any = raw
        if is_int:
            try:
                value = int(raw.strip())
            except ValueError as e:
                raise ConfigurationError(
                    f"Environment variable {name} must be an integer, got {raw!r}",
                    details={"env": name, "value": raw},
                ) from e

        if section is None:
            layer[field] = value
        else:
            layer.setdefault(section, {})[field] = value
    return layer


def _credentials_layer(credentials: Credentials) -> dict[str, Any]:
    if not credentials.found:
        return {}
    return {"auth": {"username": credentials.username, "password": credentials.password}}


def load_config(
    options: Mapping[str, Any] | None = None,
    *,
    environ: Mapping[str, str | None] | None = None,
    env_file: str | Path | None = None,
    credentials: Credentials | None = None,
) -> TagCacheConfig:
    """
    Build a validated, frozen configuration.

    Args:
        options: Explicit options, e.g. ``{"mode": "tcp", "tcp": {"port": 1984}}``
        environ: Environment mapping (default: os.environ)
        env_file: Optional .env file whose values sit below real environment
            variables. The process environment is never modified.
        credentials: Pre-loaded credential file result (default: looked up
            with load_credentials())

    Returns:
        Validated TagCacheConfig instance

    Raises:
        ConfigurationError: If any source supplies an invalid value
    """
    environment: dict[str, str | None] = {}
    if env_file is not None:
        env_path = Path(env_file)
        if not env_path.is_file():
            raise ConfigurationError(
                f"Environment file not found: {env_path}",
                details={"path": str(env_path)},
            )
        logger.info(f"Loading environment from {env_path}")
        environment.update(dotenv_values(env_path))
    environment.update(os.environ if environ is None else environ)

    if credentials is None:
        credentials = load_credentials()

    config_dict: dict[str, Any] = {}
    config_dict = _merge(config_dict, _credentials_layer(credentials))
    config_dict = _merge(config_dict, _environment_layer(environment))
    config_dict = _merge(config_dict, options or {})

    try:
        config = TagCacheConfig(**config_dict)
    except ValidationError as e:
        logger.error(
            f"Configuration validation failed: {e}",
            extra={"validation_errors": e.errors(), "config_dict_keys": list(config_dict.keys())},
        )
        raise ConfigurationError(
            "Configuration validation failed. Check your options and TAGCACHE_* environment variables.",
            details={"validation_errors": e.errors(include_url=False)},
        ) from e
    except TypeError as e:
        raise ConfigurationError(
            f"Invalid configuration options: {e}",
            details={"error": str(e)},
        ) from e

    logger.debug(
        "Configuration loaded (mode: %s)",
        config.mode.value,
        extra={
            "mode": config.mode.value,
            "base_url": config.http.base_url,
            "tcp_host": config.tcp.host,
            "tcp_port": config.tcp.port,
            "credential_file": str(credentials.source) if credentials.source else None,
        },
    )
    return config
