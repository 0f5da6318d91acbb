"""
TagCache - Configuration Schemas

Typed, frozen configuration models built with Pydantic.
A TagCacheConfig is resolved once by the loader and never mutated afterwards.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TransportMode(str, Enum):
    """Transport selection mode."""

    HTTP = "http"
    TCP = "tcp"
    AUTO = "auto"  # Try TCP first, fall back to HTTP once at construction


class HttpSettings(BaseModel):
    """HTTP/JSON transport settings."""

    base_url: str = Field(default="http://127.0.0.1:8080", description="Base URL of the REST API")
    timeout_ms: int = Field(default=5000, ge=1, description="Request timeout in milliseconds")
    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt on connection/timeout errors")
    retry_delay_ms: int = Field(default=100, ge=0, description="Base delay for exponential backoff in milliseconds")

    model_config = ConfigDict(frozen=True)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an http(s) URL and drop the trailing slash."""
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")


class TcpSettings(BaseModel):
    """Line-protocol TCP transport settings."""

    host: str = Field(default="127.0.0.1", min_length=1, description="Server host")
    port: int = Field(default=1984, ge=1, le=65535, description="Server TCP port")
    timeout_ms: int = Field(default=2000, ge=1, description="Per-operation read timeout in milliseconds")
    connect_timeout_ms: int = Field(default=2000, ge=1, description="Dial timeout in milliseconds")
    pool_size: int = Field(default=4, ge=1, description="Maximum number of pooled sockets")

    model_config = ConfigDict(frozen=True)


class AuthSettings(BaseModel):
    """Authentication settings (bearer token or username/password)."""

    token: str | None = Field(default=None, description="Bearer token")
    username: str | None = Field(default=None, description="Username for Basic auth and implicit login")
    password: str | None = Field(default=None, repr=False, description="Password for Basic auth and implicit login")

    model_config = ConfigDict(frozen=True)

    @field_validator("token", "username", "password")
    @classmethod
    def empty_to_none(cls, v: str | None) -> str | None:
        """Treat empty strings from env/credential files as unset."""
        if v is not None and not v.strip():
            return None
        return v

    @property
    def has_credentials(self) -> bool:
        """True when both username and password are configured."""
        return bool(self.username and self.password)


class TagCacheConfig(BaseModel):
    """Root configuration for a TagCache client."""

    mode: TransportMode = Field(default=TransportMode.HTTP, description="Transport selection mode")
    http: HttpSettings = Field(default_factory=HttpSettings)
    tcp: TcpSettings = Field(default_factory=TcpSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)

    model_config = ConfigDict(frozen=True)

    @field_validator("mode", mode="before")
    @classmethod
    def normalize_mode(cls, v: Any) -> Any:
        """Accept mode names case-insensitively."""
        if isinstance(v, str):
            return v.strip().lower()
        return v
