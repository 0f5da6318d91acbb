"""
TagCache — Test Configuration and Shared Fixtures

Provides running fake servers, configuration builders that never read the
real environment, and HttpTransport instances wired to the fake REST API.
"""

import os
import socket
import threading
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import httpx
import pytest

from tagcache.config import Credentials, TagCacheConfig, load_config
from tagcache.transport import HttpTransport

from .fakes import FakeRestApi, FakeTagCacheServer

os.environ.setdefault("LOG_LEVEL", "DEBUG")


@pytest.fixture
def tcp_server() -> Generator[FakeTagCacheServer, None, None]:
    """Running fake TCP server, shut down after the test."""
    server = FakeTagCacheServer()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def silent_server() -> Generator[int, None, None]:
    """A port that accepts connections but never answers. Yields the port."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(8)
    yield sock.getsockname()[1]
    sock.close()


@pytest.fixture
def make_config() -> Callable[..., TagCacheConfig]:
    """Build a config from explicit options only (no env, no credential file)."""

    def _make(options: dict[str, Any] | None = None, **credentials: Any) -> TagCacheConfig:
        return load_config(options or {}, environ={}, credentials=Credentials(**credentials))

    return _make


@pytest.fixture
def tcp_config(tcp_server: FakeTagCacheServer, make_config: Callable[..., TagCacheConfig]) -> TagCacheConfig:
    """TCP-mode config pointing at the fake server."""
    return make_config(
        {
            "mode": "tcp",
            "tcp": {"host": "127.0.0.1", "port": tcp_server.port, "pool_size": 2, "timeout_ms": 1000},
        }
    )


@pytest.fixture
def credential_file(tmp_path: Path) -> Path:
    """A credential.txt with username/password lines."""
    path = tmp_path / "credential.txt"
    path.write_text("username=admin\npassword=s3cret\n", encoding="utf-8")
    return path


@pytest.fixture
def rest_api() -> FakeRestApi:
    return FakeRestApi()


@pytest.fixture
def http_config(make_config: Callable[..., TagCacheConfig]) -> TagCacheConfig:
    """HTTP-mode config with fast retries and credentials for implicit login."""
    return make_config(
        {
            "mode": "http",
            "http": {"base_url": "http://tagcache.test", "max_retries": 2, "retry_delay_ms": 10},
            "auth": {"username": "admin", "password": "s3cret"},
        }
    )


@pytest.fixture
def make_http_transport(
    rest_api: FakeRestApi, http_config: TagCacheConfig
) -> Generator[Callable[..., HttpTransport], None, None]:
    """Build HttpTransports wired to the fake API; sleeps are recorded, not slept."""
    transports: list[HttpTransport] = []

    def _make(config: TagCacheConfig | None = None, sleeps: list[float] | None = None) -> HttpTransport:
        client = httpx.Client(transport=httpx.MockTransport(rest_api))
        sleep = sleeps.append if sleeps is not None else (lambda _seconds: None)
        transport = HttpTransport(config or http_config, client=client, sleep=sleep)
        transports.append(transport)
        return transport

    yield _make
    for transport in transports:
        transport.close()
