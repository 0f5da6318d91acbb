"""
TagCache — Transport Factory Integration Tests

Tests mode selection and the one-time TCP-then-HTTP fallback of auto mode.
"""

from collections.abc import Callable

import pytest

from tagcache import TagCacheClient
from tagcache.config import TagCacheConfig
from tagcache.errors import ConfigurationError
from tagcache.transport import HttpTransport, TcpTransport, attempt_then_fallback, create_transport

from tests.fakes import FakeTagCacheServer, find_free_port


class TestAttemptThenFallback:
    def test_attempt_wins(self) -> None:
        fallback_calls: list[int] = []

        result = attempt_then_fallback(lambda: "primary", lambda: fallback_calls.append(1) or "fallback")

        assert result == "primary"
        assert fallback_calls == []

    def test_fallback_on_any_error(self) -> None:
        def attempt() -> str:
            raise RuntimeError("no route to host")

        assert attempt_then_fallback(attempt, lambda: "fallback") == "fallback"

    def test_fallback_errors_propagate(self) -> None:
        def attempt() -> str:
            raise RuntimeError("primary down")

        def fallback() -> str:
            raise ValueError("fallback down")

        with pytest.raises(ValueError):
            attempt_then_fallback(attempt, fallback)


class TestCreateTransport:
    def test_http_mode(self, make_config: Callable[..., TagCacheConfig]) -> None:
        with create_transport(make_config({"mode": "http"})) as transport:
            assert isinstance(transport, HttpTransport)

    def test_tcp_mode_is_lazy(self, make_config: Callable[..., TagCacheConfig]) -> None:
        config = make_config({"mode": "tcp", "tcp": {"port": find_free_port()}})

        with create_transport(config) as transport:
            assert isinstance(transport, TcpTransport)
            assert len(transport.pool) == 0

    def test_auto_prefers_tcp(self, make_config: Callable[..., TagCacheConfig], tcp_server: FakeTagCacheServer) -> None:
        config = make_config({"mode": "auto", "tcp": {"port": tcp_server.port}})

        with create_transport(config) as transport:
            assert isinstance(transport, TcpTransport)
            assert len(transport.pool) == 1
            assert tcp_server.connections <= 1

    def test_auto_falls_back_to_http(self, make_config: Callable[..., TagCacheConfig]) -> None:
        config = make_config({"mode": "auto", "tcp": {"port": find_free_port(), "connect_timeout_ms": 500}})

        with create_transport(config) as transport:
            assert isinstance(transport, HttpTransport)

    def test_auto_fallback_through_client(self, make_config: Callable[..., TagCacheConfig]) -> None:
        config = make_config({"mode": "auto", "tcp": {"port": find_free_port(), "connect_timeout_ms": 500}})

        with TagCacheClient(config) as client:
            assert client.transport_name == "http"

    def test_construction_failure_wrapped(
        self, make_config: Callable[..., TagCacheConfig], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def broken(*args: object, **kwargs: object) -> None:
            raise RuntimeError("cannot build client")

        monkeypatch.setattr("tagcache.transport.factory.HttpTransport", broken)

        with pytest.raises(ConfigurationError) as exc_info:
            create_transport(make_config({"mode": "http"}))
        assert exc_info.value.details["mode"] == "http"
