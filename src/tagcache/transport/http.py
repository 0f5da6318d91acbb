"""
TagCache - HTTP Transport

Synchronous REST/JSON transport built on httpx with:
- Retry with exponential backoff on connection failures and timeouts
- Basic auth while no token is held, Bearer auth afterwards
- One implicit POST /auth/login per request when the server answers 401

Example:
    transport = HttpTransport(load_config({"http": {"base_url": "http://127.0.0.1:8080"}}))
    transport.put("user:42", "hello world", ttl_ms=60000, tags=["users"])
    record = transport.get("user:42")
"""

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from datetime import timedelta
from enum import Enum
from typing import Any
from urllib.parse import quote

import httpx

from ..config import TagCacheConfig
from ..errors import (
    ApiError,
    CacheConnectionError,
    CacheTimeoutError,
    NotFoundError,
    ServerError,
    TagCacheError,
    UnauthorizedError,
)
from ..models import InvalidationMode, SearchParams
from ..resilience import RetryConfig, with_retry_sync
from ..serialization import from_wire, to_wire
from .interface import Transport

logger = logging.getLogger(__name__)

MAX_RETRY_DELAY_MS = 1000


class AuthState(str, Enum):
    """Credential state of an HttpTransport."""

    NO_TOKEN = "no_token"
    TOKEN = "token"


class HttpTransport(Transport):
    """
    REST transport.

    Notes:
    - Only connection errors and timeouts are retried; 4xx/5xx responses and
      malformed bodies are raised immediately.
    - The bearer token is the only mutable state; it is written under a lock
      and never cleared by this class.
    """

    name = "http"

    def __init__(
        self,
        config: TagCacheConfig,
        *,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize the HTTP transport.

        Args:
            config: Resolved client configuration
            client: Pre-built httpx client (tests inject one with a MockTransport)
            sleep: Sleep function used between retries
        """
        settings = config.http
        self.base_url = settings.base_url
        self.timeout_ms = settings.timeout_ms
        self.retry_config = RetryConfig(
            max_retries=settings.max_retries,
            base_delay_ms=settings.retry_delay_ms,
            max_delay_ms=MAX_RETRY_DELAY_MS,
        )

        self._username = config.auth.username
        self._password = config.auth.password
        self._token: str | None = config.auth.token
        self._token_lock = threading.Lock()
        self._sleep = sleep

        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(self.timeout_ms / 1000.0),
            headers={"Accept": "application/json"},
        )
        self._closed = False

    # ------------ Auth state ------------

    @property
    def auth_state(self) -> AuthState:
        return AuthState.TOKEN if self._token else AuthState.NO_TOKEN

    @property
    def token(self) -> str | None:
        return self._token

    def _can_login_implicitly(self) -> bool:
        return self.auth_state is AuthState.NO_TOKEN and bool(self._username and self._password)

    def _auth_kwargs(self) -> dict[str, Any]:
        if self._token:
            return {"headers": {"Authorization": f"Bearer {self._token}"}}
        if self._username and self._password:
            return {"auth": httpx.BasicAuth(self._username, self._password)}
        return {}

    def _store_token(self, token: str) -> None:
        with self._token_lock:
            self._token = token
        logger.info("Obtained bearer token", extra={"base_url": self.base_url})

    def _implicit_login(self) -> None:
        """Log in once with the configured credentials after a 401."""
        with self._token_lock:
            already_logged_in = self._token is not None
        if already_logged_in:
            # Another caller logged in while this request was in flight
            return

        logger.info("Server answered 401, attempting implicit login", extra={"username": self._username})
        try:
            self._perform_login(self._username or "", self._password or "")
        except UnauthorizedError:
            raise
        except TagCacheError as e:
            raise UnauthorizedError(f"Implicit login failed: {e}", details={"cause": type(e).__name__}) from e

    def _perform_login(self, username: str, password: str) -> str:
        data = self._expect_dict(
            self._request("POST", "/auth/login", {"username": username, "password": password}, implicit_login=False),
            "/auth/login",
        )
        token = data.get("token")
        if not token or not isinstance(token, str):
            raise UnauthorizedError("Login response did not include a token")
        self._store_token(token)
        return token

    # ------------ Request pipeline ------------

    def _send_once(self, method: str, path: str, payload: Any | None) -> httpx.Response:
        url = f"{self.base_url}{path}"
        kwargs = self._auth_kwargs()
        if payload is not None:
            kwargs["json"] = payload

        logger.debug("%s %s", method, url, extra={"method": method, "url": url})
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise CacheTimeoutError(
                f"HTTP {method} {path} timed out: {e}",
                timeout_ms=self.timeout_ms,
                details={"method": method, "path": path},
            ) from e
        except httpx.TransportError as e:
            raise CacheConnectionError(
                f"HTTP {method} {path} failed: {e}",
                details={"method": method, "path": path, "base_url": self.base_url},
            ) from e
        except httpx.HTTPError as e:
            # Decoding and other non-transport failures are not retried
            raise ServerError(
                f"HTTP {method} {path} returned an unreadable response: {e}",
                details={"method": method, "path": path, "error": type(e).__name__},
            ) from e

    def _send(self, method: str, path: str, payload: Any | None) -> httpx.Response:
        """Send one logical request, retrying connection failures and timeouts."""

        def send() -> httpx.Response:
            return self._send_once(method, path, payload)

        return with_retry_sync(send, self.retry_config, sleep=self._sleep).unwrap()

    def _request(
        self,
        method: str,
        path: str,
        payload: Any | None = None,
        *,
        key: str | None = None,
        implicit_login: bool = True,
    ) -> Any:
        """
        Perform a request and return the decoded JSON body.

        A 401 triggers at most one implicit login for this call, tracked by
        ``login_attempted``; a second 401 is raised as UnauthorizedError.
        """
        if self._closed:
            raise CacheConnectionError("Transport is closed", details={"transport": self.name})

        login_attempted = False
        while True:
            response = self._send(method, path, payload)
            if (
                response.status_code == 401
                and implicit_login
                and not login_attempted
                and self._can_login_implicitly()
            ):
                login_attempted = True
                self._implicit_login()
                continue
            return self._parse_response(response, method, path, key)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text
        if isinstance(data, dict):
            for field in ("error", "message"):
                if data.get(field):
                    return str(data[field])
        return response.text

    def _parse_response(self, response: httpx.Response, method: str, path: str, key: str | None) -> Any:
        status = response.status_code
        details = {"method": method, "path": path, "status_code": status}

        if status >= 500:
            raise ServerError(f"HTTP {status}: {self._error_message(response)}", details=details, status_code=status)
        if status == 404:
            raise NotFoundError(key, message=f"Not found: {key if key is not None else path}")
        if status == 401:
            raise UnauthorizedError(f"HTTP 401: {self._error_message(response)}", details=details)
        if status >= 400:
            raise ApiError(f"HTTP {status}: {self._error_message(response)}", details=details, status_code=status)

        try:
            return response.json()
        except ValueError as e:
            preview = response.text[:100]
            logger.error(
                f"Malformed JSON from {method} {path}",
                extra={"status_code": status, "body_preview": preview},
            )
            raise ServerError(f"Malformed JSON response from {method} {path}", details={**details, "body": preview}) from e

    @staticmethod
    def _expect_dict(data: Any, path: str) -> dict[str, Any]:
        if not isinstance(data, dict):
            raise ServerError(f"Unexpected response shape from {path}", details={"type": type(data).__name__})
        return data

    @staticmethod
    def _key_path(key: str) -> str:
        return "/keys/" + quote(key, safe="")

    @staticmethod
    def _decode_record(record: Mapping[str, Any]) -> dict[str, Any]:
        decoded = dict(record)
        if "value" in decoded:
            decoded["value"] = from_wire(decoded["value"])
        return decoded

    # ------------ Core Interface ------------

    def put(
        self,
        key: str,
        value: Any,
        ttl_ms: int | timedelta | None = None,
        tags: Iterable[str] = (),
    ) -> bool:
        self._check_key(key)
        ttl, tag_list = self._prepare_put(ttl_ms, tags)
        body = {"value": to_wire(value), "ttl_ms": ttl, "tags": tag_list}
        data = self._expect_dict(self._request("PUT", self._key_path(key), body, key=key), "/keys")
        if data.get("ok") is False:
            raise ApiError(f"PUT {key} rejected: {data.get('error', data)}", details={"key": key})
        return True

    def get(self, key: str) -> dict[str, Any]:
        self._check_key(key)
        data = self._expect_dict(self._request("GET", self._key_path(key), key=key), "/keys")
        if data.get("error") == "not_found":
            raise NotFoundError(key)
        return self._decode_record(data)

    def delete(self, key: str) -> bool:
        self._check_key(key)
        data = self._expect_dict(self._request("DELETE", self._key_path(key), key=key), "/keys")
        return bool(data.get("ok", data.get("deleted", False)))

    def invalidate_keys(self, keys: Iterable[str]) -> int:
        key_list = list(keys)
        if not key_list:
            return 0
        data = self._expect_dict(self._request("POST", "/invalidate/keys", {"keys": key_list}), "/invalidate/keys")
        return int(data.get("count", 0))

    def invalidate_tags(self, tags: Iterable[str], mode: InvalidationMode | str = InvalidationMode.ANY) -> int:
        tag_list = list(tags)
        if not tag_list:
            return 0
        body = {"tags": tag_list, "mode": self._coerce_mode(mode).value}
        data = self._expect_dict(self._request("POST", "/invalidate/tags", body), "/invalidate/tags")
        return int(data.get("count", 0))

    def bulk_get(self, keys: Iterable[str]) -> dict[str, dict[str, Any] | None]:
        key_list = list(keys)
        if not key_list:
            return {}
        data = self._expect_dict(self._request("POST", "/keys/bulk/get", {"keys": key_list}), "/keys/bulk/get")

        found: dict[str, dict[str, Any]] = {}
        for item in data.get("items") or []:
            if isinstance(item, dict) and "key" in item:
                found[item["key"]] = self._decode_record(item)

        # Preserve requested order, None for missing
        return {k: found.get(k) for k in key_list}

    def bulk_delete(self, keys: Iterable[str]) -> int:
        key_list = list(keys)
        if not key_list:
            return 0
        data = self._expect_dict(self._request("POST", "/keys/bulk/delete", {"keys": key_list}), "/keys/bulk/delete")
        return int(data.get("count", 0))

    def search(self, params: SearchParams | Mapping[str, Any] | str) -> list[dict[str, Any]]:
        body = self._coerce_search(params).to_body()
        data = self._expect_dict(self._request("POST", "/search", body), "/search")
        results = data.get("keys") or []
        if not isinstance(results, list):
            raise ServerError("Unexpected search result shape", details={"type": type(results).__name__})
        return [self._decode_record(r) for r in results if isinstance(r, dict)]

    def stats(self) -> dict[str, Any]:
        return self._normalize_stats(self._expect_dict(self._request("GET", "/stats"), "/stats"))

    def list_keys(self, limit: int = 100) -> list[dict[str, Any]]:
        data = self._expect_dict(self._request("GET", "/keys"), "/keys")
        keys = [k for k in (data.get("keys") or []) if isinstance(k, dict)]
        if limit > 0 and len(keys) > limit:
            keys = keys[:limit]
        return keys

    def flush(self) -> int:
        data = self._expect_dict(self._request("POST", "/flush"), "/flush")
        return int(data.get("count", 0))

    def health(self) -> dict[str, Any]:
        return self._expect_dict(self._request("GET", "/health"), "/health")

    def login(self, username: str, password: str) -> str:
        return self._perform_login(username, password)

    def rotate_credentials(self) -> dict[str, Any]:
        return self._expect_dict(self._request("POST", "/auth/rotate"), "/auth/rotate")

    def setup_required(self) -> bool:
        data = self._expect_dict(self._request("GET", "/auth/setup_required"), "/auth/setup_required")
        return bool(data.get("setup_required", data.get("required", False)))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._owns_client:
            self._client.close()
        logger.debug("Closed HTTP transport", extra={"base_url": self.base_url})
