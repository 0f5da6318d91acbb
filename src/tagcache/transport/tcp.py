"""
TagCache - TCP Transport

Line-oriented transport over a pool of persistent sockets:
- One tab-separated command per line, one response line back
- Up to pool_size sockets, dialed lazily, selected round-robin
- No authentication and no TLS (the protocol has neither)

Protocol:
    PUT\\tkey\\tttl|-\\ttag1,tag2|-\\tvalue   -> OK
    GET\\tkey                              -> VALUE\\t<raw> | NF
    DEL\\tkey                              -> DEL ok | DEL nf
    INV_TAG\\ttag                          -> INV_TAG\\t<count>
    KEYS_BY_TAG\\ttag                      -> KEYS\\tk1,k2
    STATS                                 -> STATS\\thits\\tmisses\\tputs\\tinvalidations\\thit_ratio
    FLUSH                                 -> FLUSH\\t<count>
"""

import logging
import socket
import threading
from collections.abc import Iterable, Mapping
from datetime import timedelta
from typing import Any, Self

from ..config import TagCacheConfig
from ..errors import (
    ApiError,
    CacheConnectionError,
    CacheTimeoutError,
    NotFoundError,
    ServerError,
    UnsupportedOperationError,
)
from ..models import InvalidationMode, SearchParams
from ..serialization import decode_text, encode_text
from .interface import Transport

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096
EMPTY_FIELD = "-"


class PooledConnection:
    """
    One persistent socket with its own read buffer and exchange lock.

    A failed exchange (timeout, socket error or EOF) marks the connection
    broken: a reply may still be owed, so the stream can no longer be
    paired with requests. Broken connections fail fast until the pool is
    closed.
    """

    def __init__(self, sock: socket.socket, index: int) -> None:
        self.sock = sock
        self.index = index
        self.lock = threading.Lock()
        self.broken = False
        self._buffer = bytearray()

    def exchange(self, line: str) -> str:
        """Write one command line and read one response line. Caller holds ``lock``."""
        if self.broken:
            raise CacheConnectionError(
                "Pooled connection is out of sync after an earlier failure",
                details={"connection": self.index},
            )
        try:
            self.sock.sendall(line.encode("utf-8") + b"\n")
            raw = self._read_line()
        except (OSError, CacheConnectionError):
            self._mark_broken()
            raise
        return raw.decode("utf-8", errors="replace").rstrip("\r")

    def _mark_broken(self) -> None:
        self.broken = True
        self._buffer.clear()
        logger.warning(
            f"Pooled connection {self.index} marked broken",
            extra={"connection": self.index},
        )

    def _read_line(self) -> bytes:
        while True:
            idx = self._buffer.find(b"\n")
            if idx >= 0:
                line = bytes(self._buffer[:idx])
                del self._buffer[: idx + 1]
                return line
            chunk = self.sock.recv(READ_CHUNK_SIZE)
            if not chunk:
                raise CacheConnectionError("Connection closed by server", details={"connection": self.index})
            self._buffer.extend(chunk)

    def close(self) -> None:
        try:
            self.sock.close()
        except OSError as e:
            logger.warning(f"Error closing pooled socket {self.index}: {e}", extra={"error": str(e)})


class ConnectionPool:
    """
    Bounded round-robin socket pool.

    The pool grows by one socket per acquire() until it holds ``size``
    sockets, and then only rotates. Sockets are never health-checked or
    replaced; close() is the only teardown.
    """

    def __init__(self, host: str, port: int, size: int, connect_timeout_ms: int, timeout_ms: int) -> None:
        if size < 1:
            raise ValueError("pool size must be >= 1")
        self.host = host
        self.port = port
        self.size = size
        self.connect_timeout_ms = connect_timeout_ms
        self.timeout_ms = timeout_ms
        self._connections: list[PooledConnection] = []
        self._cursor = 0
        self._lock = threading.Lock()
        self._closed = False

    @property
    def cursor(self) -> int:
        return self._cursor

    def __len__(self) -> int:
        return len(self._connections)

    def _dial(self) -> PooledConnection:
        address = (self.host, self.port)
        try:
            sock = socket.create_connection(address, timeout=self.connect_timeout_ms / 1000.0)
        except TimeoutError as e:
            raise CacheTimeoutError(
                f"TCP connect to {self.host}:{self.port} timed out",
                timeout_ms=self.connect_timeout_ms,
                details={"host": self.host, "port": self.port},
            ) from e
        except OSError as e:
            raise CacheConnectionError(
                f"TCP connect error: {e}",
                details={"host": self.host, "port": self.port, "error": str(e)},
            ) from e

        sock.settimeout(self.timeout_ms / 1000.0)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        connection = PooledConnection(sock, index=len(self._connections))
        logger.info(
            "Dialed pooled connection %d/%d to %s:%d",
            connection.index + 1,
            self.size,
            self.host,
            self.port,
            extra={"host": self.host, "port": self.port, "connection": connection.index},
        )
        return connection

    def warm(self) -> None:
        """Dial the first socket now instead of on first use."""
        with self._lock:
            self._ensure_open()
            if not self._connections:
                self._connections.append(self._dial())

    def acquire(self) -> PooledConnection:
        """Select the next connection, dialing a new one while below capacity."""
        with self._lock:
            self._ensure_open()
            if len(self._connections) < self.size:
                self._connections.append(self._dial())
            self._cursor = (self._cursor + 1) % len(self._connections)
            return self._connections[self._cursor]

    def _ensure_open(self) -> None:
        if self._closed:
            raise CacheConnectionError("Connection pool is closed", details={"host": self.host, "port": self.port})

    def close(self) -> None:
        with self._lock:
            connections, self._connections = self._connections, []
            self._cursor = 0
            self._closed = True
        for connection in connections:
            connection.close()
        if connections:
            logger.info(
                "Closed %d pooled connection(s) to %s:%d",
                len(connections),
                self.host,
                self.port,
                extra={"host": self.host, "port": self.port},
            )


class TcpTransport(Transport):
    """
    TCP line-protocol transport.

    Notes:
    - Bulk operations loop over single-key commands (no batching on the wire).
    - search only supports a single tag filter.
    - list_keys, login, rotate_credentials and setup_required need HTTP.
    - Keys and tags cannot contain tabs or newlines; tags cannot contain commas.
    """

    name = "tcp"

    def __init__(self, config: TagCacheConfig) -> None:
        settings = config.tcp
        self.host = settings.host
        self.port = settings.port
        self.timeout_ms = settings.timeout_ms
        self.pool = ConnectionPool(
            host=settings.host,
            port=settings.port,
            size=settings.pool_size,
            connect_timeout_ms=settings.connect_timeout_ms,
            timeout_ms=settings.timeout_ms,
        )

    def connect(self) -> Self:
        """
        Dial the first pooled connection eagerly.

        Raises:
            CacheConnectionError / CacheTimeoutError: If the server is unreachable
        """
        try:
            self.pool.warm()
        except Exception:
            self.close()
            raise
        return self

    # ------------ Wire helpers ------------

    def _command(self, *fields: str) -> str:
        line = "\t".join(fields)
        connection = self.pool.acquire()
        with connection.lock:
            try:
                response = connection.exchange(line)
            except TimeoutError as e:
                raise CacheTimeoutError(
                    f"TCP {fields[0]} timed out",
                    timeout_ms=self.timeout_ms,
                    details={"command": fields[0], "connection": connection.index},
                ) from e
            except OSError as e:
                raise CacheConnectionError(
                    f"TCP {fields[0]} failed: {e}",
                    details={"command": fields[0], "connection": connection.index, "error": str(e)},
                ) from e

        logger.debug(
            "TCP %s -> %s",
            fields[0],
            response[:80],
            extra={"command": fields[0], "connection": connection.index},
        )
        if response.startswith("ERR"):
            raise ApiError(f"{fields[0]} failed: {response}", details={"command": fields[0], "response": response})
        return response

    @staticmethod
    def _split_reply(response: str, expected: str, command: str) -> list[str]:
        parts = response.split("\t")
        if parts[0] != expected:
            raise ServerError(
                f"{command} bad response: {response[:100]}",
                details={"command": command, "response": response[:100]},
            )
        return parts

    @staticmethod
    def _parse_int(raw: str, command: str) -> int:
        try:
            return int(raw)
        except ValueError as e:
            raise ServerError(f"{command} returned a non-integer count: {raw!r}", details={"command": command}) from e

    def _check_field(self, value: str, field: str, forbidden: str = "\t\r\n") -> str:
        if field == "key":
            self._check_key(value)
        if not isinstance(value, str) or not value or any(ch in value for ch in forbidden):
            raise ApiError(
                f"{field} {value!r} cannot be sent over the TCP protocol",
                details={field: value, "forbidden": repr(forbidden)},
            )
        return value

    def _keys_by_tag(self, tag: str) -> list[str]:
        self._check_field(tag, "tag", forbidden="\t\r\n,")
        parts = self._split_reply(self._command("KEYS_BY_TAG", tag), "KEYS", "KEYS_BY_TAG")
        csv = parts[1] if len(parts) > 1 else ""
        return [k for k in csv.split(",") if k]

    # ------------ Core Interface ------------

    def put(
        self,
        key: str,
        value: Any,
        ttl_ms: int | timedelta | None = None,
        tags: Iterable[str] = (),
    ) -> bool:
        self._check_field(key, "key")
        ttl, tag_list = self._prepare_put(ttl_ms, tags)
        for tag in tag_list:
            self._check_field(tag, "tag", forbidden="\t\r\n,")

        ttl_field = str(ttl) if ttl is not None else EMPTY_FIELD
        tags_field = ",".join(tag_list) if tag_list else EMPTY_FIELD
        response = self._command("PUT", key, ttl_field, tags_field, encode_text(value))
        if response != "OK":
            raise ApiError(f"PUT failed: {response}", details={"key": key, "response": response})
        return True

    def get(self, key: str) -> dict[str, Any]:
        self._check_field(key, "key")
        response = self._command("GET", key)
        if response == "NF":
            raise NotFoundError(key)
        if not response.startswith("VALUE\t"):
            raise ServerError(f"GET bad response: {response[:100]}", details={"key": key})
        return {"value": decode_text(response[len("VALUE\t") :])}

    def delete(self, key: str) -> bool:
        self._check_field(key, "key")
        return "ok" in self._command("DEL", key)

    def invalidate_tags(self, tags: Iterable[str], mode: InvalidationMode | str = InvalidationMode.ANY) -> int:
        tag_list = list(dict.fromkeys(tags))
        if not tag_list:
            return 0

        any_mode = self._coerce_mode(mode) is InvalidationMode.ANY
        for tag in tag_list:
            self._check_field(tag, "tag", forbidden="\t\r\n,")

        if any_mode:
            count = 0
            for tag in tag_list:
                parts = self._split_reply(self._command("INV_TAG", tag), "INV_TAG", "INV_TAG")
                count += self._parse_int(parts[1] if len(parts) > 1 else "0", "INV_TAG")
            return count

        # all-mode: intersect tag memberships client-side, then delete
        candidates = self._keys_by_tag(tag_list[0])
        for tag in tag_list[1:]:
            members = set(self._keys_by_tag(tag))
            candidates = [k for k in candidates if k in members]
            if not candidates:
                break
        return self.bulk_delete(candidates)

    def search(self, params: SearchParams | Mapping[str, Any] | str) -> list[dict[str, Any]]:
        search = self._coerce_search(params)
        if search.q is not None:
            raise UnsupportedOperationError("search by pattern", self.name)
        if search.tag_all and len(search.tag_all) > 1:
            raise UnsupportedOperationError("search with multiple tag_all tags", self.name)

        tags = search.tag_any or search.tag_all
        if not tags:
            raise UnsupportedOperationError("search without a tag filter", self.name)
        if len(tags) > 1:
            logger.warning(
                "TCP search only uses the first tag, ignoring %d more",
                len(tags) - 1,
                extra={"tags": tags},
            )

        keys = self._keys_by_tag(tags[0])
        if search.limit is not None:
            keys = keys[: search.limit]
        return [{"key": k} for k in keys]

    def stats(self) -> dict[str, Any]:
        parts = self._split_reply(self._command("STATS"), "STATS", "STATS")
        if len(parts) < 6:
            raise ServerError(f"STATS bad response: {parts}", details={"fields": len(parts)})
        try:
            raw = {
                "hits": int(parts[1]),
                "misses": int(parts[2]),
                "puts": int(parts[3]),
                "invalidations": int(parts[4]),
                "hit_ratio": float(parts[5]),
            }
        except ValueError as e:
            raise ServerError(f"STATS returned non-numeric fields: {parts}") from e
        return self._normalize_stats(raw)

    def list_keys(self, limit: int = 100) -> list[dict[str, Any]]:
        raise UnsupportedOperationError("list", self.name)

    def flush(self) -> int:
        parts = self._split_reply(self._command("FLUSH"), "FLUSH", "FLUSH")
        return self._parse_int(parts[1] if len(parts) > 1 else "0", "FLUSH")

    def health(self) -> dict[str, Any]:
        self.stats()
        return {"status": "ok", "transport": self.name, "host": self.host, "port": self.port}

    def login(self, username: str, password: str) -> str:
        raise UnsupportedOperationError("login", self.name)

    def rotate_credentials(self) -> dict[str, Any]:
        raise UnsupportedOperationError("rotate_credentials", self.name)

    def setup_required(self) -> bool:
        raise UnsupportedOperationError("setup_required", self.name)

    def close(self) -> None:
        self.pool.close()
