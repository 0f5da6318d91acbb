"""
TagCache — Test Fakes

In-process stand-ins for the TagCache server: a threaded TCP server
speaking the line protocol and a REST API handler for httpx.MockTransport.
"""

import json
import socket
import socketserver
import threading
import time
from typing import Any
from urllib.parse import unquote

import httpx


def find_free_port() -> int:
    """Return a port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def is_port_open(host: str, port: int) -> bool:
    """Check if a server is accepting connections."""
    try:
        with socket.create_connection((host, port), timeout=1):
            return True
    except OSError:
        return False


class FakeStore:
    """In-memory store implementing the server side of the line protocol."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: dict[str, tuple[str, set[str], float | None]] = {}
        self.hits = 0
        self.misses = 0
        self.puts = 0
        self.invalidations = 0
        self.commands: list[str] = []

    def _live(self, key: str) -> tuple[str, set[str], float | None] | None:
        entry = self.entries.get(key)
        if entry is None:
            return None
        expires_at = entry[2]
        if expires_at is not None and time.monotonic() >= expires_at:
            del self.entries[key]
            return None
        return entry

    def execute(self, line: str) -> str:
        parts = line.split("\t", 4)
        command = parts[0]
        with self.lock:
            self.commands.append(command)

            if command == "PUT":
                if len(parts) < 5:
                    return "ERR bad PUT"
                _, key, ttl, tags, value = parts
                expires_at = None if ttl in ("-", "") else time.monotonic() + int(ttl) / 1000.0
                tag_set = set() if tags in ("-", "") else {t for t in tags.split(",") if t}
                self.entries[key] = (value, tag_set, expires_at)
                self.puts += 1
                return "OK"

            if command == "GET":
                entry = self._live(parts[1])
                if entry is None:
                    self.misses += 1
                    return "NF"
                self.hits += 1
                return f"VALUE\t{entry[0]}"

            if command == "DEL":
                return "DEL ok" if self.entries.pop(parts[1], None) is not None else "DEL nf"

            if command == "INV_TAG":
                doomed = [k for k, (_, tags, _) in self.entries.items() if parts[1] in tags]
                for key in doomed:
                    del self.entries[key]
                self.invalidations += len(doomed)
                return f"INV_TAG\t{len(doomed)}"

            if command in ("KEYS_BY_TAG", "KEYS"):
                keys = [k for k in list(self.entries) if self._live(k) and parts[1] in self.entries[k][1]]
                return "KEYS\t" + ",".join(keys)

            if command == "STATS":
                total = self.hits + self.misses
                ratio = self.hits / total if total else 0.0
                return f"STATS\t{self.hits}\t{self.misses}\t{self.puts}\t{self.invalidations}\t{ratio:.6f}"

            if command == "FLUSH":
                count = len(self.entries)
                self.entries.clear()
                return f"FLUSH\t{count}"

            return "ERR unknown command"


class _LineHandler(socketserver.StreamRequestHandler):
    def handle(self) -> None:
        self.server.record_connection()  # type: ignore[attr-defined]
        for raw in self.rfile:
            line = raw.decode("utf-8").rstrip("\r\n")
            response = self.server.store.execute(line)  # type: ignore[attr-defined]
            delay = self.server.take_reply_delay()  # type: ignore[attr-defined]
            if delay:
                time.sleep(delay)
            self.wfile.write((response + "\n").encode("utf-8"))


class FakeTagCacheServer(socketserver.ThreadingTCPServer):
    """
    Threaded TCP server that counts accepted connections.

    Set ``slow_replies`` to delay that many upcoming replies by ``reply_delay``
    seconds each.
    """

    daemon_threads = True
    block_on_close = False
    allow_reuse_address = True

    def __init__(self) -> None:
        super().__init__(("127.0.0.1", 0), _LineHandler)
        self.store = FakeStore()
        self.connections = 0
        self.slow_replies = 0
        self.reply_delay = 0.0
        self._count_lock = threading.Lock()

    @property
    def port(self) -> int:
        return self.server_address[1]

    def record_connection(self) -> None:
        with self._count_lock:
            self.connections += 1

    def take_reply_delay(self) -> float:
        with self._count_lock:
            if self.slow_replies <= 0:
                return 0.0
            self.slow_replies -= 1
            return self.reply_delay


class FakeRestApi:
    """
    In-memory REST API served through httpx.MockTransport.

    Mirrors the server's JSON shapes. With ``require_token`` every route
    except /auth/login and /health answers 401 unless a valid Bearer token
    is sent.
    """

    def __init__(self, username: str = "admin", password: str = "s3cret", require_token: bool = False) -> None:
        self.username = username
        self.password = password
        self.require_token = require_token
        self.tokens: set[str] = set()
        self.entries: dict[str, dict[str, Any]] = {}
        self.requests: list[tuple[str, str]] = []
        self.connect_failures = 0
        self.status_override: tuple[int, Any] | None = None
        self.reject_methods: set[str] = set()
        self.hits = 0
        self.misses = 0
        self.puts = 0
        self.put_bodies: dict[str, Any] = {}
        self._expires_at: dict[str, float] = {}

    @property
    def logins(self) -> int:
        return sum(1 for _, path in self.requests if path == "/auth/login")

    def _json(self, request: Any) -> Any:
        return json.loads(request.content) if request.content else {}

    def _authorized(self, request: Any) -> bool:
        header = request.headers.get("Authorization", "")
        return header.startswith("Bearer ") and header[len("Bearer ") :] in self.tokens

    def _live(self, key: str) -> bool:
        expires_at = self._expires_at.get(key)
        if expires_at is not None and time.monotonic() >= expires_at:
            self.entries.pop(key, None)
            del self._expires_at[key]
        return key in self.entries

    def _record(self, key: str) -> dict[str, Any]:
        entry = self.entries[key]
        return {"key": key, **entry}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        method = request.method
        self.requests.append((method, path))

        if self.connect_failures > 0:
            self.connect_failures -= 1
            raise httpx.ConnectError("connection refused", request=request)
        if self.status_override is not None:
            status, body = self.status_override
            if isinstance(body, str):
                return httpx.Response(status, text=body)
            return httpx.Response(status, json=body)
        if method in self.reject_methods:
            return httpx.Response(500, json={"error": "read_only"})

        if path == "/health":
            return httpx.Response(200, json={"status": "ok", "time": 1700000000})
        if path == "/auth/login":
            body = self._json(request)
            if body.get("username") == self.username and body.get("password") == self.password:
                token = f"tok-{len(self.tokens) + 1}"
                self.tokens.add(token)
                return httpx.Response(200, json={"token": token, "expires_in": 3600})
            return httpx.Response(401, json={"error": "invalid_credentials"})
        if self.require_token and not self._authorized(request):
            return httpx.Response(401, json={"error": "unauthorized"})

        body = self._json(request) if method in ("POST", "PUT") else {}

        if path == "/auth/rotate":
            self.password = "rotated"
            return httpx.Response(200, json={"ok": True, "username": self.username, "password": self.password})
        if path == "/auth/setup_required":
            return httpx.Response(200, json={"setup_required": False})
        if path == "/keys/bulk/get":
            items = [self._record(k) for k in body["keys"] if self._live(k)]
            return httpx.Response(200, json={"items": items})
        if path == "/keys/bulk/delete" or path == "/invalidate/keys":
            count = sum(1 for k in body["keys"] if self.entries.pop(k, None) is not None)
            return httpx.Response(200, json={"success": True, "count": count})
        if path == "/invalidate/tags":
            wanted = set(body["tags"])
            match = (lambda tags: wanted <= tags) if body.get("mode") == "all" else (lambda tags: bool(wanted & tags))
            doomed = [k for k, e in self.entries.items() if match(set(e["tags"]))]
            for key in doomed:
                del self.entries[key]
            return httpx.Response(200, json={"success": True, "count": len(doomed)})
        if path == "/flush":
            count = len(self.entries)
            self.entries.clear()
            return httpx.Response(200, json={"success": True, "count": count})
        if path == "/search":
            results = []
            for key, entry in self.entries.items():
                tags = set(entry["tags"])
                if body.get("q") and not key.startswith(body["q"]):
                    continue
                if body.get("tag_any") and not tags & set(body["tag_any"]):
                    continue
                if body.get("tag_all") and not set(body["tag_all"]) <= tags:
                    continue
                results.append({k: v for k, v in self._record(key).items() if k != "value"})
            return httpx.Response(200, json={"keys": results[: body.get("limit") or None]})
        if path == "/stats":
            total = self.hits + self.misses
            return httpx.Response(
                200,
                json={
                    "hits": self.hits,
                    "misses": self.misses,
                    "puts": self.puts,
                    "invalidations": 0,
                    "hit_ratio": self.hits / total if total else 0.0,
                    "items": len(self.entries),
                    "bytes": sum(len(json.dumps(e["value"])) for e in self.entries.values()),
                    "tags": 0,
                    "shard_count": 16,
                },
            )
        if path == "/keys" and method == "GET":
            keys = [
                {"key": k, "size": len(json.dumps(e["value"])), "ttl": e["ttl_ms"], "tags": e["tags"], "created_ms": e["created_ms"]}
                for k, e in reversed(self.entries.items())
            ]
            return httpx.Response(200, json={"keys": keys})
        if path.startswith("/keys/"):
            key = unquote(path[len("/keys/") :])
            if method == "PUT":
                ttl_ms = body.get("ttl_ms")
                self.put_bodies[key] = body
                self.entries[key] = {
                    "value": body.get("value"),
                    "ttl_ms": ttl_ms,
                    "tags": body.get("tags") or [],
                    "created_ms": 1700000000000,
                }
                if ttl_ms is not None:
                    self._expires_at[key] = time.monotonic() + ttl_ms / 1000.0
                else:
                    self._expires_at.pop(key, None)
                self.puts += 1
                return httpx.Response(200, json={"ok": True, "ttl_ms": ttl_ms})
            if method == "GET":
                if not self._live(key):
                    self.misses += 1
                    return httpx.Response(200, json={"error": "not_found"})
                self.hits += 1
                return httpx.Response(200, json=self._record(key))
            if method == "DELETE":
                removed = self.entries.pop(key, None) is not None
                return httpx.Response(200, json={"ok": removed, "deleted": 1 if removed else 0})

        return httpx.Response(404, json={"error": "no_route"})
