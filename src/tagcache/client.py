"""
TagCache - Client Facade

TagCacheClient is the public entry point. It picks a transport from the
configuration, turns raw transport records into CacheEntry/CacheStats
models, and adds tag-scoped lookups and get_or_set.

Example:
    with TagCacheClient(mode="http", http={"base_url": "http://127.0.0.1:8080"}) as cache:
        cache.put("user:42", {"name": "Ada"}, ttl_ms=60000, tags=["users", "tenant:1"])
        entry = cache.get("user:42")
        cache.invalidate_tags(["users"])
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import timedelta
from types import TracebackType
from typing import Any, Self

from .config import TagCacheConfig, load_config
from .errors import NotFoundError, TagCacheError
from .models import CacheEntry, CacheStats, InvalidationMode, SearchParams
from .transport import Transport, create_transport

logger = logging.getLogger(__name__)


class TagCacheClient:
    """
    Synchronous TagCache client.

    Notes:
    - get/bulk_get/search/stats raise typed TagCacheError subclasses.
    - put, invalidate_by_tag and invalidate_by_key log and swallow
      TagCacheError, returning False/0 instead.
    - get_or_set is not atomic: concurrent callers may both run the producer.
    """

    def __init__(
        self,
        config: TagCacheConfig | None = None,
        *,
        transport: Transport | None = None,
        **options: Any,
    ) -> None:
        """
        Initialize the client.

        Args:
            config: Resolved configuration (built with load_config(options) if None)
            transport: Pre-built transport, bypassing mode selection
            **options: Explicit options passed to load_config when config is None

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        self.config = config if config is not None else load_config(options)
        self.transport = transport if transport is not None else create_transport(self.config)

    @property
    def transport_name(self) -> str:
        return self.transport.name

    # ------------ Entries ------------

    def put(
        self,
        key: str,
        value: Any,
        ttl_ms: int | timedelta | None = None,
        tags: Iterable[str] = (),
    ) -> bool:
        """Store a value. Returns False instead of raising on failure."""
        try:
            return self.transport.put(key, value, ttl_ms=ttl_ms, tags=tags)
        except TagCacheError as e:
            logger.warning(f"put failed for key {key}: {e}", extra={"key": key, "error": str(e)})
            return False

    def get(self, key: str) -> CacheEntry:
        """
        Retrieve an entry.

        Raises:
            NotFoundError: If the key is absent or expired
        """
        return CacheEntry.from_record(self.transport.get(key), key=key)

    def delete(self, key: str) -> bool:
        return self.transport.delete(key)

    def bulk_get(self, keys: Iterable[str]) -> dict[str, CacheEntry | None]:
        """Retrieve several entries in request order; absent keys map to None."""
        return {
            key: CacheEntry.from_record(record, key=key) if record is not None else None
            for key, record in self.transport.bulk_get(keys).items()
        }

    def bulk_delete(self, keys: Iterable[str]) -> int:
        return self.transport.bulk_delete(keys)

    def get_or_set(
        self,
        key: str,
        producer: Callable[[str], Any],
        ttl_ms: int | timedelta | None = None,
        tags: Iterable[str] = (),
    ) -> Any:
        """
        Return the cached value, or produce, store and return it on a miss.

        The producer is called with the key. A failed store is logged and the
        produced value is still returned.
        """
        try:
            return self.get(key).value
        except NotFoundError:
            pass

        value = producer(key)
        self.put(key, value, ttl_ms=ttl_ms, tags=tags)
        return value

    # ------------ Invalidation ------------

    def invalidate_keys(self, keys: Iterable[str]) -> int:
        return self.transport.invalidate_keys(keys)

    def invalidate_tags(self, tags: Iterable[str], mode: InvalidationMode | str = InvalidationMode.ANY) -> int:
        return self.transport.invalidate_tags(tags, mode=mode)

    def invalidate_by_tag(self, tag: str) -> int:
        """Invalidate one tag. Returns 0 instead of raising on failure."""
        try:
            return self.transport.invalidate_tags([tag])
        except TagCacheError as e:
            logger.warning(f"invalidate_by_tag failed for tag {tag}: {e}", extra={"tag": tag, "error": str(e)})
            return 0

    def invalidate_by_key(self, key: str) -> bool:
        """Invalidate one key. Returns False instead of raising on failure."""
        try:
            return self.transport.invalidate_keys([key]) > 0
        except TagCacheError as e:
            logger.warning(f"invalidate_by_key failed for key {key}: {e}", extra={"key": key, "error": str(e)})
            return False

    def flush(self) -> int:
        return self.transport.flush()

    # ------------ Lookup ------------

    def search(self, params: SearchParams | Mapping[str, Any] | str) -> list[CacheEntry]:
        """Search by key prefix and/or tags."""
        return [CacheEntry.from_record(record) for record in self.transport.search(params)]

    def keys_by_tag(self, tag: str, limit: int | None = None) -> list[CacheEntry]:
        return self.search({"tag_any": [tag], "limit": limit})

    def keys_by_tags_any(self, tags: Iterable[str], limit: int | None = None) -> list[CacheEntry]:
        return self.search({"tag_any": list(tags), "limit": limit})

    def keys_by_tags_all(self, tags: Iterable[str], limit: int | None = None) -> list[CacheEntry]:
        return self.search({"tag_all": list(tags), "limit": limit})

    def list_keys(self, limit: int = 100) -> list[CacheEntry]:
        return [CacheEntry.from_record(record) for record in self.transport.list_keys(limit)]

    def stats(self) -> CacheStats:
        return CacheStats.model_validate(self.transport.stats())

    # ------------ Server ------------

    def health(self) -> dict[str, Any]:
        return self.transport.health()

    def login(self, username: str, password: str) -> str:
        return self.transport.login(username, password)

    def rotate_credentials(self) -> dict[str, Any]:
        return self.transport.rotate_credentials()

    def setup_required(self) -> bool:
        return self.transport.setup_required()

    def close(self) -> None:
        self.transport.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
