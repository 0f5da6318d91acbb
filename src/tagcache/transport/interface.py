"""
TagCache - Transport Interface

Defines the abstract interface that both wire transports (HTTP, TCP) implement.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from datetime import timedelta
from types import TracebackType
from typing import Any, Self

from ..errors import ApiError, NotFoundError
from ..models import InvalidationMode, SearchParams, normalize_tags, normalize_ttl

STATS_FIELDS = ("hits", "misses", "puts", "invalidations", "hit_ratio", "total_keys", "total_memory_usage")


class Transport(ABC):
    """
    Abstract base class for wire transports.

    Records returned by get/bulk_get/search/list_keys are plain dicts whose
    ``value`` is already decoded. Errors are always raised as TagCacheError
    subclasses; a transport never converts a failure into a sentinel.
    """

    name: str = "transport"

    # ------------ Core Interface ------------

    @abstractmethod
    def put(
        self,
        key: str,
        value: Any,
        ttl_ms: int | timedelta | None = None,
        tags: Iterable[str] = (),
    ) -> bool:
        """
        Store a value.

        Args:
            key: Cache key
            value: Value to store (see tagcache.serialization)
            ttl_ms: Time-to-live in milliseconds (None = no expiry)
            tags: Tags to attach (duplicates are dropped)

        Returns:
            True once the server acknowledged the write

        Raises:
            ApiError: On any wire failure
        """

    @abstractmethod
    def get(self, key: str) -> dict[str, Any]:
        """
        Retrieve the raw record for a key.

        Raises:
            NotFoundError: If the key is absent or expired
        """

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete a key. Returns True if the key existed."""

    @abstractmethod
    def invalidate_tags(self, tags: Iterable[str], mode: InvalidationMode | str = InvalidationMode.ANY) -> int:
        """
        Remove every entry matching the tags.

        Args:
            tags: Tags to match
            mode: "any" (entry has one of the tags) or "all" (entry has every tag)

        Returns:
            Number of entries removed
        """

    @abstractmethod
    def search(self, params: SearchParams | Mapping[str, Any] | str) -> list[dict[str, Any]]:
        """Find entries by key prefix or tags."""

    @abstractmethod
    def stats(self) -> dict[str, Any]:
        """Return server counters with all STATS_FIELDS present."""

    @abstractmethod
    def list_keys(self, limit: int = 100) -> list[dict[str, Any]]:
        """List up to ``limit`` entries (newest first on the HTTP API)."""

    @abstractmethod
    def flush(self) -> int:
        """Remove every entry. Returns the number cleared."""

    @abstractmethod
    def health(self) -> dict[str, Any]:
        """Return the server health status."""

    @abstractmethod
    def login(self, username: str, password: str) -> str:
        """Exchange credentials for a bearer token."""

    @abstractmethod
    def rotate_credentials(self) -> dict[str, Any]:
        """Ask the server to rotate the admin credentials. Returns the new pair."""

    @abstractmethod
    def setup_required(self) -> bool:
        """Whether the server still needs its initial credential setup."""

    @abstractmethod
    def close(self) -> None:
        """
        Release network resources.

        Safe to call multiple times.
        """

    # ------------ Bulk operations ------------

    def bulk_get(self, keys: Iterable[str]) -> dict[str, dict[str, Any] | None]:
        """
        Retrieve multiple records.

        Default implementation calls get() for each key.
        Transports can override for better performance.

        Returns:
            Mapping in the order of ``keys``; absent keys map to None
        """
        result: dict[str, dict[str, Any] | None] = {}
        for key in keys:
            try:
                result[key] = self.get(key)
            except NotFoundError:
                result[key] = None
        return result

    def bulk_delete(self, keys: Iterable[str]) -> int:
        """
        Delete multiple keys.

        Default implementation calls delete() for each key.

        Returns:
            Number of keys removed
        """
        count = 0
        for key in keys:
            if self.delete(key):
                count += 1
        return count

    def invalidate_keys(self, keys: Iterable[str]) -> int:
        """Remove the given keys. Returns the number removed."""
        return self.bulk_delete(keys)

    # ------------ Helpers ------------

    @staticmethod
    def _check_key(key: str) -> str:
        if not isinstance(key, str) or not key:
            raise ApiError("key must be a non-empty string", details={"key": key})
        return key

    @staticmethod
    def _prepare_put(ttl_ms: int | timedelta | None, tags: Iterable[str] | None) -> tuple[int | None, list[str]]:
        """Validate put arguments into (ttl milliseconds, de-duplicated tags)."""
        try:
            return normalize_ttl(ttl_ms), normalize_tags(tags)
        except (TypeError, ValueError) as e:
            raise ApiError(f"Invalid put arguments: {e}", details={"ttl_ms": str(ttl_ms)}) from e

    @staticmethod
    def _coerce_mode(mode: InvalidationMode | str) -> InvalidationMode:
        try:
            return InvalidationMode(mode)
        except ValueError as e:
            raise ApiError(f"Unknown invalidation mode: {mode!r}", details={"supported": ["any", "all"]}) from e

    @staticmethod
    def _coerce_search(params: SearchParams | Mapping[str, Any] | str) -> SearchParams:
        try:
            return SearchParams.coerce(params)
        except ValueError as e:
            raise ApiError(f"Invalid search parameters: {e}") from e

    @staticmethod
    def _normalize_stats(raw: Mapping[str, Any]) -> dict[str, Any]:
        """Map server stat names onto STATS_FIELDS, defaulting missing fields to zero."""
        stats = dict(raw)
        if "total_keys" not in stats and "items" in stats:
            stats["total_keys"] = stats["items"]
        if "total_memory_usage" not in stats and "bytes" in stats:
            stats["total_memory_usage"] = stats["bytes"]
        for field in STATS_FIELDS:
            stats.setdefault(field, 0.0 if field == "hit_ratio" else 0)
        return stats

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
