"""
TagCache - Data Models

Typed value objects returned by the client facade. Transports exchange raw
dict records; TagCacheClient turns them into these models.
"""

from collections.abc import Iterable, Mapping
from datetime import timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class InvalidationMode(str, Enum):
    """How a multi-tag invalidation matches entries."""

    ANY = "any"  # Entry carries at least one of the tags
    ALL = "all"  # Entry carries every tag


class CacheEntry(BaseModel):
    """A stored value plus its key, remaining TTL and tags."""

    key: str = Field(..., min_length=1, description="Cache key")
    value: Any = Field(default=None, description="Decoded value")
    ttl_ms: int | None = Field(default=None, ge=0, description="Remaining TTL in milliseconds (None = no expiry)")
    tags: frozenset[str] = Field(default_factory=frozenset, description="Tags attached to the entry")
    created_ms: int | None = Field(default=None, description="Server creation time, epoch milliseconds")

    model_config = ConfigDict(frozen=True)

    @field_validator("tags", mode="before")
    @classmethod
    def coerce_tags(cls, v: Any) -> Any:
        if v is None:
            return frozenset()
        if isinstance(v, str):
            return frozenset(t for t in v.split(",") if t)
        return v

    @classmethod
    def from_record(cls, record: Mapping[str, Any], key: str | None = None) -> "CacheEntry":
        """
        Build an entry from a transport record.

        HTTP records carry key/ttl_ms/tags/created_ms; TCP GET records only
        carry a value, in which case the requested key is used.
        """
        if "key" in record:
            ttl = record.get("ttl_ms", record.get("ttl"))
            return cls(
                key=record["key"],
                value=record.get("value"),
                ttl_ms=ttl,
                tags=record.get("tags") or (),
                created_ms=record.get("created_ms"),
            )
        if key is None:
            raise ValueError("record has no key and no key was supplied")
        return cls(key=key, value=record.get("value"))


class CacheStats(BaseModel):
    """Server counters, normalized across transports."""

    hits: int = 0
    misses: int = 0
    puts: int = 0
    invalidations: int = 0
    hit_ratio: float = 0.0
    total_keys: int = 0
    total_memory_usage: int = 0

    model_config = ConfigDict(frozen=True, extra="ignore")


class SearchParams(BaseModel):
    """Parameters accepted by POST /search."""

    q: str | None = Field(default=None, description="Key prefix pattern")
    tag_any: list[str] | None = Field(default=None, description="Match entries with any of these tags")
    tag_all: list[str] | None = Field(default=None, description="Match entries with all of these tags")
    limit: int | None = Field(default=None, ge=1, description="Maximum number of results")

    model_config = ConfigDict(frozen=True)

    def to_body(self) -> dict[str, Any]:
        """Request body without unset fields."""
        return self.model_dump(exclude_none=True)

    @classmethod
    def coerce(cls, params: "SearchParams | Mapping[str, Any] | str") -> "SearchParams":
        """Accept a SearchParams, a plain mapping, or a bare prefix string."""
        if isinstance(params, SearchParams):
            return params
        if isinstance(params, str):
            return cls(q=params)
        return cls.model_validate(dict(params))


def normalize_ttl(ttl: int | timedelta | None) -> int | None:
    """Convert a TTL argument to whole milliseconds."""
    if ttl is None:
        return None
    if isinstance(ttl, timedelta):
        ttl_ms = int(ttl.total_seconds() * 1000)
    elif isinstance(ttl, bool) or not isinstance(ttl, int):
        raise TypeError(f"ttl must be int milliseconds or timedelta, got {type(ttl).__name__}")
    else:
        ttl_ms = ttl
    if ttl_ms < 0:
        raise ValueError("ttl must not be negative")
    return ttl_ms


def normalize_tags(tags: Iterable[str] | None) -> list[str]:
    """De-duplicate tags keeping first-seen order."""
    if not tags:
        return []
    if isinstance(tags, str):
        tags = [tags]
    return list(dict.fromkeys(str(t) for t in tags))
