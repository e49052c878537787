# retrieval_sdk/vector/cache.py
# SPDX-License-Identifier: Apache-2.0
"""
In-process query cache for `search` results.

LRU ordering with a per-entry TTL. Keys are namespaced by collection
(`"<collection>:<digest>"`) and an explicit collection -> keys index backs
invalidation, so a write to one collection never evicts another's entries.
All state sits behind a `threading.Lock`; the cache is safe to share between
event loops running in different threads.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Set

from retrieval_sdk.vector.config import CacheConfig


@dataclass(frozen=True)
class CacheStats:
    entries: int
    hits: int
    misses: int
    hit_rate: float
    memory_usage_bytes: int


@dataclass
class _Entry:
    value: Any
    expires_at: float
    collection: str
    size: int


class Cache(Protocol):
    async def get(self, key: str) -> Optional[Any]: ...
    async def set(self, key: str, value: Any) -> None: ...
    def invalidate(self, collection: Optional[str] = None) -> int: ...
    def clear(self) -> None: ...
    def stats(self) -> CacheStats: ...


def _jsonable(obj: Any) -> Any:
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    return obj


def make_cache_key(collection: str, query: Any) -> str:
    """
    `"<collection>:" + first 16 hex chars of sha256(canonical JSON of query)`.
    """
    raw = json.dumps(_jsonable(query), sort_keys=True, default=str).encode("utf-8")
    return f"{collection}:{hashlib.sha256(raw).hexdigest()[:16]}"


def _estimate_size(key: str, value: Any) -> int:
    try:
        payload = json.dumps(
            [_jsonable(v) for v in value] if isinstance(value, list) else _jsonable(value),
            default=str,
        )
    except (TypeError, ValueError):
        payload = repr(value)
    # UTF-16-ish estimate, 2 bytes per character
    return 2 * (len(key) + len(payload))


class NoopQueryCache:
    """Used when caching is disabled."""

    async def get(self, key: str) -> Optional[Any]:
        return None

    async def set(self, key: str, value: Any) -> None: ...

    def invalidate(self, collection: Optional[str] = None) -> int:
        return 0

    def clear(self) -> None: ...

    def stats(self) -> CacheStats:
        return CacheStats(entries=0, hits=0, misses=0, hit_rate=0.0, memory_usage_bytes=0)


class QueryCache:
    """LRU + TTL cache keyed by `make_cache_key`."""

    def __init__(self, ttl_ms: int = 60_000, max_entries: int = 1000) -> None:
        self._ttl_s = max(0.0, ttl_ms / 1000.0)
        self._max_entries = max(1, int(max_entries))
        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()
        self._by_collection: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @classmethod
    def from_config(cls, config: Optional[CacheConfig]):
        if config is None or not config.enabled:
            return NoopQueryCache()
        return cls(ttl_ms=config.ttl_ms, max_entries=config.max_entries)

    @staticmethod
    def _collection_of(key: str) -> str:
        return key.split(":", 1)[0]

    def _drop(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        keys = self._by_collection.get(entry.collection)
        if keys is not None:
            keys.discard(key)
            if not keys:
                del self._by_collection[entry.collection]

    async def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if time.monotonic() >= entry.expires_at:
                self._drop(key)
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    async def set(self, key: str, value: Any) -> None:
        collection = self._collection_of(key)
        size = _estimate_size(key, value)
        with self._lock:
            if key in self._entries:
                self._drop(key)
            while len(self._entries) >= self._max_entries:
                oldest = next(iter(self._entries))
                self._drop(oldest)
            self._entries[key] = _Entry(
                value=value,
                expires_at=time.monotonic() + self._ttl_s,
                collection=collection,
                size=size,
            )
            self._by_collection.setdefault(collection, set()).add(key)

    def invalidate(self, collection: Optional[str] = None) -> int:
        """Drop every entry of `collection` (all entries when None). Returns the count."""
        with self._lock:
            if collection is None:
                n = len(self._entries)
                self._entries.clear()
                self._by_collection.clear()
                return n
            keys = list(self._by_collection.get(collection, ()))
            for key in keys:
                self._drop(key)
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._by_collection.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            return CacheStats(
                entries=len(self._entries),
                hits=self._hits,
                misses=self._misses,
                hit_rate=(self._hits / total) if total else 0.0,
                memory_usage_bytes=sum(e.size for e in self._entries.values()),
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = [
    "Cache",
    "CacheStats",
    "QueryCache",
    "NoopQueryCache",
    "make_cache_key",
]
