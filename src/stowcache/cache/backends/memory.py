"""
Stowcache — Memory Cache Backend

In-memory cache implementation with LRU eviction and TTL support.
Safe for concurrent tasks within one event loop; suitable for
single-process deployments and tests.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Iterable, Mapping
from typing import Any

from ...errors import SerializationError
from ..interface import CacheInterface
from ..serialization import Serializer, default_serializer
from ..ttl import TTLSpec

logger = logging.getLogger(__name__)


class MemoryCacheBackend(CacheInterface):
    """
    In-memory cache backend with LRU eviction.

    Features:
    - LRU eviction when max_size is reached
    - Per-key TTL support, expired entries purged on read
    - Values stored serialized, so callers never share mutable cached objects
    - O(1) get/set/delete operations
    """

    backend_name = "memory"

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: TTLSpec = None,
        namespace: str = "stowcache",
        serializer: Serializer | None = None,
    ):
        """
        Initialize memory cache backend.

        Args:
            max_size: Maximum number of entries (LRU eviction when exceeded)
            default_ttl: TTL used when set() gets ttl=None (None = no expiry)
            namespace: Cache key namespace/prefix
            serializer: Payload serializer (JSON by default)
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        self.max_size = max_size
        self.default_ttl = default_ttl
        self.namespace = namespace
        self.serializer = serializer or default_serializer()

        # Cache storage: key -> (payload, expiry timestamp or None)
        self._cache: OrderedDict[str, tuple[bytes, float | None]] = OrderedDict()

        # Stats
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0
        self._evictions = 0

        self._lock = asyncio.Lock()

    def _make_key(self, key: str) -> str:
        """Create namespaced cache key."""
        return f"{self.namespace}:{key}"

    def _is_expired(self, expiry: float | None) -> bool:
        """Check if entry is expired."""
        if expiry is None:
            return False
        return time.time() >= expiry

    def _expiry_timestamp(self, ttl: TTLSpec) -> float | None:
        expiry = self._expiry_for(ttl)
        return expiry.timestamp() if expiry is not None else None

    def _lookup(self, cache_key: str) -> bytes | None:
        """Return a live payload, purging the entry if it has expired. Caller holds the lock."""
        entry = self._cache.get(cache_key)
        if entry is None:
            return None

        payload, expiry = entry
        if self._is_expired(expiry):
            del self._cache[cache_key]
            return None

        # Move to end (mark as recently used)
        self._cache.move_to_end(cache_key)
        return payload

    def _store(self, cache_key: str, payload: bytes, expiry: float | None) -> None:
        """Insert or replace an entry, evicting the LRU entry if needed. Caller holds the lock."""
        if cache_key not in self._cache and len(self._cache) >= self.max_size:
            evicted_key, _ = self._cache.popitem(last=False)
            self._evictions += 1
            logger.debug(f"Evicted key from memory cache: {evicted_key}")

        self._cache[cache_key] = (payload, expiry)
        self._cache.move_to_end(cache_key)
        self._sets += 1

    def _decode(self, key: str, payload: bytes, default: Any) -> Any:
        try:
            return self.serializer.loads(payload)
        except SerializationError as e:
            logger.warning(
                f"Failed to deserialize key '{key}' from memory cache: {e}",
                extra={"key": key, "namespace": self.namespace, "error": str(e)},
            )
            return default

    async def get(self, key: str, default: Any = None) -> Any:
        """Retrieve value from cache."""
        self._check_key(key)

        async with self._lock:
            payload = self._lookup(self._make_key(key))
            if payload is None:
                self._misses += 1
                return default
            self._hits += 1

        return self._decode(key, payload, default)

    async def set(
        self,
        key: str,
        value: Any,
        ttl: TTLSpec = None,
    ) -> bool:
        """Store value in cache."""
        self._check_key(key)

        try:
            payload = self.serializer.dumps(value)
        except SerializationError as e:
            logger.error(
                f"Failed to serialize value for key '{key}': {e}",
                extra={"key": key, "value_type": type(value).__name__, "error": str(e)},
            )
            return False

        expiry = self._expiry_timestamp(ttl)

        async with self._lock:
            self._store(self._make_key(key), payload, expiry)
        return True

    async def delete(self, key: str) -> bool:
        """Delete key from cache (missing keys are not an error)."""
        self._check_key(key)

        async with self._lock:
            if self._cache.pop(self._make_key(key), None) is not None:
                self._deletes += 1
        return True

    async def has(self, key: str) -> bool:
        """Check if key exists and is not expired."""
        self._check_key(key)

        async with self._lock:
            return self._lookup(self._make_key(key)) is not None

    async def clear(self) -> bool:
        """Clear all entries from cache."""
        async with self._lock:
            size = len(self._cache)
            self._cache.clear()
        logger.info(f"Cleared {size} entries from memory cache namespace '{self.namespace}'")
        return True

    async def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        async with self._lock:
            total_requests = self._hits + self._misses
            hit_rate = (self._hits / total_requests * 100) if total_requests > 0 else 0.0

            return {
                "backend": self.backend_name,
                "size": len(self._cache),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(hit_rate, 2),
                "sets": self._sets,
                "deletes": self._deletes,
                "evictions": self._evictions,
                "namespace": self.namespace,
            }

    async def close(self) -> None:
        """Close cache and release resources."""
        # Memory backend doesn't need cleanup - data persists in-process
        logger.debug(f"Memory cache backend closed for namespace '{self.namespace}'")

    async def get_many(self, keys: Iterable[str], default: Any = None) -> dict[str, Any]:
        """Retrieve multiple values under a single lock acquisition."""
        checked = self._check_keys(keys)
        payloads: dict[str, bytes | None] = {}

        async with self._lock:
            for key in checked:
                payload = self._lookup(self._make_key(key))
                if payload is None:
                    self._misses += 1
                else:
                    self._hits += 1
                payloads[key] = payload

        return {
            key: default if payload is None else self._decode(key, payload, default)
            for key, payload in payloads.items()
        }

    async def set_many(
        self,
        items: Mapping[str, Any],
        ttl: TTLSpec = None,
    ) -> bool:
        """Store multiple values; a value that fails to serialize does not block the others."""
        self._check_keys(items.keys())
        expiry = self._expiry_timestamp(ttl)

        success = True
        encoded: list[tuple[str, bytes]] = []
        for key, value in items.items():
            try:
                encoded.append((key, self.serializer.dumps(value)))
            except SerializationError as e:
                logger.error(
                    f"Failed to serialize value for key '{key}': {e}",
                    extra={"key": key, "value_type": type(value).__name__, "error": str(e)},
                )
                success = False

        async with self._lock:
            for key, payload in encoded:
                self._store(self._make_key(key), payload, expiry)

        return success

    async def delete_many(self, keys: Iterable[str]) -> bool:
        """Delete multiple keys under a single lock acquisition."""
        checked = self._check_keys(keys)

        async with self._lock:
            for key in checked:
                if self._cache.pop(self._make_key(key), None) is not None:
                    self._deletes += 1
        return True
