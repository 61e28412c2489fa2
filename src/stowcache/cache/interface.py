"""
Stowcache — Cache Interface

Defines the abstract interface that all cache backends must implement.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from .keys import validate_key, validate_keys
from .serialization import Serializer
from .ttl import TTLSpec, resolve_expiry


class CacheInterface(ABC):
    """
    Abstract base class for cache backends.

    All cache implementations must implement this interface to ensure
    consistent behavior across different backends (memory, file, Redis, table).

    Contract shared by every backend:
    - Keys are validated before any I/O (InvalidKeyError)
    - Reads never raise for a miss, an expired entry or a storage fault
    - Writes report storage faults as False instead of raising
    - Deleting a missing key succeeds
    """

    #: Short backend name used in logs and stats
    backend_name: str = "abstract"

    #: TTL applied when set() is called with ttl=None
    default_ttl: TTLSpec = None

    #: Converts values to payload bytes and back
    serializer: Serializer

    #: Storage-imposed key length bound (None = unbounded)
    max_key_length: int | None = None

    # ------------ Helpers ------------

    def _check_key(self, key: Any) -> str:
        """Validate a caller-supplied key against this backend's limits."""
        return validate_key(key, self.max_key_length)

    def _check_keys(self, keys: Iterable[Any]) -> list[str]:
        """Validate a batch of caller-supplied keys before any bulk I/O."""
        return validate_keys(keys, self.max_key_length)

    def _expiry_for(self, ttl: TTLSpec, now: datetime | None = None) -> datetime | None:
        """Resolve a per-call TTL (falling back to default_ttl) to an expiry."""
        if ttl is None:
            ttl = self.default_ttl
        return resolve_expiry(ttl, now)

    # ------------ Core Interface ------------

    async def initialize(self) -> None:
        """
        Open or verify the storage medium.

        Backends that connect lazily override this to fail fast.
        Safe to call multiple times (idempotent).

        Raises:
            SetupError: If the storage medium is unavailable
        """
        return None

    @abstractmethod
    async def get(self, key: str, default: Any = None) -> Any:
        """
        Retrieve a value from the cache.

        Args:
            key: Cache key
            default: Value returned when the key is missing or expired

        Returns:
            Cached value if found and not expired, default otherwise

        Raises:
            InvalidKeyError: If key is malformed
        """
        pass

    @abstractmethod
    async def set(
        self,
        key: str,
        value: Any,
        ttl: TTLSpec = None,
    ) -> bool:
        """
        Store a value in the cache, replacing any existing entry.

        Args:
            key: Cache key
            value: Value to cache (must be accepted by the serializer)
            ttl: Seconds, timedelta or absolute datetime (None = default_ttl)

        Returns:
            True if stored successfully, False otherwise

        Raises:
            InvalidKeyError: If key is malformed
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete a key from the cache.

        Args:
            key: Cache key to delete

        Returns:
            True unless the storage medium failed (a missing key is not a failure)

        Raises:
            InvalidKeyError: If key is malformed
        """
        pass

    @abstractmethod
    async def has(self, key: str) -> bool:
        """
        Check if a key exists in the cache.

        Args:
            key: Cache key to check

        Returns:
            True if key exists and is not expired, False otherwise

        Raises:
            InvalidKeyError: If key is malformed
        """
        pass

    @abstractmethod
    async def clear(self) -> bool:
        """
        Remove every entry managed by this cache instance.

        Entries outside this instance's namespace (directory, table) are
        never touched.

        Returns:
            True if cache was cleared successfully
        """
        pass

    @abstractmethod
    async def get_stats(self) -> dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with cache statistics (hits, misses, sets, etc.)
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """
        Close the cache backend and release resources.

        Should be called during graceful shutdown.
        """
        pass

    async def get_many(self, keys: Iterable[str], default: Any = None) -> dict[str, Any]:
        """
        Retrieve multiple values from the cache.

        Default implementation calls get() for each key.
        Backends can override for better performance.

        Args:
            keys: Cache keys
            default: Value reported for missing or expired keys

        Returns:
            Dictionary mapping every requested key to its value or default
        """
        checked = self._check_keys(keys)
        return {key: await self.get(key, default) for key in checked}

    async def set_many(
        self,
        items: Mapping[str, Any],
        ttl: TTLSpec = None,
    ) -> bool:
        """
        Store multiple values in the cache.

        Default implementation calls set() for each item.
        Every item is attempted even after a failure.

        Args:
            items: Dictionary mapping keys to values
            ttl: TTL applied to all items

        Returns:
            True only if every item was stored
        """
        self._check_keys(items.keys())
        success = True
        for key, value in items.items():
            success = await self.set(key, value, ttl) and success
        return success

    async def delete_many(self, keys: Iterable[str]) -> bool:
        """
        Delete multiple keys from the cache.

        Default implementation calls delete() for each key.

        Args:
            keys: Cache keys to delete

        Returns:
            True only if every delete succeeded
        """
        checked = self._check_keys(keys)
        success = True
        for key in checked:
            success = await self.delete(key) and success
        return success
