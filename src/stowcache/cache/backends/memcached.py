"""
Stowcache — Memcached Cache Backend

Asynchronous Memcached cache implementation with:
- Pluggable payload serialization (JSON by default)
- Expiry delegated to native memcached exptime
- Namespace prefixing; clear() only invalidates this namespace
- Batch reads with a single multi-get

Memcached cannot enumerate keys, so every key carries a namespace
generation: ``<namespace>:<generation>:<key>``. clear() increments the
generation counter; entries of older generations are never read again and
age out through memcached's own LRU and expiry. Other namespaces and other
tenants of the server are left untouched (no flush_all).

Requires: aiomcache

Example:
    cache = MemcachedCacheBackend(host="localhost", port=11211, namespace="myapp")
    await cache.initialize()
    await cache.set("greeting", {"msg": "hello"}, ttl=60)
    val = await cache.get("greeting")
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from ...errors import ConfigurationError, DependencyError, InvalidKeyError, SerializationError, SetupError
from ..interface import CacheInterface
from ..keys import validate_key
from ..serialization import Serializer, default_serializer
from ..ttl import TTLSpec, seconds_until, utcnow

logger = logging.getLogger(__name__)

try:
    import aiomcache
    from aiomcache.exceptions import ClientException
except ImportError as e:  # pragma: no cover
    raise DependencyError(
        "aiomcache",
        feature="the Memcached cache backend",
        install_hint="pip install aiomcache",
    ) from e

# Memcached rejects keys longer than this many bytes
MEMCACHED_MAX_KEY_LENGTH = 250

# Widest generation counter: a 64-bit unsigned integer
_GENERATION_DIGITS = 20

# Memcached reads a larger exptime as an absolute unix timestamp
MAX_RELATIVE_EXPTIME = 60 * 60 * 24 * 30


class MemcachedCacheBackend(CacheInterface):
    """
    Memcached cache backend with native per-key expiry.

    Notes:
    - An already-expired TTL deletes the key instead of writing it.
    - Lifetimes beyond 30 days are sent as absolute timestamps.
    - has() is a read; memcached has no cheaper existence check.
    """

    backend_name = "memcached"

    def __init__(
        self,
        host: str = "localhost",
        port: int = 11211,
        *,
        namespace: str = "stowcache",
        default_ttl: TTLSpec = None,
        pool_size: int = 2,
        serializer: Serializer | None = None,
        client: aiomcache.Client | None = None,
    ) -> None:
        """
        Initialize Memcached cache backend.

        Connections are opened lazily; call initialize() to fail fast
        on an unreachable server.

        Args:
            host: Memcached host
            port: Memcached port
            namespace: Prefix for all keys
            default_ttl: TTL used when set() gets ttl=None (None = no expiry)
            pool_size: Connection pool size
            serializer: Payload serializer (JSON by default)
            client: Pre-built aiomcache client (skips client construction)

        Raises:
            ConfigurationError: If namespace is not a valid key fragment
            SetupError: If the client cannot be constructed from the settings
        """
        try:
            self.namespace = validate_key(namespace.strip())
        except InvalidKeyError as e:
            raise ConfigurationError(
                f"Invalid Memcached cache namespace: {namespace!r}",
                details={"namespace": namespace},
            ) from e

        # Room for "<namespace>:<generation>:" in front of every key
        self.max_key_length = MEMCACHED_MAX_KEY_LENGTH - len(self.namespace) - _GENERATION_DIGITS - 2
        if self.max_key_length < 1:
            raise ConfigurationError(
                f"Memcached cache namespace is too long: {namespace!r}",
                details={"namespace": namespace, "max_length": MEMCACHED_MAX_KEY_LENGTH - _GENERATION_DIGITS - 3},
            )

        self.host = host
        self.port = port
        self.default_ttl = default_ttl
        self.serializer = serializer or default_serializer()
        self._generation_key = f"{self.namespace}:generation".encode("ascii")
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0
        self._initialized = False

        if client is not None:
            self._client = client
            return

        try:
            self._client = aiomcache.Client(host, port, pool_size=pool_size)
        except (ValueError, TypeError) as e:
            raise SetupError(
                self.backend_name,
                f"invalid connection settings: {e}",
                details={"host": host, "port": port, "pool_size": pool_size},
            ) from e

    # ------------ Helpers ------------

    def _make_key(self, key: str, generation: int) -> bytes:
        """Create namespaced key for the current generation."""
        return f"{self.namespace}:{generation}:{key}".encode("ascii")

    async def _generation(self) -> int:
        """Current namespace generation, created on first use."""
        raw = await self._client.get(self._generation_key)
        if raw is None:
            # Seeded from the clock so an evicted counter never revives old entries
            await self._client.add(self._generation_key, str(int(time.time())).encode("ascii"))
            raw = await self._client.get(self._generation_key)
            if raw is None:
                raise ClientException("namespace generation counter is not readable")
        return int(raw)

    @staticmethod
    def _exptime(expiry: datetime | None, now: datetime) -> int | None:
        """
        Convert an absolute expiry into memcached exptime:
        - None -> 0 (no expiry)
        - already expired -> None (the caller deletes instead)
        - up to 30 days -> relative seconds, rounded up
        - beyond -> absolute unix timestamp
        """
        remaining = seconds_until(expiry, now)
        if remaining is None:
            return 0
        if remaining <= 0:
            return None
        if remaining > MAX_RELATIVE_EXPTIME:
            return math.ceil(expiry.timestamp())  # type: ignore[union-attr]
        return math.ceil(remaining)

    def _decode(self, key: str, raw: bytes, default: Any) -> Any:
        try:
            return self.serializer.loads(raw)
        except SerializationError as e:
            logger.warning(
                f"Failed to deserialize key '{key}' from Memcached: {e}",
                extra={"key": key, "namespace": self.namespace, "error": str(e)},
            )
            return default

    def _encode(self, key: str, value: Any) -> bytes | None:
        try:
            return self.serializer.dumps(value)
        except SerializationError as e:
            logger.error(
                f"Failed to serialize value for key '{key}': {e}",
                extra={"key": key, "value_type": type(value).__name__, "error": str(e)},
            )
            return None

    async def _write(self, key: str, payload: bytes, exptime: int | None, generation: int) -> bool:
        ns_key = self._make_key(key, generation)
        if exptime is None:
            # Already expired: make sure no stale value survives
            await self._client.delete(ns_key)
            return True

        stored = bool(await self._client.set(ns_key, payload, exptime=exptime))
        if stored:
            self._sets += 1
        return stored

    # ------------ Core Interface ------------

    async def initialize(self) -> None:
        """Ask the server for its version; raise SetupError if it cannot be reached."""
        if self._initialized:
            return
        try:
            await self._client.version()
        except (ClientException, OSError) as e:
            raise SetupError(
                self.backend_name,
                f"cannot reach Memcached server: {e}",
                details={"host": self.host, "port": self.port, "namespace": self.namespace, "error": str(e)},
            ) from e
        self._initialized = True
        logger.info(f"Connected Memcached cache backend for namespace '{self.namespace}'")

    async def get(self, key: str, default: Any = None) -> Any:
        """Retrieve a value by key."""
        self._check_key(key)
        try:
            raw = await self._client.get(self._make_key(key, await self._generation()))
        except Exception as e:
            logger.error(
                f"Failed to get key '{key}' from Memcached: {e}",
                extra={"key": key, "namespace": self.namespace, "error": str(e)},
                exc_info=True,
            )
            self._misses += 1
            return default

        if raw is None:
            self._misses += 1
            return default

        self._hits += 1
        return self._decode(key, raw, default)

    async def set(self, key: str, value: Any, ttl: TTLSpec = None) -> bool:
        """Store a value with optional TTL."""
        self._check_key(key)
        now = utcnow()
        exptime = self._exptime(self._expiry_for(ttl, now), now)

        payload = self._encode(key, value)
        if payload is None:
            return False

        try:
            return await self._write(key, payload, exptime, await self._generation())
        except Exception as e:
            logger.error(
                f"Failed to set key '{key}' in Memcached: {e}",
                extra={"key": key, "namespace": self.namespace, "ttl": str(ttl), "error": str(e)},
                exc_info=True,
            )
            return False

    async def delete(self, key: str) -> bool:
        """Delete a single key (missing keys are not an error)."""
        self._check_key(key)
        try:
            deleted = await self._client.delete(self._make_key(key, await self._generation()))
            self._deletes += int(bool(deleted))
            return True
        except Exception as e:
            logger.error(
                f"Failed to delete key '{key}' from Memcached: {e}",
                extra={"key": key, "namespace": self.namespace, "error": str(e)},
                exc_info=True,
            )
            return False

    async def has(self, key: str) -> bool:
        """Check if a key exists (memcached never returns expired items)."""
        self._check_key(key)
        try:
            return await self._client.get(self._make_key(key, await self._generation())) is not None
        except Exception as e:
            logger.error(
                f"Failed to check existence of key '{key}' in Memcached: {e}",
                extra={"key": key, "namespace": self.namespace, "error": str(e)},
                exc_info=True,
            )
            return False

    async def clear(self) -> bool:
        """Invalidate every entry under the namespace by moving to a new generation."""
        try:
            await self._generation()
            generation = await self._client.incr(self._generation_key)
            logger.info(f"Cleared namespace '{self.namespace}' (generation {generation})")
            return True
        except Exception as e:
            logger.error(
                f"Failed to clear cache for namespace '{self.namespace}': {e}",
                extra={"namespace": self.namespace, "error": str(e)},
                exc_info=True,
            )
            return False

    async def get_stats(self) -> dict[str, Any]:
        """Return cache statistics and basic server info."""
        stats: dict[str, Any] = {
            "backend": self.backend_name,
            "namespace": self.namespace,
            "default_ttl": str(self.default_ttl) if self.default_ttl is not None else None,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": 0.0,
            "sets": self._sets,
            "deletes": self._deletes,
            "connected": False,
        }

        total_requests = self._hits + self._misses
        stats["hit_rate"] = round((self._hits / total_requests) * 100, 2) if total_requests else 0.0

        try:
            server = await self._client.stats()
            stats["connected"] = True
            version = server.get(b"version")
            stats["memcached_version"] = version.decode() if version else None
            stats["generation"] = await self._generation()
        except Exception as e:
            logger.warning(f"Failed to get Memcached stats: {e}", extra={"error": str(e)})

        return stats

    async def close(self) -> None:
        """Close the client pool and release resources."""
        try:
            await self._client.close()
            logger.info(f"Closed Memcached cache backend for namespace '{self.namespace}'")
        except Exception as e:
            logger.error(
                f"Error closing Memcached client: {e}",
                extra={"namespace": self.namespace, "error": str(e)},
                exc_info=True,
            )
        finally:
            self._initialized = False

    # ------------ Batch operations ------------

    async def get_many(self, keys: Iterable[str], default: Any = None) -> dict[str, Any]:
        """
        Retrieve multiple values in one round-trip using a multi-get.
        Missing keys map to default.
        """
        # multi_get refuses duplicate keys
        checked = list(dict.fromkeys(self._check_keys(keys)))
        if not checked:
            return {}

        try:
            generation = await self._generation()
            values = await self._client.multi_get(*(self._make_key(k, generation) for k in checked))
        except Exception as e:
            logger.error(
                f"Failed to get multiple keys from Memcached: {e}",
                extra={"key_count": len(checked), "namespace": self.namespace, "error": str(e)},
                exc_info=True,
            )
            self._misses += len(checked)
            return {k: default for k in checked}

        result: dict[str, Any] = {}
        for k, raw in zip(checked, values, strict=True):
            if raw is None:
                self._misses += 1
                result[k] = default
                continue
            self._hits += 1
            result[k] = self._decode(k, raw, default)

        return result

    async def set_many(self, items: Mapping[str, Any], ttl: TTLSpec = None) -> bool:
        """
        Store multiple values with the same TTL, one SET per key.
        Returns True only if every item was stored.
        """
        self._check_keys(items.keys())
        if not items:
            return True

        now = utcnow()
        exptime = self._exptime(self._expiry_for(ttl, now), now)

        try:
            generation = await self._generation()
        except Exception as e:
            logger.error(
                f"Failed to set multiple keys in Memcached: {e}",
                extra={"key_count": len(items), "namespace": self.namespace, "error": str(e)},
                exc_info=True,
            )
            return False

        success = True
        for key, value in items.items():
            payload = self._encode(key, value)
            if payload is None:
                success = False
                continue
            try:
                success = await self._write(key, payload, exptime, generation) and success
            except Exception as e:
                logger.error(
                    f"Failed to set key '{key}' in Memcached: {e}",
                    extra={"key": key, "namespace": self.namespace, "ttl": str(ttl), "error": str(e)},
                )
                success = False

        return success

    async def delete_many(self, keys: Iterable[str]) -> bool:
        """Delete multiple keys; missing keys are not an error."""
        checked = self._check_keys(keys)
        if not checked:
            return True

        try:
            generation = await self._generation()
        except Exception as e:
            logger.error(
                f"Failed to delete multiple keys from Memcached: {e}",
                extra={"key_count": len(checked), "namespace": self.namespace, "error": str(e)},
                exc_info=True,
            )
            return False

        success = True
        for key in checked:
            try:
                self._deletes += int(bool(await self._client.delete(self._make_key(key, generation))))
            except Exception as e:
                logger.error(
                    f"Failed to delete key '{key}' from Memcached: {e}",
                    extra={"key": key, "namespace": self.namespace, "error": str(e)},
                )
                success = False

        return success
