"""
Stowcache — Redis Cache Backend

Asynchronous Redis cache implementation with:
- Pluggable payload serialization (JSON by default)
- Expiry delegated to native Redis key expiration (PX milliseconds)
- Namespace prefixing; clear() only removes this namespace
- Batch operations using MGET, pipelines and variadic DEL

Requires: redis>=5.0 with asyncio support

Example:
    cache = RedisCacheBackend(redis_url="redis://localhost:6379/0", namespace="myapp")
    await cache.initialize()
    await cache.set("greeting", {"msg": "hello"}, ttl=60)
    val = await cache.get("greeting")
"""

from __future__ import annotations

import logging
import math
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
    # redis-py asyncio client (v4.2+)
    from redis.asyncio import Redis
    from redis.exceptions import RedisError
except ImportError as e:  # pragma: no cover
    raise DependencyError(
        "redis",
        feature="the Redis cache backend",
        install_hint="pip install 'redis>=5.0.0'",
    ) from e


class RedisCacheBackend(CacheInterface):
    """
    Redis cache backend with native per-key TTL.

    Notes:
    - Keys are prefixed with the configured namespace to avoid collisions.
    - The backend only computes the remaining lifetime; Redis expires keys.
    - An already-expired TTL deletes the key instead of writing it.
    - Batch writes use a non-transactional pipeline; each key is one SET.
    """

    backend_name = "redis"

    _SCAN_BATCH_SIZE = 1000
    _DELETE_CHUNK_SIZE = 1000

    def __init__(
        self,
        redis_url: str | None = None,
        *,
        host: str = "localhost",
        port: int = 6379,
        password: str | None = None,
        db: int = 0,
        namespace: str = "stowcache",
        default_ttl: TTLSpec = None,
        max_connections: int = 10,
        socket_timeout: float = 5,
        serializer: Serializer | None = None,
        client: Redis | None = None,
    ) -> None:
        """
        Initialize Redis cache backend.

        The connection is opened lazily; call initialize() to fail fast
        on an unreachable server.

        Args:
            redis_url: Connection URL, e.g. redis://localhost:6379/0 (overrides host/port/password/db)
            host: Redis host when no URL is given
            port: Redis port when no URL is given
            password: Optional password when no URL is given
            db: Logical database index when no URL is given
            namespace: Prefix for all keys
            default_ttl: TTL used when set() gets ttl=None (None = no expiry)
            max_connections: Connection pool size
            socket_timeout: Socket timeout in seconds
            serializer: Payload serializer (JSON by default)
            client: Pre-built Redis client (skips client construction)

        Raises:
            ConfigurationError: If namespace is not a valid key fragment
            SetupError: If the client cannot be constructed from the settings
        """
        try:
            self.namespace = validate_key(namespace.strip())
        except InvalidKeyError as e:
            raise ConfigurationError(
                f"Invalid Redis cache namespace: {namespace!r}",
                details={"namespace": namespace},
            ) from e

        self.default_ttl = default_ttl
        self.serializer = serializer or default_serializer()
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0
        self._initialized = False

        if client is not None:
            self._client = client
            return

        try:
            if redis_url:
                self._client = Redis.from_url(
                    url=redis_url,
                    decode_responses=False,
                    max_connections=max_connections,
                    socket_timeout=socket_timeout,
                )
            else:
                self._client = Redis(
                    host=host,
                    port=port,
                    password=password,
                    db=db,
                    decode_responses=False,
                    max_connections=max_connections,
                    socket_timeout=socket_timeout,
                )
        except (ValueError, RedisError) as e:
            raise SetupError(
                self.backend_name,
                f"invalid connection settings: {e}",
                details={"redis_url": redis_url, "host": host, "port": port, "db": db},
            ) from e

    # ------------ Helpers ------------

    def _make_key(self, key: str) -> str:
        """Create namespaced key."""
        return f"{self.namespace}:{key}"

    @staticmethod
    def _expiry_ms(expiry: datetime | None, now: datetime) -> int | None:
        """
        Convert an absolute expiry into the PX value handed to Redis:
        - None -> no expiry (None)
        - already expired -> 0 or negative
        - otherwise -> milliseconds, rounded up
        """
        remaining = seconds_until(expiry, now)
        if remaining is None:
            return None
        return math.ceil(remaining * 1000)

    def _decode(self, key: str, raw: bytes, default: Any) -> Any:
        try:
            return self.serializer.loads(raw)
        except SerializationError as e:
            logger.warning(
                f"Failed to deserialize key '{key}' from Redis: {e}",
                extra={"key": key, "namespace": self.namespace, "error": str(e)},
            )
            return default

    # ------------ Core Interface ------------

    async def initialize(self) -> None:
        """Ping the server; raise SetupError if it cannot be reached."""
        if self._initialized:
            return
        try:
            await self._client.ping()
        except (RedisError, OSError) as e:
            raise SetupError(
                self.backend_name,
                f"cannot reach Redis server: {e}",
                details={"namespace": self.namespace, "error": str(e)},
            ) from e
        self._initialized = True
        logger.info(f"Connected Redis cache backend for namespace '{self.namespace}'")

    async def get(self, key: str, default: Any = None) -> Any:
        """Retrieve a value by key."""
        self._check_key(key)
        try:
            raw = await self._client.get(self._make_key(key))
        except Exception as e:
            logger.error(
                f"Failed to get key '{key}' from Redis: {e}",
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
        px = self._expiry_ms(self._expiry_for(ttl, now), now)

        try:
            payload = self.serializer.dumps(value)
        except SerializationError as e:
            logger.error(
                f"Failed to serialize value for key '{key}': {e}",
                extra={"key": key, "value_type": type(value).__name__, "error": str(e)},
            )
            return False

        try:
            ns_key = self._make_key(key)
            if px is not None and px <= 0:
                # Already expired: make sure no stale value survives
                await self._client.delete(ns_key)
                return True

            res = await self._client.set(name=ns_key, value=payload, px=px)
            success = bool(res)
            if success:
                self._sets += 1
            return success
        except Exception as e:
            logger.error(
                f"Failed to set key '{key}' in Redis: {e}",
                extra={"key": key, "namespace": self.namespace, "ttl": str(ttl), "error": str(e)},
                exc_info=True,
            )
            return False

    async def delete(self, key: str) -> bool:
        """Delete a single key (missing keys are not an error)."""
        self._check_key(key)
        try:
            deleted = await self._client.delete(self._make_key(key))
            self._deletes += int(deleted)
            return True
        except Exception as e:
            logger.error(
                f"Failed to delete key '{key}' from Redis: {e}",
                extra={"key": key, "namespace": self.namespace, "error": str(e)},
                exc_info=True,
            )
            return False

    async def has(self, key: str) -> bool:
        """Check if a key exists (Redis never reports expired keys)."""
        self._check_key(key)
        try:
            return bool(await self._client.exists(self._make_key(key)))
        except Exception as e:
            logger.error(
                f"Failed to check existence of key '{key}' in Redis: {e}",
                extra={"key": key, "namespace": self.namespace, "error": str(e)},
                exc_info=True,
            )
            return False

    async def clear(self) -> bool:
        """
        Clear all entries under the namespace.

        Implementation: SCAN match "<namespace>:*" and DEL in batches.
        The rest of the Redis database is left untouched.
        """
        try:
            pattern = f"{self.namespace}:*"
            cursor = 0
            total_deleted = 0

            while True:
                cursor, keys = await self._client.scan(cursor=cursor, match=pattern, count=self._SCAN_BATCH_SIZE)
                if keys:
                    total_deleted += await self._client.delete(*keys)
                if cursor == 0:
                    break

            self._deletes += total_deleted
            logger.info(f"Cleared {total_deleted} keys from namespace '{self.namespace}'")
            return True
        except Exception as e:
            logger.error(
                f"Failed to clear cache for namespace '{self.namespace}': {e}",
                extra={"namespace": self.namespace, "error": str(e)},
                exc_info=True,
            )
            return False

    async def get_stats(self) -> dict[str, Any]:
        """Return cache statistics and basic Redis info."""
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
            stats["connected"] = bool(await self._client.ping())
            info = await self._client.info(section="server")
            stats["redis_version"] = info.get("redis_version")
            stats["redis_mode"] = info.get("redis_mode")
        except Exception as e:
            # If INFO is restricted or fails, keep minimal stats
            logger.warning(f"Failed to get Redis INFO (restricted or unavailable): {e}", extra={"error": str(e)})

        return stats

    async def close(self) -> None:
        """Close the Redis client and release resources."""
        try:
            await self._client.aclose()
            logger.info(f"Closed Redis cache backend for namespace '{self.namespace}'")
        except Exception as e:
            logger.error(
                f"Error closing Redis client: {e}", extra={"namespace": self.namespace, "error": str(e)}, exc_info=True
            )
        finally:
            self._initialized = False

    # ------------ Batch operations (pipeline) ------------

    async def get_many(self, keys: Iterable[str], default: Any = None) -> dict[str, Any]:
        """
        Retrieve multiple values in one round-trip using MGET.
        Missing keys map to default.
        """
        checked = self._check_keys(keys)
        if not checked:
            return {}

        try:
            values = await self._client.mget([self._make_key(k) for k in checked])
        except Exception as e:
            logger.error(
                f"Failed to get multiple keys from Redis: {e}",
                extra={"key_count": len(checked), "namespace": self.namespace, "error": str(e)},
                exc_info=True,
            )
            self._misses += len(checked)
            return {k: default for k in checked}

        result: dict[str, Any] = {}
        # mget preserves order
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
        Store multiple values using a pipeline. Applies the same TTL to all items.
        Returns True only if every item was stored.
        """
        self._check_keys(items.keys())
        if not items:
            return True

        now = utcnow()
        px = self._expiry_ms(self._expiry_for(ttl, now), now)
        success = True

        pipe = self._client.pipeline(transaction=False)
        queued = 0
        for key, value in items.items():
            try:
                payload = self.serializer.dumps(value)
            except SerializationError as e:
                logger.error(
                    f"Failed to serialize value for key '{key}': {e}",
                    extra={"key": key, "value_type": type(value).__name__, "error": str(e)},
                )
                success = False
                continue

            if px is not None and px <= 0:
                pipe.delete(self._make_key(key))
            else:
                pipe.set(self._make_key(key), payload, px=px)
            queued += 1

        if not queued:
            return success

        try:
            results = await pipe.execute(raise_on_error=False)
        except Exception as e:
            logger.error(
                f"Failed to set multiple keys in Redis: {e}",
                extra={"key_count": len(items), "namespace": self.namespace, "ttl": str(ttl), "error": str(e)},
                exc_info=True,
            )
            return False

        for result in results:
            if isinstance(result, Exception):
                logger.error(
                    f"Pipelined write failed in Redis: {result}",
                    extra={"namespace": self.namespace, "error": str(result)},
                )
                success = False
            elif px is None or px > 0:
                if result in (True, "OK", b"OK"):
                    self._sets += 1
                else:
                    success = False

        return success

    async def delete_many(self, keys: Iterable[str]) -> bool:
        """
        Delete multiple keys with variadic DEL in chunks.
        Missing keys are not an error.
        """
        checked = self._check_keys(keys)
        ns_keys = [self._make_key(k) for k in checked]
        success = True

        for i in range(0, len(ns_keys), self._DELETE_CHUNK_SIZE):
            chunk = ns_keys[i : i + self._DELETE_CHUNK_SIZE]
            try:
                self._deletes += int(await self._client.delete(*chunk))
            except Exception as e:
                logger.error(
                    f"Failed to delete multiple keys from Redis: {e}",
                    extra={"key_count": len(chunk), "namespace": self.namespace, "error": str(e)},
                    exc_info=True,
                )
                success = False

        return success
