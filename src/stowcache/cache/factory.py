"""
Stowcache — Cache Factory

Factory and registry for cache instances built from configuration.

Key points:
- Select backend with CACHE_BACKEND=memory|file|redis|memcached|table
  - Defaults to memory (redis if REDIS_URL is set, memcached if MEMCACHED_HOST
    is set, table if CACHE_DATABASE_URL is set)
  - redis requires the redis client and REDIS_URL
  - memcached requires aiomcache
  - table requires SQLAlchemy with an async driver and CACHE_DATABASE_URL
- Backends can always be constructed directly; the factory only wires config

Examples:
    from stowcache.cache.factory import create_cache, open_cache

    # Uses env-configured backend (memory by default)
    cache = create_cache()

    # Or explicitly supply a CacheConfig (e.g., for tests)
    from stowcache.config import CacheBackend, CacheConfig
    cfg = CacheConfig(backend=CacheBackend.FILE, directory="/tmp/cache", ttl_seconds=600)
    file_cache = await open_cache(cfg, name="files")
"""

from __future__ import annotations

import logging
from typing import Any

from ..config import CacheBackend, CacheConfig, get_config
from ..errors import ConfigurationError, DependencyError, SetupError
from .backends.file import FileCacheBackend
from .backends.memory import MemoryCacheBackend
from .interface import CacheInterface

logger = logging.getLogger(__name__)

# Global cache instances registry
_cache_instances: dict[str, CacheInterface] = {}

# Engines created by the factory (closed with their cache)
_owned_engines: dict[str, Any] = {}


def _create_memory_cache(config: CacheConfig) -> CacheInterface:
    """Internal helper to construct a memory cache backend."""
    return MemoryCacheBackend(
        max_size=config.max_size,
        default_ttl=config.ttl_seconds,
        namespace=config.namespace,
    )


def _create_file_cache(config: CacheConfig) -> CacheInterface:
    """Internal helper to construct a file cache backend."""
    return FileCacheBackend(
        directory=config.directory,
        default_ttl=config.ttl_seconds,
    )


def _create_redis_cache(config: CacheConfig) -> CacheInterface:
    """Internal helper to construct a redis cache backend with lazy import."""
    if not config.redis_url:
        raise ConfigurationError(
            "REDIS_URL must be set when CACHE_BACKEND=redis",
            details={"env": "REDIS_URL", "backend": "redis"},
        )

    # Lazy import to avoid hard dependency when another backend is used
    try:
        from .backends.redis import RedisCacheBackend
    except (ImportError, DependencyError) as e:
        logger.error(
            "Redis backend selected but redis client is not installed",
            extra={"package": "redis>=5.0.0", "error": str(e)},
        )
        raise ConfigurationError(
            "Redis backend selected but redis client is unavailable. Install with: pip install 'redis>=5.0.0'",
            details={"package": "redis>=5.0.0", "error": str(e), "backend": "redis"},
        ) from e

    return RedisCacheBackend(
        redis_url=config.redis_url,
        namespace=config.namespace,
        default_ttl=config.ttl_seconds,
        max_connections=config.redis_max_connections,
        socket_timeout=config.redis_socket_timeout,
    )


def _create_memcached_cache(config: CacheConfig) -> CacheInterface:
    """Internal helper to construct a memcached cache backend with lazy import."""
    # Lazy import to avoid hard dependency when another backend is used
    try:
        from .backends.memcached import MemcachedCacheBackend
    except (ImportError, DependencyError) as e:
        logger.error(
            "Memcached backend selected but aiomcache is not installed",
            extra={"package": "aiomcache", "error": str(e)},
        )
        raise ConfigurationError(
            "Memcached backend selected but aiomcache is unavailable. Install with: pip install aiomcache",
            details={"package": "aiomcache", "error": str(e), "backend": "memcached"},
        ) from e

    return MemcachedCacheBackend(
        host=config.memcached_host,
        port=config.memcached_port,
        namespace=config.namespace,
        default_ttl=config.ttl_seconds,
        pool_size=config.memcached_pool_size,
    )


def _create_table_cache(config: CacheConfig, name: str) -> CacheInterface:
    """Internal helper to construct a table cache backend and its engine."""
    if not config.database_url:
        raise ConfigurationError(
            "CACHE_DATABASE_URL must be set when CACHE_BACKEND=table",
            details={"env": "CACHE_DATABASE_URL", "backend": "table"},
        )

    from sqlalchemy.exc import ArgumentError, NoSuchModuleError
    from sqlalchemy.ext.asyncio import create_async_engine

    from .backends.table import TableCacheBackend

    try:
        engine = create_async_engine(config.database_url, echo=False)
    except (ArgumentError, NoSuchModuleError, ImportError) as e:
        raise SetupError(
            "table",
            f"cannot create database engine: {e}",
            details={"error": str(e)},
        ) from e

    try:
        cache = TableCacheBackend(
            engine=engine,
            table_name=config.table_name,
            default_ttl=config.ttl_seconds,
        )
    except Exception:
        # No pool connection is checked out yet, so a sync dispose suffices
        engine.sync_engine.dispose()
        raise
    _owned_engines[name] = engine
    return cache


def create_cache(
    config: CacheConfig | None = None,
    name: str = "default",
) -> CacheInterface:
    """
    Create a cache backend instance based on configuration.

    Args:
        config: Cache configuration (uses global config if not provided)
        name: Cache instance name (for multiple cache instances)

    Returns:
        Configured cache backend instance

    Raises:
        ConfigurationError: If cache configuration is invalid or backend unavailable
        SetupError: If the backend cannot establish its storage medium
    """
    # Return existing instance if already created
    if name in _cache_instances:
        logger.debug("Returning existing cache instance: %s", name)
        return _cache_instances[name]

    # Use global config if not provided
    if config is None:
        config = get_config().cache

    try:
        backend = CacheBackend(config.backend)
    except ValueError as e:
        raise ConfigurationError(
            f"Unknown cache backend: {config.backend}",
            details={
                "backend": str(config.backend),
                "supported": [b.value for b in CacheBackend],
            },
        ) from e

    logger.info(
        "Creating cache instance '%s' with backend: %s",
        name,
        backend.value,
        extra={"cache_name": name, "backend": backend.value},
    )

    try:
        if backend == CacheBackend.MEMORY:
            cache = _create_memory_cache(config)
        elif backend == CacheBackend.FILE:
            cache = _create_file_cache(config)
        elif backend == CacheBackend.REDIS:
            cache = _create_redis_cache(config)
        elif backend == CacheBackend.MEMCACHED:
            cache = _create_memcached_cache(config)
        else:
            cache = _create_table_cache(config, name)
    except (ConfigurationError, SetupError):
        # Re-raise known errors as-is
        raise
    except Exception as e:
        logger.error(
            "Unexpected error creating cache instance '%s': %s",
            name,
            e,
            extra={"cache_name": name, "backend": backend.value, "error": str(e)},
            exc_info=True,
        )
        raise ConfigurationError(
            f"Failed to create cache instance '{name}': {e}",
            details={"cache_name": name, "backend": backend.value, "error": str(e)},
        ) from e

    _cache_instances[name] = cache
    logger.info(
        "Cache instance '%s' created successfully",
        name,
        extra={"cache_name": name, "backend": backend.value},
    )
    return cache


async def open_cache(
    config: CacheConfig | None = None,
    name: str = "default",
) -> CacheInterface:
    """
    Create (or fetch) a cache instance and initialize its storage medium.

    Raises:
        SetupError: If the storage medium is unreachable; the instance is
            not registered in that case
    """
    cache = create_cache(config, name)
    try:
        await cache.initialize()
    except SetupError:
        _cache_instances.pop(name, None)
        await _dispose_engine(name)
        raise
    return cache


def get_cache(name: str = "default") -> CacheInterface:
    """
    Get an existing cache instance by name.

    If the instance doesn't exist, it will be created automatically
    using the global configuration.
    """
    if name not in _cache_instances:
        logger.debug("Cache instance '%s' not found, creating new instance", name)
        return create_cache(name=name)

    return _cache_instances[name]


async def _dispose_engine(name: str) -> None:
    engine = _owned_engines.pop(name, None)
    if engine is not None:
        await engine.dispose()


async def close_all_caches() -> None:
    """
    Close all cache instances and release resources.

    Should be called during graceful shutdown.
    """
    if not _cache_instances:
        logger.debug("No cache instances to close")
        return

    logger.info("Closing %d cache instance(s)...", len(_cache_instances))

    for name, cache in list(_cache_instances.items()):
        try:
            await cache.close()
            await _dispose_engine(name)
            logger.info("Closed cache instance: %s", name)
        except Exception as e:
            logger.error(
                "Error closing cache instance '%s': %s",
                name,
                e,
                extra={"cache_name": name, "error": str(e)},
                exc_info=True,
            )

    _cache_instances.clear()
    logger.info("All cache instances closed")


def reset_cache_factory() -> None:
    """
    Reset the cache factory by clearing all instance references.

    Does NOT call close() on instances - use close_all_caches() for proper cleanup.
    Only intended for tests and hot-reload scenarios.
    """
    count = len(_cache_instances)
    _cache_instances.clear()
    _owned_engines.clear()
    logger.debug("Reset cache factory, cleared %d instance reference(s)", count)


def list_cache_instances() -> list[str]:
    """List all registered cache instance names."""
    return list(_cache_instances.keys())
