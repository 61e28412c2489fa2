"""
Stowcache — Cache Module

Provides caching with pluggable backends and a memoization layer.

- interface.py: Abstract cache interface all backends implement
- backends/: memory, file, redis, memcached and table implementations
- factory.py: Config-driven creation and a named instance registry
- memoize.py: Memoizing wrappers over any backend

Usage:
    from stowcache.cache import open_cache, with_cache

    cache = await open_cache()
    await cache.set("key", "value", ttl=3600)
    value = await cache.get("key")

    memo = with_cache(cache, ttl=300)
"""

from .factory import (
    close_all_caches,
    create_cache,
    get_cache,
    list_cache_instances,
    open_cache,
    reset_cache_factory,
)
from .interface import CacheInterface
from .keys import validate_key, validate_keys
from .memoize import Memoizer, with_cache, with_cached_query
from .serialization import JsonSerializer, PickleSerializer, Serializer
from .ttl import TTLSpec, resolve_expiry

__all__ = [
    # Factory functions
    "create_cache",
    "open_cache",
    "get_cache",
    "close_all_caches",
    "list_cache_instances",
    "reset_cache_factory",
    # Interface
    "CacheInterface",
    # Keys and TTL
    "validate_key",
    "validate_keys",
    "TTLSpec",
    "resolve_expiry",
    # Serialization
    "Serializer",
    "JsonSerializer",
    "PickleSerializer",
    # Memoization
    "Memoizer",
    "with_cache",
    "with_cached_query",
]
