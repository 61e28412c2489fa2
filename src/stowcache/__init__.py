"""
Stowcache — TTL key-value caching with memoization.

Interchangeable memory, file, Redis and relational-table backends behind one
async cache contract, plus a memoizer that caches computation results.
"""

from .cache import (
    CacheInterface,
    JsonSerializer,
    Memoizer,
    PickleSerializer,
    close_all_caches,
    create_cache,
    get_cache,
    open_cache,
    with_cache,
    with_cached_query,
)
from .cache.backends import FileCacheBackend, MemoryCacheBackend
from .errors import (
    CacheError,
    ConfigurationError,
    InvalidKeyError,
    SerializationError,
    SetupError,
    StowcacheError,
)
from .log import configure_logging

__version__ = "0.1.0"

__all__ = [
    "CacheInterface",
    "MemoryCacheBackend",
    "FileCacheBackend",
    "JsonSerializer",
    "PickleSerializer",
    "Memoizer",
    "with_cache",
    "with_cached_query",
    "create_cache",
    "open_cache",
    "get_cache",
    "close_all_caches",
    "StowcacheError",
    "CacheError",
    "ConfigurationError",
    "InvalidKeyError",
    "SetupError",
    "SerializationError",
    "configure_logging",
]
