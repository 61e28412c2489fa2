"""
Stowcache — Cache Backends

Exports available cache backend implementations.

Redis, memcached and table backends are imported lazily by factory.py so their
client libraries are only needed when those backends are used.
"""

from .file import FileCacheBackend
from .memory import MemoryCacheBackend

__all__ = [
    "FileCacheBackend",
    "MemoryCacheBackend",
]
