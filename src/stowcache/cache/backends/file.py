"""
Stowcache — File Cache Backend

One file per key under a cache directory:
- File name: ``<key>.cache``
- File content: the serialized payload bytes
- File access/modification time: the expiry instant (write time + TTL)

Expiry is checked on every read and expired files are deleted lazily.
Writes go to a temporary file that is renamed into place, so a reader never
sees a partially written entry. Concurrent writers to one key are
last-write-wins.

Example:
    cache = FileCacheBackend("/var/cache/myapp", default_ttl=3600)
    await cache.set("greeting", {"msg": "hello"}, ttl=60)
    val = await cache.get("greeting")
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any

from ...errors import SerializationError, SetupError
from ..interface import CacheInterface
from ..serialization import Serializer, default_serializer
from ..ttl import TTLSpec

logger = logging.getLogger(__name__)

CACHE_FILE_SUFFIX = ".cache"

# 9999-12-31T23:59:59Z marks "never expires"; filesystems with a narrower
# timestamp range clamp it to their own maximum
NO_EXPIRY_TIMESTAMP = 253402300799.0


class FileCacheBackend(CacheInterface):
    """
    Filesystem cache backend.

    Notes:
    - clear() removes only ``*.cache`` files in this backend's directory.
    - No cross-process locking; atomic rename prevents torn entries.
    - Blocking file I/O runs in a worker thread (asyncio.to_thread).
    """

    backend_name = "file"

    # File name limit is 255 bytes including the suffix
    max_key_length = 255 - len(CACHE_FILE_SUFFIX)

    def __init__(
        self,
        directory: str | Path,
        default_ttl: TTLSpec = None,
        serializer: Serializer | None = None,
    ) -> None:
        """
        Initialize file cache backend, creating the directory if needed.

        Args:
            directory: Directory holding the cache files
            default_ttl: TTL used when set() gets ttl=None (None = no expiry)
            serializer: Payload serializer (JSON by default)

        Raises:
            SetupError: If the directory cannot be created or written to
        """
        self.directory = Path(directory).resolve()
        self.default_ttl = default_ttl
        self.serializer = serializer or default_serializer()

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SetupError(
                self.backend_name,
                f"cannot create cache directory {self.directory}: {e}",
                details={"directory": str(self.directory), "error": str(e)},
            ) from e

        if not os.access(self.directory, os.W_OK | os.X_OK):
            raise SetupError(
                self.backend_name,
                f"cache directory {self.directory} is not writable",
                details={"directory": str(self.directory)},
            )

        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0

    # ------------ Helpers ------------

    def file_path(self, key: str) -> Path:
        """Path of the file holding ``key``."""
        self._check_key(key)
        return self.directory / f"{key}{CACHE_FILE_SUFFIX}"

    def _expiry_timestamp(self, ttl: TTLSpec) -> float:
        expiry = self._expiry_for(ttl)
        if expiry is None:
            return NO_EXPIRY_TIMESTAMP
        return min(expiry.timestamp(), NO_EXPIRY_TIMESTAMP)

    @staticmethod
    def _is_live(path: Path) -> bool:
        """True if the file exists and has not expired; expired files are deleted."""
        try:
            expires_at = path.stat().st_mtime
        except FileNotFoundError:
            return False

        if expires_at <= time.time():
            path.unlink(missing_ok=True)
            return False
        return True

    @classmethod
    def _read_live(cls, path: Path) -> bytes | None:
        """Read a live entry; None if missing or expired."""
        if not cls._is_live(path):
            return None

        try:
            return path.read_bytes()
        except FileNotFoundError:
            # Deleted by a concurrent writer or clear()
            return None

    @staticmethod
    def _write_atomic(path: Path, payload: bytes, expires_at: float) -> None:
        """Write payload to a temp file, stamp its expiry, then rename into place."""
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
            os.utime(tmp_name, (expires_at, expires_at))
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    @staticmethod
    def _remove(path: Path) -> bool:
        """Delete a file; True if it existed."""
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False

    def _decode(self, key: str, payload: bytes, default: Any) -> Any:
        try:
            return self.serializer.loads(payload)
        except SerializationError as e:
            logger.warning(
                f"Failed to deserialize cache file for key '{key}': {e}",
                extra={"key": key, "directory": str(self.directory), "error": str(e)},
            )
            return default

    # ------------ Core Interface ------------

    async def get(self, key: str, default: Any = None) -> Any:
        """Retrieve value from cache, purging the file if it has expired."""
        path = self.file_path(key)
        try:
            payload = await asyncio.to_thread(self._read_live, path)
        except OSError as e:
            logger.error(
                f"Failed to read cache file for key '{key}': {e}",
                extra={"key": key, "path": str(path), "error": str(e)},
                exc_info=True,
            )
            self._misses += 1
            return default

        if payload is None:
            self._misses += 1
            return default

        self._hits += 1
        return self._decode(key, payload, default)

    async def set(self, key: str, value: Any, ttl: TTLSpec = None) -> bool:
        """Store a value with optional TTL."""
        path = self.file_path(key)

        try:
            payload = self.serializer.dumps(value)
        except SerializationError as e:
            logger.error(
                f"Failed to serialize value for key '{key}': {e}",
                extra={"key": key, "value_type": type(value).__name__, "error": str(e)},
            )
            return False

        expires_at = self._expiry_timestamp(ttl)

        try:
            await asyncio.to_thread(self._write_atomic, path, payload, expires_at)
        except OSError as e:
            logger.error(
                f"Failed to write cache file for key '{key}': {e}",
                extra={"key": key, "path": str(path), "ttl": str(ttl), "error": str(e)},
                exc_info=True,
            )
            return False

        self._sets += 1
        return True

    async def delete(self, key: str) -> bool:
        """Delete a single key (missing keys are not an error)."""
        path = self.file_path(key)
        try:
            if await asyncio.to_thread(self._remove, path):
                self._deletes += 1
            return True
        except OSError as e:
            logger.error(
                f"Failed to delete cache file for key '{key}': {e}",
                extra={"key": key, "path": str(path), "error": str(e)},
                exc_info=True,
            )
            return False

    async def has(self, key: str) -> bool:
        """Check if a live entry exists (expired files are purged)."""
        path = self.file_path(key)
        try:
            return await asyncio.to_thread(self._is_live, path)
        except OSError as e:
            logger.error(
                f"Failed to check cache file for key '{key}': {e}",
                extra={"key": key, "path": str(path), "error": str(e)},
                exc_info=True,
            )
            return False

    async def clear(self) -> bool:
        """Delete every ``*.cache`` file in the cache directory."""

        def _clear() -> tuple[int, int]:
            removed = failed = 0
            for path in self.directory.glob(f"*{CACHE_FILE_SUFFIX}"):
                try:
                    path.unlink(missing_ok=True)
                    removed += 1
                except OSError as e:
                    failed += 1
                    logger.error(
                        f"Failed to delete cache file {path}: {e}",
                        extra={"path": str(path), "error": str(e)},
                    )
            return removed, failed

        try:
            removed, failed = await asyncio.to_thread(_clear)
        except OSError as e:
            logger.error(
                f"Failed to clear cache directory {self.directory}: {e}",
                extra={"directory": str(self.directory), "error": str(e)},
                exc_info=True,
            )
            return False

        self._deletes += removed
        logger.info(f"Cleared {removed} cache files from '{self.directory}'")
        return failed == 0

    async def get_stats(self) -> dict[str, Any]:
        """Return cache statistics and directory usage."""

        def _usage() -> tuple[int, int]:
            files = list(self.directory.glob(f"*{CACHE_FILE_SUFFIX}"))
            size = 0
            for path in files:
                try:
                    size += path.stat().st_size
                except FileNotFoundError:
                    continue
            return len(files), size

        total_requests = self._hits + self._misses
        hit_rate = round((self._hits / total_requests) * 100, 2) if total_requests else 0.0
        entries, size_bytes = await asyncio.to_thread(_usage)

        return {
            "backend": self.backend_name,
            "directory": str(self.directory),
            "size": entries,
            "size_bytes": size_bytes,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": hit_rate,
            "sets": self._sets,
            "deletes": self._deletes,
        }

    async def close(self) -> None:
        """Nothing to release; files stay on disk."""
        logger.debug(f"File cache backend closed for directory '{self.directory}'")


