"""
Stowcache — File Cache Backend Tests

Tests file layout, mtime-encoded expiry, lazy purging and clear() scoping.
"""

import os
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from stowcache.cache.backends.file import CACHE_FILE_SUFFIX, NO_EXPIRY_TIMESTAMP, FileCacheBackend
from stowcache.errors import InvalidKeyError, SetupError


class TestFileCacheBackend:
    """Test suite for FileCacheBackend."""

    @pytest.fixture
    def cache(self, cache_dir: Path) -> FileCacheBackend:
        return FileCacheBackend(cache_dir)

    def test_creates_directory(self, tmp_path: Path) -> None:
        target = tmp_path / "nested" / "cache"

        cache = FileCacheBackend(target)

        assert target.is_dir()
        assert cache.directory == target.resolve()

    def test_directory_under_a_file_fails_setup(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")

        with pytest.raises(SetupError) as exc_info:
            FileCacheBackend(blocker / "cache")

        assert exc_info.value.backend == "file"

    async def test_set_get_delete_scenario(self, cache: FileCacheBackend) -> None:
        assert await cache.set("a", "x", 3600) is True
        assert await cache.get("a") == "x"

        assert await cache.delete("a") is True
        assert await cache.get("a", "d") == "d"

    async def test_one_file_per_key(self, cache: FileCacheBackend, cache_dir: Path) -> None:
        await cache.set("report.2024-01", {"rows": [1, 2]})

        path = cache_dir / f"report.2024-01{CACHE_FILE_SUFFIX}"
        assert path.is_file()
        assert path.read_bytes() == b'{"rows":[1,2]}'
        assert cache.file_path("report.2024-01") == path.resolve()

    async def test_mtime_holds_expiry(self, cache: FileCacheBackend) -> None:
        before = time.time()
        await cache.set("a", "x", 3600)
        after = time.time()

        mtime = cache.file_path("a").stat().st_mtime
        assert before + 3600 - 1 <= mtime <= after + 3600 + 1

    async def test_no_ttl_uses_far_future_mtime(self, cache: FileCacheBackend) -> None:
        await cache.set("forever", "x")

        assert NO_EXPIRY_TIMESTAMP == datetime(9999, 12, 31, 23, 59, 59, tzinfo=UTC).timestamp()
        # Past the 32-bit limit; some filesystems clamp to their own maximum
        assert cache.file_path("forever").stat().st_mtime > 2**31
        assert await cache.get("forever") == "x"

    async def test_absolute_expiry_after_2038(self, cache: FileCacheBackend) -> None:
        expiry = datetime(2100, 1, 1, tzinfo=UTC)

        await cache.set("late", "x", expiry)

        assert cache.file_path("late").stat().st_mtime == pytest.approx(expiry.timestamp())
        assert await cache.has("late") is True

    async def test_default_ttl(self, cache_dir: Path) -> None:
        cache = FileCacheBackend(cache_dir, default_ttl=120)

        await cache.set("a", "x")

        remaining = cache.file_path("a").stat().st_mtime - time.time()
        assert 110 < remaining <= 121

    async def test_expired_ttl_is_a_miss_and_purges_file(self, cache: FileCacheBackend) -> None:
        assert await cache.set("a", "x", -1) is True
        path = cache.file_path("a")
        assert path.exists()

        assert await cache.get("a", "d") == "d"
        assert not path.exists()

    async def test_has_purges_expired_file(self, cache: FileCacheBackend) -> None:
        await cache.set("a", "x", 3600)
        path = cache.file_path("a")
        past = time.time() - 10
        os.utime(path, (past, past))

        assert await cache.has("a") is False
        assert not path.exists()

    async def test_has_live_entry(self, cache: FileCacheBackend) -> None:
        assert await cache.has("a") is False

        await cache.set("a", "x", 60)

        assert await cache.has("a") is True

    async def test_delete_missing_key_succeeds(self, cache: FileCacheBackend) -> None:
        assert await cache.delete("never-written") is True

    async def test_overwrite_replaces_value_and_expiry(self, cache: FileCacheBackend) -> None:
        await cache.set("a", "first", -1)
        await cache.set("a", "second", 3600)

        assert await cache.get("a") == "second"

    async def test_no_temp_files_left_behind(self, cache: FileCacheBackend, cache_dir: Path) -> None:
        for i in range(5):
            await cache.set(f"k{i}", i)

        assert sorted(p.name for p in cache_dir.iterdir()) == [f"k{i}{CACHE_FILE_SUFFIX}" for i in range(5)]

    async def test_unserializable_value_rejected(self, cache: FileCacheBackend) -> None:
        assert await cache.set("a", {1, 2}) is False
        assert not cache.file_path("a").exists()

    async def test_corrupt_file_reads_as_default(self, cache: FileCacheBackend) -> None:
        await cache.set("a", "x", 3600)
        path = cache.file_path("a")
        stat = path.stat()
        path.write_bytes(b"\xff not json")
        os.utime(path, (stat.st_atime, stat.st_mtime))

        assert await cache.get("a", "d") == "d"

    async def test_clear_only_removes_cache_files(self, cache: FileCacheBackend, cache_dir: Path) -> None:
        await cache.set("a", 1)
        await cache.set("b", 2)
        unrelated = cache_dir / "notes.txt"
        unrelated.write_text("keep me")

        assert await cache.clear() is True

        assert await cache.get("a") is None
        assert await cache.get("b") is None
        assert unrelated.read_text() == "keep me"

    async def test_clear_leaves_other_directories_alone(self, tmp_path: Path) -> None:
        first = FileCacheBackend(tmp_path / "one")
        second = FileCacheBackend(tmp_path / "two")
        await first.set("a", 1)
        await second.set("a", 2)

        await first.clear()

        assert await first.get("a") is None
        assert await second.get("a") == 2

    @pytest.mark.parametrize("bad_key", ["", "../escape", "a/b", "a b", "nul\x00", "k" * 250])
    async def test_invalid_keys_raise(
        self, cache: FileCacheBackend, key_operation: Callable[..., Awaitable[Any]], bad_key: str
    ) -> None:
        with pytest.raises(InvalidKeyError):
            await key_operation(cache, bad_key)

        assert list(cache.directory.iterdir()) == []

    async def test_key_length_bounded_by_file_name_limit(self, cache: FileCacheBackend) -> None:
        longest = "k" * cache.max_key_length

        assert await cache.set(longest, "x") is True
        assert await cache.get(longest) == "x"

        with pytest.raises(InvalidKeyError):
            await cache.set(longest + "k", "x")

    async def test_bulk_operations(self, cache: FileCacheBackend) -> None:
        assert await cache.set_many({"a": 1, "b": [2]}, ttl=60) is True

        assert await cache.get_many(["a", "b", "c"], default=0) == {"a": 1, "b": [2], "c": 0}

        assert await cache.delete_many(["a", "c"]) is True
        assert await cache.has("a") is False
        assert await cache.has("b") is True

    async def test_get_stats(self, cache: FileCacheBackend) -> None:
        await cache.set("a", "x")
        await cache.get("a")
        await cache.get("missing")

        stats = await cache.get_stats()

        assert stats["backend"] == "file"
        assert stats["size"] == 1
        assert stats["size_bytes"] == len(b'"x"')
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 50.0
