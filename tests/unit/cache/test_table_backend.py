"""
Stowcache — Table Cache Backend Tests

Runs against SQLite through aiosqlite; the same statements cover
PostgreSQL and MySQL through their dialect-native upserts.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from sqlalchemy import func, inspect, select
from sqlalchemy.ext.asyncio import AsyncEngine

from stowcache.cache.backends.table import TableCacheBackend, build_cache_table
from stowcache.errors import ConfigurationError, InvalidKeyError, SetupError


async def count_rows(engine: AsyncEngine, backend: TableCacheBackend) -> int:
    async with engine.connect() as conn:
        return (await conn.execute(select(func.count()).select_from(backend.table))).scalar_one()


class TestTableCacheBackend:
    """Test suite for TableCacheBackend."""

    @pytest.fixture
    async def cache(self, sqlite_engine: AsyncEngine) -> AsyncGenerator[TableCacheBackend, None]:
        cache = TableCacheBackend(sqlite_engine, table_name="cache_entries")
        await cache.initialize()
        yield cache
        await cache.close()

    def test_engine_required(self) -> None:
        with pytest.raises(SetupError):
            TableCacheBackend(None)  # type: ignore[arg-type]

    @pytest.mark.parametrize("table_name", ["", "1table", "drop table x", "cache;--", "a" * 64])
    def test_invalid_table_name(self, table_name: str) -> None:
        with pytest.raises(ConfigurationError):
            build_cache_table(table_name)

    def test_table_schema(self) -> None:
        table = build_cache_table("my_cache")

        assert [c.name for c in table.columns] == ["cache_key", "cache_value", "expiration"]
        assert table.c.cache_key.primary_key
        assert table.c.cache_key.type.length == 255
        assert table.c.expiration.nullable

    async def test_initialize_creates_table(self, cache: TableCacheBackend, sqlite_engine: AsyncEngine) -> None:
        async with sqlite_engine.connect() as conn:
            names = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())

        assert "cache_entries" in names

        # Idempotent
        await cache.initialize()

    async def test_set_get_delete_scenario(self, cache: TableCacheBackend) -> None:
        assert await cache.set("a", "x", 3600) is True
        assert await cache.get("a") == "x"

        assert await cache.delete("a") is True
        assert await cache.get("a", "d") == "d"

    async def test_set_is_upsert(self, cache: TableCacheBackend, sqlite_engine: AsyncEngine) -> None:
        await cache.set("a", "first", 60)
        await cache.set("a", {"second": True})

        assert await cache.get("a") == {"second": True}
        assert await count_rows(sqlite_engine, cache) == 1

    async def test_expiration_column(self, cache: TableCacheBackend, sqlite_engine: AsyncEngine) -> None:
        await cache.set("forever", 1)
        await cache.set("hour", 1, ttl=timedelta(hours=1))

        async with sqlite_engine.connect() as conn:
            rows = dict((await conn.execute(select(cache.table.c.cache_key, cache.table.c.expiration))).all())

        assert rows["forever"] is None
        expected = datetime.now(UTC).replace(tzinfo=None) + timedelta(hours=1)
        assert abs((rows["hour"] - expected).total_seconds()) < 5

    async def test_expired_row_is_a_miss_and_purged(
        self, cache: TableCacheBackend, sqlite_engine: AsyncEngine
    ) -> None:
        assert await cache.set("a", "x", -1) is True
        assert await count_rows(sqlite_engine, cache) == 1

        assert await cache.get("a", "d") == "d"
        assert await count_rows(sqlite_engine, cache) == 0

    async def test_has_respects_expiry(self, cache: TableCacheBackend, sqlite_engine: AsyncEngine) -> None:
        await cache.set("live", 1, 60)
        await cache.set("dead", 1, datetime.now(UTC) - timedelta(minutes=1))

        assert await cache.has("live") is True
        assert await cache.has("dead") is False
        assert await cache.has("never") is False
        assert await count_rows(sqlite_engine, cache) == 1

    async def test_default_ttl(self, sqlite_engine: AsyncEngine) -> None:
        cache = TableCacheBackend(sqlite_engine, table_name="expiring", default_ttl=-1)
        await cache.initialize()

        await cache.set("a", "x")

        assert await cache.get("a") is None

    async def test_delete_missing_key_succeeds(self, cache: TableCacheBackend) -> None:
        assert await cache.delete("never-written") is True

    async def test_clear_is_scoped_to_table(self, cache: TableCacheBackend, sqlite_engine: AsyncEngine) -> None:
        other = TableCacheBackend(sqlite_engine, table_name="other_entries")
        await other.initialize()
        await cache.set("a", 1)
        await other.set("a", 2)

        assert await cache.clear() is True

        assert await cache.get("a") is None
        assert await other.get("a") == 2

    async def test_unserializable_value_rejected(self, cache: TableCacheBackend) -> None:
        assert await cache.set("a", object()) is False
        assert await cache.has("a") is False

    @pytest.mark.parametrize("bad_key", ["", "bad key", "not/ok", "x" * 256])
    async def test_invalid_keys_raise(
        self,
        cache: TableCacheBackend,
        sqlite_engine: AsyncEngine,
        key_operation: Callable[..., Awaitable[Any]],
        bad_key: str,
    ) -> None:
        with pytest.raises(InvalidKeyError):
            await key_operation(cache, bad_key)

        assert await count_rows(sqlite_engine, cache) == 0

    async def test_get_many(self, cache: TableCacheBackend, sqlite_engine: AsyncEngine) -> None:
        await cache.set("a", 1)
        await cache.set("b", None)
        await cache.set("stale", 3, -5)

        result = await cache.get_many(["a", "b", "stale", "missing"], default="d")

        assert result == {"a": 1, "b": None, "stale": "d", "missing": "d"}
        assert await count_rows(sqlite_engine, cache) == 2

    async def test_set_many_and_delete_many(self, cache: TableCacheBackend) -> None:
        assert await cache.set("a", "old") is True
        assert await cache.set_many({"a": 1, "b": 2, "c": 3}, ttl=60) is True

        assert await cache.get_many(["a", "b", "c"]) == {"a": 1, "b": 2, "c": 3}

        assert await cache.delete_many(["a", "b", "zzz"]) is True
        assert await cache.get_many(["a", "b", "c"]) == {"a": None, "b": None, "c": 3}

    async def test_set_many_partial_failure(self, cache: TableCacheBackend) -> None:
        assert await cache.set_many({"good": 1, "bad": {1, 2}}) is False

        assert await cache.get("good") == 1
        assert await cache.has("bad") is False

    async def test_missing_table_reads_as_miss(self, sqlite_engine: AsyncEngine) -> None:
        cache = TableCacheBackend(sqlite_engine, table_name="not_created")

        assert await cache.get("a", "d") == "d"
        assert await cache.set("a", 1) is False

    async def test_get_stats(self, cache: TableCacheBackend) -> None:
        await cache.set("a", 1)
        await cache.set("b", 1, -1)
        await cache.get("a")

        stats = await cache.get_stats()

        assert stats["backend"] == "table"
        assert stats["dialect"] == "sqlite"
        assert stats["size"] == 2
        assert stats["expired"] == 1
        assert stats["hits"] == 1
