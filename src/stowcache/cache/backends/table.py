"""
Stowcache — Table Cache Backend

Relational cache table accessed through an SQLAlchemy AsyncEngine.

Schema:
- cache_key: VARCHAR(255) primary key
- cache_value: serialized payload (LargeBinary)
- expiration: absolute expiry (naive UTC DATETIME, NULL = never)

Reads filter on ``expiration > now``; writes are one native upsert statement
(SQLite/PostgreSQL ON CONFLICT, MySQL/MariaDB ON DUPLICATE KEY). The engine
is always passed in by the caller.
"""

import asyncio
import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    LargeBinary,
    MetaData,
    String,
    Table,
    and_,
    delete,
    func,
    insert,
    or_,
    select,
)
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from ...errors import ConfigurationError, SerializationError, SetupError
from ..interface import CacheInterface
from ..serialization import Serializer, default_serializer
from ..ttl import TTLSpec, utcnow

logger = logging.getLogger(__name__)

KEY_COLUMN_LENGTH = 255

_TABLE_NAME_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]{0,62}")


def build_cache_table(table_name: str, metadata: MetaData | None = None) -> Table:
    """Describe the cache table; the schema is identical for every dialect."""
    if _TABLE_NAME_PATTERN.fullmatch(table_name) is None:
        raise ConfigurationError(
            f"Invalid cache table name: {table_name!r}",
            details={"table_name": table_name},
        )

    return Table(
        table_name,
        metadata if metadata is not None else MetaData(),
        Column("cache_key", String(KEY_COLUMN_LENGTH), primary_key=True),
        Column("cache_value", LargeBinary, nullable=False),
        Column("expiration", DateTime(timezone=False), nullable=True),
        Index(f"ix_{table_name}_expiration", "expiration"),
    )


def _to_db_time(moment: datetime | None) -> datetime | None:
    """Store instants as naive UTC so comparisons work on every dialect."""
    if moment is None:
        return None
    return moment.astimezone(UTC).replace(tzinfo=None)


class TableCacheBackend(CacheInterface):
    """
    Relational table cache backend.

    Features:
    - Explicit expiration column, filtered on every read
    - Single-statement upsert per write (no read-then-write race)
    - Expired rows purged when get()/has() finds them
    - clear() empties only this backend's table
    """

    backend_name = "table"
    max_key_length = KEY_COLUMN_LENGTH

    def __init__(
        self,
        engine: AsyncEngine,
        table_name: str = "cache_entries",
        default_ttl: TTLSpec = None,
        serializer: Serializer | None = None,
    ) -> None:
        """
        Initialize table cache backend.

        Args:
            engine: SQLAlchemy async engine owning the cache table
            table_name: Name of the cache table
            default_ttl: TTL used when set() gets ttl=None (None = no expiry)
            serializer: Payload serializer (JSON by default)

        Raises:
            SetupError: If no engine is supplied
            ConfigurationError: If table_name is not a plain SQL identifier
        """
        if engine is None:
            raise SetupError(self.backend_name, "an AsyncEngine is required")

        self.engine = engine
        self.table_name = table_name
        self.table = build_cache_table(table_name)
        self.default_ttl = default_ttl
        self.serializer = serializer or default_serializer()

        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0

        self._initialized = False
        self._initialization_lock = asyncio.Lock()

    # ------------ Helpers ------------

    def _live(self, now: datetime) -> Any:
        expiration = self.table.c.expiration
        return or_(expiration.is_(None), expiration > _to_db_time(now))

    def _expired(self, now: datetime) -> Any:
        expiration = self.table.c.expiration
        return and_(expiration.is_not(None), expiration <= _to_db_time(now))

    def _upsert(self, rows: Sequence[dict[str, Any]]) -> Any | None:
        """Build a dialect-native upsert, or None if the dialect has none."""
        dialect = self.engine.dialect.name

        if dialect in ("sqlite", "postgresql"):
            module = sqlite if dialect == "sqlite" else postgresql
            stmt = module.insert(self.table).values(list(rows))
            return stmt.on_conflict_do_update(
                index_elements=[self.table.c.cache_key],
                set_={
                    "cache_value": stmt.excluded.cache_value,
                    "expiration": stmt.excluded.expiration,
                },
            )

        if dialect in ("mysql", "mariadb"):
            stmt = mysql.insert(self.table).values(list(rows))
            return stmt.on_duplicate_key_update(
                cache_value=stmt.inserted.cache_value,
                expiration=stmt.inserted.expiration,
            )

        return None

    async def _write_rows(self, conn: AsyncConnection, rows: Sequence[dict[str, Any]]) -> None:
        stmt = self._upsert(rows)
        if stmt is not None:
            await conn.execute(stmt)
            return

        # Generic dialect: replace inside the surrounding transaction
        keys = [row["cache_key"] for row in rows]
        await conn.execute(delete(self.table).where(self.table.c.cache_key.in_(keys)))
        await conn.execute(insert(self.table), list(rows))

    def _decode(self, key: str, payload: bytes, default: Any) -> Any:
        try:
            return self.serializer.loads(payload)
        except SerializationError as e:
            logger.warning(
                f"Failed to deserialize row for key '{key}': {e}",
                extra={"key": key, "table": self.table_name, "error": str(e)},
            )
            return default

    # ------------ Core Interface ------------

    async def initialize(self) -> None:
        """
        Create the cache table if it does not exist.

        Safe to call multiple times (idempotent).
        """
        async with self._initialization_lock:
            if self._initialized:
                return
            try:
                async with self.engine.begin() as conn:
                    await conn.run_sync(self.table.metadata.create_all, checkfirst=True)
            except (SQLAlchemyError, OSError) as e:
                raise SetupError(
                    self.backend_name,
                    f"cannot prepare cache table '{self.table_name}': {e}",
                    details={"table": self.table_name, "error": str(e)},
                ) from e
            self._initialized = True
            logger.info(f"Cache table '{self.table_name}' ready")

    async def get(self, key: str, default: Any = None) -> Any:
        """Retrieve a live value; purge the row if it has expired."""
        self._check_key(key)
        now = utcnow()
        c = self.table.c

        try:
            async with self.engine.begin() as conn:
                row = (
                    await conn.execute(select(c.cache_value).where(c.cache_key == key, self._live(now)))
                ).first()
                if row is None:
                    await conn.execute(delete(self.table).where(c.cache_key == key, self._expired(now)))
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to get key '{key}' from table '{self.table_name}': {e}",
                extra={"key": key, "table": self.table_name, "error": str(e)},
                exc_info=True,
            )
            self._misses += 1
            return default

        if row is None:
            self._misses += 1
            return default

        self._hits += 1
        return self._decode(key, row.cache_value, default)

    async def set(self, key: str, value: Any, ttl: TTLSpec = None) -> bool:
        """Upsert value and expiry in one statement."""
        self._check_key(key)

        try:
            payload = self.serializer.dumps(value)
        except SerializationError as e:
            logger.error(
                f"Failed to serialize value for key '{key}': {e}",
                extra={"key": key, "value_type": type(value).__name__, "error": str(e)},
            )
            return False

        row = {"cache_key": key, "cache_value": payload, "expiration": _to_db_time(self._expiry_for(ttl))}

        try:
            async with self.engine.begin() as conn:
                await self._write_rows(conn, [row])
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to set key '{key}' in table '{self.table_name}': {e}",
                extra={"key": key, "table": self.table_name, "ttl": str(ttl), "error": str(e)},
                exc_info=True,
            )
            return False

        self._sets += 1
        return True

    async def delete(self, key: str) -> bool:
        """Delete a row (missing keys are not an error)."""
        self._check_key(key)
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(delete(self.table).where(self.table.c.cache_key == key))
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to delete key '{key}' from table '{self.table_name}': {e}",
                extra={"key": key, "table": self.table_name, "error": str(e)},
                exc_info=True,
            )
            return False

        self._deletes += max(result.rowcount or 0, 0)
        return True

    async def has(self, key: str) -> bool:
        """Check for a live row; purge the row if it has expired."""
        self._check_key(key)
        now = utcnow()
        c = self.table.c

        try:
            async with self.engine.begin() as conn:
                found = (await conn.execute(select(c.cache_key).where(c.cache_key == key, self._live(now)))).first()
                if found is None:
                    await conn.execute(delete(self.table).where(c.cache_key == key, self._expired(now)))
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to check existence of key '{key}' in table '{self.table_name}': {e}",
                extra={"key": key, "table": self.table_name, "error": str(e)},
                exc_info=True,
            )
            return False

        return found is not None

    async def clear(self) -> bool:
        """Delete every row of the cache table."""
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(delete(self.table))
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to clear table '{self.table_name}': {e}",
                extra={"table": self.table_name, "error": str(e)},
                exc_info=True,
            )
            return False

        removed = max(result.rowcount or 0, 0)
        self._deletes += removed
        logger.info(f"Cleared {removed} rows from cache table '{self.table_name}'")
        return True

    async def get_stats(self) -> dict[str, Any]:
        """Return cache statistics and row counts."""
        total_requests = self._hits + self._misses
        stats: dict[str, Any] = {
            "backend": self.backend_name,
            "table": self.table_name,
            "dialect": self.engine.dialect.name,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round((self._hits / total_requests) * 100, 2) if total_requests else 0.0,
            "sets": self._sets,
            "deletes": self._deletes,
        }

        now = utcnow()
        try:
            async with self.engine.connect() as conn:
                stats["size"] = (await conn.execute(select(func.count()).select_from(self.table))).scalar_one()
                stats["expired"] = (
                    await conn.execute(select(func.count()).select_from(self.table).where(self._expired(now)))
                ).scalar_one()
        except SQLAlchemyError as e:
            logger.warning(f"Failed to count rows in '{self.table_name}': {e}", extra={"error": str(e)})

        return stats

    async def close(self) -> None:
        """
        Forget table state.

        The engine belongs to the caller and is not disposed here.
        """
        self._initialized = False
        logger.debug(f"Table cache backend closed for table '{self.table_name}'")

    # ------------ Batch operations ------------

    async def get_many(self, keys: Iterable[str], default: Any = None) -> dict[str, Any]:
        """Retrieve multiple live values with one SELECT ... IN; misses map to default."""
        checked = self._check_keys(keys)
        if not checked:
            return {}

        now = utcnow()
        c = self.table.c
        try:
            async with self.engine.begin() as conn:
                rows = (
                    await conn.execute(
                        select(c.cache_key, c.cache_value).where(c.cache_key.in_(checked), self._live(now))
                    )
                ).all()
                await conn.execute(delete(self.table).where(c.cache_key.in_(checked), self._expired(now)))
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to get multiple keys from table '{self.table_name}': {e}",
                extra={"key_count": len(checked), "table": self.table_name, "error": str(e)},
                exc_info=True,
            )
            self._misses += len(checked)
            return {k: default for k in checked}

        found = {row.cache_key: row.cache_value for row in rows}
        result: dict[str, Any] = {}
        for k in checked:
            if k in found:
                self._hits += 1
                result[k] = self._decode(k, found[k], default)
            else:
                self._misses += 1
                result[k] = default
        return result

    async def set_many(self, items: Mapping[str, Any], ttl: TTLSpec = None) -> bool:
        """
        Upsert multiple rows in one statement.

        A value that fails to serialize is skipped; the others are still written.
        """
        self._check_keys(items.keys())
        expiration = _to_db_time(self._expiry_for(ttl))
        success = True

        rows: list[dict[str, Any]] = []
        for key, value in items.items():
            try:
                rows.append({"cache_key": key, "cache_value": self.serializer.dumps(value), "expiration": expiration})
            except SerializationError as e:
                logger.error(
                    f"Failed to serialize value for key '{key}': {e}",
                    extra={"key": key, "value_type": type(value).__name__, "error": str(e)},
                )
                success = False

        if not rows:
            return success

        try:
            async with self.engine.begin() as conn:
                await self._write_rows(conn, rows)
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to set multiple keys in table '{self.table_name}': {e}",
                extra={"key_count": len(rows), "table": self.table_name, "ttl": str(ttl), "error": str(e)},
                exc_info=True,
            )
            return False

        self._sets += len(rows)
        return success

    async def delete_many(self, keys: Iterable[str]) -> bool:
        """Delete multiple rows with one DELETE ... IN."""
        checked = self._check_keys(keys)
        if not checked:
            return True

        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(delete(self.table).where(self.table.c.cache_key.in_(checked)))
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to delete multiple keys from table '{self.table_name}': {e}",
                extra={"key_count": len(checked), "table": self.table_name, "error": str(e)},
                exc_info=True,
            )
            return False

        self._deletes += max(result.rowcount or 0, 0)
        return True
