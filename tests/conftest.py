"""
Stowcache — Test Configuration and Shared Fixtures

Provides pytest configuration and shared fixtures for unit and integration tests.
"""

import os
from collections.abc import AsyncGenerator, Awaitable, Callable, Generator
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "DEBUG"


@pytest.fixture
def test_redis_url() -> str:
    """Get Redis URL for testing (database 15 for isolation)."""
    return os.environ.get("TEST_REDIS_URL", "redis://localhost:6379/15")


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    """Scratch directory for file cache tests."""
    return tmp_path / "cache"


@pytest.fixture
async def sqlite_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Async SQLite engine backed by a scratch database file."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}")
    yield engine
    await engine.dispose()


# Every operation that takes caller-supplied keys, driven with one bad key
KEY_OPERATIONS: dict[str, Callable[[Any, str], Awaitable[Any]]] = {
    "get": lambda cache, key: cache.get(key),
    "set": lambda cache, key: cache.set(key, "value"),
    "delete": lambda cache, key: cache.delete(key),
    "has": lambda cache, key: cache.has(key),
    "get_many": lambda cache, key: cache.get_many(["ok", key]),
    "set_many": lambda cache, key: cache.set_many({"ok": 1, key: 2}),
    "delete_many": lambda cache, key: cache.delete_many(["ok", key]),
}


@pytest.fixture(params=list(KEY_OPERATIONS))
def key_operation(request: pytest.FixtureRequest) -> Callable[[Any, str], Awaitable[Any]]:
    """Each key-accepting cache operation in turn."""
    return KEY_OPERATIONS[request.param]


@pytest.fixture
def mock_env_memory(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set environment variables for memory cache backend."""
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.delenv("CACHE_DATABASE_URL", raising=False)
    monkeypatch.delenv("MEMCACHED_HOST", raising=False)
    monkeypatch.setenv("CACHE_BACKEND", "memory")
    monkeypatch.setenv("CACHE_MAX_SIZE", "100")
    monkeypatch.setenv("CACHE_TTL_SECONDS", "3600")
    monkeypatch.setenv("CACHE_NAMESPACE", "test")


@pytest.fixture
def mock_env_file(monkeypatch: pytest.MonkeyPatch, cache_dir: Path) -> None:
    """Set environment variables for file cache backend."""
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.delenv("CACHE_DATABASE_URL", raising=False)
    monkeypatch.delenv("MEMCACHED_HOST", raising=False)
    monkeypatch.setenv("CACHE_BACKEND", "file")
    monkeypatch.setenv("CACHE_DIRECTORY", str(cache_dir))
    monkeypatch.setenv("CACHE_TTL_SECONDS", "none")


@pytest.fixture
def sample_cache_data() -> dict[str, Any]:
    """Sample JSON-compatible data for cache testing."""
    return {
        "simple_string": "hello",
        "simple_int": 42,
        "simple_float": 3.14,
        "simple_bool": True,
        "simple_none": None,
        "empty_list": [],
        "complex_dict": {
            "nested": {
                "key": "value",
                "number": 123,
                "list": [1, 2, 3],
            }
        },
        "complex_list": [
            {"id": 1, "name": "Alice"},
            {"id": 2, "name": "Bob"},
        ],
    }


@pytest.fixture(autouse=True)
def reset_cache_factory() -> Generator[None, None, None]:
    """Reset cache factory and loaded config after each test to prevent state leakage."""
    yield
    from stowcache.cache.factory import reset_cache_factory
    from stowcache.config import loader

    reset_cache_factory()
    loader._config_instance = None
