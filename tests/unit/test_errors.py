"""
Stowcache — Error Types and Logging Tests
"""

import json
import logging
import sys

import pytest

from stowcache.errors import (
    CacheError,
    ConfigurationError,
    DependencyError,
    ErrorCode,
    InvalidKeyError,
    SerializationError,
    SetupError,
    StowcacheError,
    extract_error_code,
)
from stowcache.log import JSONFormatter, configure_logging


class TestErrors:
    """Test suite for the exception hierarchy."""

    def test_invalid_key_error(self) -> None:
        error = InvalidKeyError("bad key", "contains a space")

        assert isinstance(error, CacheError)
        assert isinstance(error, ValueError)
        assert error.key == "bad key"
        assert "bad key" in str(error)
        assert error.to_dict() == {
            "error": "InvalidKeyError",
            "error_code": "INVALID_KEY",
            "message": "Invalid cache key 'bad key': contains a space",
            "details": {"key": "bad key", "reason": "contains a space"},
        }

    def test_setup_error(self) -> None:
        error = SetupError("file", "directory not writable", details={"directory": "/ro"})

        assert error.backend == "file"
        assert error.code == ErrorCode.SETUP_FAILED
        assert error.details == {"backend": "file", "directory": "/ro"}

    def test_dependency_error_message(self) -> None:
        error = DependencyError("redis", feature="the Redis cache backend", install_hint="pip install redis")

        assert str(error) == (
            "Required dependency 'redis' is missing for the Redis cache backend. Install with: pip install redis"
        )
        assert error.details["package"] == "redis"

    @pytest.mark.parametrize(
        ("error", "code"),
        [
            (ConfigurationError("x"), ErrorCode.CONFIGURATION_INVALID),
            (SerializationError("x"), ErrorCode.SERIALIZATION_FAILED),
            (StowcacheError("x"), ErrorCode.INTERNAL_ERROR),
            (TypeError("Unsupported TTL type: str"), ErrorCode.INVALID_TTL),
            (RuntimeError("boom"), ErrorCode.INTERNAL_ERROR),
        ],
    )
    def test_extract_error_code(self, error: Exception, code: ErrorCode) -> None:
        assert extract_error_code(error) == code


class TestLogging:
    """Test suite for structured logging."""

    def test_json_formatter_includes_extra_fields(self) -> None:
        logger = logging.getLogger("stowcache.test")
        record = logger.makeRecord(
            logger.name,
            logging.WARNING,
            __file__,
            10,
            "Failed to set key '%s'",
            ("k1",),
            None,
            extra={"key": "k1", "backend": "memory"},
        )

        data = json.loads(JSONFormatter().format(record))

        assert data["level"] == "WARNING"
        assert data["logger"] == "stowcache.test"
        assert data["message"] == "Failed to set key 'k1'"
        assert data["key"] == "k1"
        assert data["backend"] == "memory"
        assert data["timestamp"].endswith("Z")
        assert "args" not in data

    def test_json_formatter_includes_exception(self) -> None:
        try:
            raise RuntimeError("disk full")
        except RuntimeError:
            record = logging.getLogger("stowcache.test").makeRecord(
                "stowcache.test", logging.ERROR, __file__, 1, "write failed", (), sys.exc_info()
            )

        data = json.loads(JSONFormatter().format(record))

        assert "RuntimeError: disk full" in data["exception"]

    def test_configure_logging(self) -> None:
        logger = configure_logging("debug")
        try:
            assert logger.name == "stowcache"
            assert logger.level == logging.DEBUG
            assert len(logger.handlers) == 1
            assert isinstance(logger.handlers[0].formatter, JSONFormatter)

            configure_logging(logging.WARNING, json_format=False)
            assert len(logger.handlers) == 1
            assert not isinstance(logger.handlers[0].formatter, JSONFormatter)
        finally:
            logger.handlers.clear()
            logger.setLevel(logging.NOTSET)
