"""
Stowcache — Configuration Loader

Loads and validates configuration from environment variables and .env files.
Provides a singleton configuration instance for the runtime.
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

from ..errors import ConfigurationError
from .schemas import StowcacheConfig

logger = logging.getLogger(__name__)

_config_instance: StowcacheConfig | None = None

_NO_EXPIRY_VALUES = {"", "none", "null", "never"}


def _ttl_from_env(raw: str | None, default: int | None) -> int | None:
    """Parse CACHE_TTL_SECONDS; empty/none/never means no expiry."""
    if raw is None:
        return default
    if raw.strip().lower() in _NO_EXPIRY_VALUES:
        return None
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"CACHE_TTL_SECONDS must be an integer or 'none', got {raw!r}",
            details={"env": "CACHE_TTL_SECONDS", "value": raw},
        ) from e


def load_config(
    env_file: str | None = None,
    reload: bool = False,
) -> StowcacheConfig:
    """
    Load configuration from environment variables and .env file.

    Args:
        env_file: Path to .env file (default: .env in current directory)
        reload: Force reload even if config already loaded

    Returns:
        Validated StowcacheConfig instance

    Raises:
        ConfigurationError: If configuration is invalid
    """
    global _config_instance

    if _config_instance is not None and not reload:
        return _config_instance

    env_path = Path(env_file) if env_file else Path.cwd() / ".env"

    if env_path.exists():
        logger.info(f"Loading environment from {env_path}")
        try:
            load_dotenv(env_path, override=True)
        except Exception as e:
            logger.error(
                f"Failed to load .env file from {env_path}: {e}",
                extra={"path": str(env_path), "error": str(e)},
                exc_info=True,
            )
            raise ConfigurationError(
                f"Failed to load environment file: {e}",
                details={"path": str(env_path), "error": str(e)},
            ) from e
    else:
        logger.debug("No .env file found, using environment variables only")

    # Auto-detect cache backend: redis if REDIS_URL is set, memcached if
    # MEMCACHED_HOST is set, table if CACHE_DATABASE_URL is set, else memory
    redis_url = os.getenv("REDIS_URL")
    memcached_host = os.getenv("MEMCACHED_HOST")
    database_url = os.getenv("CACHE_DATABASE_URL")
    if redis_url:
        detected_backend = "redis"
    elif memcached_host:
        detected_backend = "memcached"
    elif database_url:
        detected_backend = "table"
    else:
        detected_backend = "memory"

    try:
        config_dict = {
            "environment": os.getenv("ENVIRONMENT", "development"),
            "log_level": os.getenv("LOG_LEVEL", "INFO").upper(),
            "cache": {
                "backend": os.getenv("CACHE_BACKEND", detected_backend),
                "ttl_seconds": _ttl_from_env(os.getenv("CACHE_TTL_SECONDS"), 3600),
                "namespace": os.getenv("CACHE_NAMESPACE", "stowcache"),
                "max_size": int(os.getenv("CACHE_MAX_SIZE", "1000")),
                "directory": os.getenv("CACHE_DIRECTORY", "./data/cache"),
                "redis_url": redis_url,
                "redis_max_connections": int(os.getenv("REDIS_MAX_CONNECTIONS", "10")),
                "redis_socket_timeout": float(os.getenv("REDIS_SOCKET_TIMEOUT", "5")),
                "memcached_host": memcached_host or "localhost",
                "memcached_port": int(os.getenv("MEMCACHED_PORT", "11211")),
                "memcached_pool_size": int(os.getenv("MEMCACHED_POOL_SIZE", "2")),
                "database_url": database_url,
                "table_name": os.getenv("CACHE_TABLE_NAME", "cache_entries"),
            },
        }
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid numeric cache setting: {e}",
            details={"error": str(e)},
        ) from e

    try:
        _config_instance = StowcacheConfig(**config_dict)  # type: ignore[arg-type]
        logger.info(
            f"Configuration loaded successfully (environment: {_config_instance.environment})",
            extra={"environment": _config_instance.environment, "cache_backend": str(_config_instance.cache.backend)},
        )
        return _config_instance
    except ValidationError as e:
        logger.error(
            f"Configuration validation failed: {e}",
            extra={"validation_errors": e.errors(), "config_dict_keys": list(config_dict.keys())},
        )
        raise ConfigurationError(
            "Configuration validation failed. Check your environment variables and configuration.",
            details={"validation_errors": e.errors()},
        ) from e


def get_config() -> StowcacheConfig:
    """
    Get the current configuration instance.

    Loads the configuration on first access.
    """
    if _config_instance is None:
        return load_config()

    return _config_instance


def reload_config(env_file: str | None = None) -> StowcacheConfig:
    """
    Force reload configuration.

    Args:
        env_file: Optional path to .env file

    Returns:
        Reloaded StowcacheConfig instance
    """
    return load_config(env_file=env_file, reload=True)
