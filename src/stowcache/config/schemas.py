"""
Stowcache — Configuration Schemas

Defines typed configuration models using Pydantic for validation and type safety.
All configuration is read from environment variables and validated up front.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Environment(str, Enum):
    """Runtime environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class CacheBackend(str, Enum):
    """Supported cache backends."""

    MEMORY = "memory"
    FILE = "file"
    REDIS = "redis"  # Requires redis
    MEMCACHED = "memcached"  # Requires aiomcache
    TABLE = "table"  # Requires sqlalchemy + an async driver


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class CacheConfig(BaseModel):
    """Cache configuration."""

    backend: CacheBackend = Field(default=CacheBackend.MEMORY, description="Cache backend to use")
    ttl_seconds: int | None = Field(default=3600, description="Default TTL in seconds (None = no expiry)")
    namespace: str = Field(
        default="stowcache",
        pattern=r"^[A-Za-z0-9_.\-]+$",
        description="Cache key namespace/prefix",
    )

    # Memory-specific settings
    max_size: int = Field(default=1000, ge=1, description="Max cache entries (memory backend)")

    # File-specific settings
    directory: str = Field(default="./data/cache", description="Cache directory (file backend)")

    # Redis-specific settings (only used when backend=redis)
    redis_url: str | None = Field(default=None, description="Redis connection URL")
    redis_max_connections: int = Field(default=10, ge=1, description="Redis connection pool size")
    redis_socket_timeout: float = Field(default=5, gt=0, description="Redis socket timeout in seconds")

    # Memcached-specific settings (only used when backend=memcached)
    memcached_host: str = Field(default="localhost", min_length=1, description="Memcached host")
    memcached_port: int = Field(default=11211, ge=1, le=65535, description="Memcached port")
    memcached_pool_size: int = Field(default=2, ge=1, description="Memcached connection pool size")

    # Table-specific settings (only used when backend=table)
    database_url: str | None = Field(default=None, description="SQLAlchemy async database URL")
    table_name: str = Field(
        default="cache_entries",
        pattern=r"^[A-Za-z_][A-Za-z0-9_]{0,62}$",
        description="Cache table name",
    )

    @model_validator(mode="after")
    def validate_backend_settings(self) -> "CacheConfig":
        """Ensure the selected backend has its connection settings."""
        if self.backend == CacheBackend.REDIS and not self.redis_url:
            raise ValueError("redis_url is required when cache backend is 'redis'")
        if self.backend == CacheBackend.TABLE and not self.database_url:
            raise ValueError("database_url is required when cache backend is 'table'")
        return self


class StowcacheConfig(BaseModel):
    """Root configuration for Stowcache."""

    environment: Environment = Field(default=Environment.DEVELOPMENT, description="Runtime environment")
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")

    cache: CacheConfig = Field(default_factory=CacheConfig)

    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)
