"""Application settings and configuration management.

This module provides Pydantic-based settings management that loads
configuration from environment variables or a .env file. Settings include
the Redis connection used by both the metadata store and the geo index,
the key layout inside that database, batch chunking, and the defaults
applied to nearby searches.

Example:
    Settings can be accessed via the cached get_settings() function:
        >>> from geolookup.core.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.redis_url)

    Environment variables can override defaults:
        >>> REDIS_HOST=redis.internal
        >>> REDIS_PORT=6380
        >>> BATCH_CHUNK_SIZE=1000
"""

import functools
import logging

import pydantic_settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class Settings(pydantic_settings.BaseSettings):
    """Runtime configuration pulled from environment variables or defaults.

    All settings can be overridden via environment variables or .env file.

    Attributes:
        redis_host: Host of the Redis engine backing both stores.
        redis_port: Port of the Redis engine.
        redis_db: Logical database number.
        redis_password: Optional password for AUTH.
        redis_socket_timeout: Seconds before a command is abandoned.
        meta_key_prefix: Prefix for metadata document keys.
        geo_key: Sorted set holding the geo index.
        batch_chunk_size: Maximum number of records per pipelined command.
        default_distance: Search radius in metres when none is given.
        default_count: Result cap when none is given.
        allow_origins: List of allowed CORS origins (["*"] allows all).
        log_level: Root log level name.
    """

    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: str | None = None
    redis_socket_timeout: float = 5.0
    meta_key_prefix: str = "meta_"
    geo_key: str = "geo:locations"
    batch_chunk_size: int = 500
    default_distance: int = 50000
    default_count: int = 10
    allow_origins: list[str] = ["*"]
    log_level: str = "INFO"

    model_config = pydantic_settings.SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def redis_url(self) -> str:
        """Redis connection URL built from host, port and database."""
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"


@functools.lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Settings are loaded from environment variables or .env file and cached
    for the lifetime of the application.

    Returns:
        Settings instance with all configuration values populated.
    """
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    """Attach a single stream handler to the root logger.

    Repeated calls only adjust the level, so the app factory and the CLI
    can both call it safely.
    """
    root = logging.getLogger()
    root.setLevel(level.upper())
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
