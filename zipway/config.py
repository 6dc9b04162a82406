"""Configuration for the Zipway URL shortener.

Every tunable is read from the environment (or a local .env file) into one
Settings object, built once and shared by the engine, the Redis clients and
the request layer.

Settings Map
============
::
    Settings
    ├─ service     APP_NAME, APP_ENV, APP_VERSION, LOG_LEVEL
    ├─ public URLs BASE_URL, SHORT_URL_DOMAIN ─────▶ short_url_base
    ├─ CORS        ALLOWED_ORIGIN ─────────────────▶ allowed_origins
    ├─ PostgreSQL  DATABASE_URL, DB_POOL_SIZE, DB_MAX_OVERFLOW,
    │              DB_POOL_RECYCLE_SECONDS ─────────▶ zipway.database.engine
    ├─ Redis       REDIS_URL, REDIS_REPLICA_URL, REDIS_MAX_CONNECTIONS,
    │              REDIS_*_TIMEOUT_SECONDS ─────────▶ zipway.redis clients
    └─ deadlines   REQUEST_TIMEOUT_SECONDS ─────────▶ routes, auth dependency
                   BACKGROUND_DRAIN_TIMEOUT_SECONDS ▶ shutdown drain

Usage::

    from zipway.config import get_settings

    settings = get_settings()
    short_url = f"{settings.short_url_base}/{link.short_id}"

Key Behaviours
===============
- get_settings() is cached; the environment is read once per process.
- SHORT_URL_DOMAIN falls back to BASE_URL when unset.
- ALLOWED_ORIGIN is a comma-separated list; empty opens CORS to every origin.
- Cache TTLs are not settings; they live beside the code that uses them.
"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "Zipway URL Shortener"
    APP_ENV: str = "development"
    APP_VERSION: str = "1.0.0"
    BASE_URL: str = "http://localhost:8080"
    SHORT_URL_DOMAIN: str = ""
    ALLOWED_ORIGIN: str = ""
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://zipway:zipway@db:5432/zipway"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 40
    DB_POOL_RECYCLE_SECONDS: int = 600

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"
    REDIS_REPLICA_URL: str = ""
    REDIS_MAX_CONNECTIONS: int = 50
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 1.0
    REDIS_CONNECT_TIMEOUT_SECONDS: float = 2.0

    # Request deadline applied around core calls
    REQUEST_TIMEOUT_SECONDS: float = 5.0

    # How long shutdown waits for detached cache/click writes
    BACKGROUND_DRAIN_TIMEOUT_SECONDS: float = 5.0

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def short_url_base(self) -> str:
        return (self.SHORT_URL_DOMAIN or self.BASE_URL).rstrip("/")

    @property
    def allowed_origins(self) -> list[str]:
        if not self.ALLOWED_ORIGIN:
            return ["*"]
        return [origin.strip() for origin in self.ALLOWED_ORIGIN.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
