"""Pooled Redis clients for the link cache, click stats and session cache.

Topology
========
::
    writer ──▶ REDIS_URL            SET url<slug>, INCR stats:<slug>,
                                    SET session:<sid>, PING
    reader ──▶ REDIS_REPLICA_URL    GET url<slug>, GET session:<sid>,
               (or REDIS_URL)       GET <sid>

Key Behaviours
===============
- One client per role, created on first use and shared for the process.
- Every client caps its pool at REDIS_MAX_CONNECTIONS and bounds socket reads
  and connects, so a stalled Redis fails fast into the cache-miss path.
- Responses are decoded to str.
- close_redis() closes both roles and forgets them, so a later call builds
  fresh clients.
"""

import redis.asyncio as redis

from zipway.config import get_settings

__all__ = ["close_redis", "create_redis_client", "get_redis", "get_redis_read"]

settings = get_settings()

_clients: dict[str, redis.Redis] = {}


def create_redis_client(url: str) -> redis.Redis:
    return redis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        socket_connect_timeout=settings.REDIS_CONNECT_TIMEOUT_SECONDS,
        health_check_interval=30,
    )


def _client(role: str, url: str) -> redis.Redis:
    if role not in _clients:
        _clients[role] = create_redis_client(url)
    return _clients[role]


async def get_redis() -> redis.Redis:
    """Client for the primary; all writes go here."""
    return _client("writer", settings.REDIS_URL)


async def get_redis_read() -> redis.Redis:
    """Client for lookups, on the replica when one is configured."""
    return _client("reader", settings.REDIS_REPLICA_URL or settings.REDIS_URL)


async def close_redis() -> None:
    while _clients:
        _, client = _clients.popitem()
        await client.aclose()
