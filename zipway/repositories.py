"""PostgreSQL and Redis adapters for the storage ports.

Flow Diagram — Link Save
========================
::
    ┌─────────────┐
    │ save(link)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ INSERT urls │
    │ + refresh   │
    └──────┬──────┘
    IntegrityError?
    ┌─────┴──────────────┐
    │ 23505              │ other
    ▼                    ▼
┌──────────────┐  ┌──────────────┐
│ ShortID      │  │ Internal     │
│ ConflictError│  │ Error        │
└──────────────┘  └──────────────┘

Key Behaviours
===============
- Every repository call opens its own pooled AsyncSession from the shared
  session factory, so calls from detached background tasks are safe after
  the originating request has finished.
- Unique violations are recognised by SQLSTATE 23505, with a message match
  as fallback for drivers that do not expose the code.
- Redis errors are wrapped in CacheError; a missing key is a plain None.

Classes:
    PostgresLinkRepository:  LinkRepository over the urls table.
    PostgresSessionRepository:  SessionRepository over the session table.
    RedisCacheRepository:  CacheRepository over redis.asyncio clients.
"""

import datetime

import redis.asyncio as redis
from redis.exceptions import RedisError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from zipway.exceptions import CacheError, InternalError, LinkNotFoundError, ShortIDConflictError
from zipway.models import Link, UserSession
from zipway.ports import CacheRepository, LinkRepository, SessionRepository

__all__ = [
    "PostgresLinkRepository",
    "PostgresSessionRepository",
    "RedisCacheRepository",
    "is_unique_violation",
]

UNIQUE_VIOLATION_SQLSTATE = "23505"


def is_unique_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is not None:
        return code == UNIQUE_VIOLATION_SQLSTATE
    message = str(orig).lower()
    return "duplicate key value violates unique constraint" in message or "unique constraint failed" in message


class PostgresLinkRepository(LinkRepository):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def save(self, link: Link) -> Link:
        async with self._session_factory() as session:
            try:
                session.add(link)
                await session.commit()
                await session.refresh(link)
                return link
            except IntegrityError as exc:
                await session.rollback()
                if is_unique_violation(exc):
                    raise ShortIDConflictError(link.short_id) from exc
                raise InternalError(f"failed to save link '{link.short_id}': {exc.orig}") from exc
            except SQLAlchemyError as exc:
                await session.rollback()
                raise InternalError(f"failed to save link '{link.short_id}': {exc}") from exc

    async def get_by_short_id(self, short_id: str) -> Link:
        async with self._session_factory() as session:
            try:
                result = await session.execute(select(Link).where(Link.short_id == short_id).limit(1))
            except SQLAlchemyError as exc:
                raise InternalError(f"failed to load link '{short_id}': {exc}") from exc
            link = result.scalar_one_or_none()
        if link is None:
            raise LinkNotFoundError(f"link '{short_id}' not found")
        return link

    async def increment_clicks(self, short_id: str) -> None:
        async with self._session_factory() as session:
            try:
                await session.execute(update(Link).where(Link.short_id == short_id).values(clicks=Link.clicks + 1))
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise InternalError(f"failed to increment clicks for '{short_id}': {exc}") from exc


class PostgresSessionRepository(SessionRepository):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_active_session(self, session_id: str, now: datetime.datetime) -> UserSession | None:
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    select(UserSession)
                    .where(UserSession.token == session_id, UserSession.expires_at > now)
                    .limit(1)
                )
            except SQLAlchemyError as exc:
                raise InternalError(f"failed to load session: {exc}") from exc
            return result.scalar_one_or_none()


class RedisCacheRepository(CacheRepository):
    """Cache port over a primary (write) and optionally a replica (read) client."""

    def __init__(self, cache_writer: redis.Redis, cache_reader: redis.Redis | None = None):
        self._cache_write = cache_writer
        self._cache_read = cache_reader or cache_writer

    async def get(self, key: str) -> str | None:
        try:
            return await self._cache_read.get(key)
        except RedisError as exc:
            raise CacheError(f"GET {key} failed: {exc}") from exc

    async def set(self, key: str, value: str, ttl_seconds: int | None) -> None:
        try:
            if ttl_seconds:
                await self._cache_write.set(key, value, ex=ttl_seconds)
            else:
                await self._cache_write.set(key, value)
        except RedisError as exc:
            raise CacheError(f"SET {key} failed: {exc}") from exc

    async def increment_counter(self, key: str) -> int:
        try:
            return await self._cache_write.incr(key)
        except RedisError as exc:
            raise CacheError(f"INCR {key} failed: {exc}") from exc
