"""PostgreSQL engine and sessions for the Zipway URL shortener.

Session Ownership
=================
::
    ┌──────────────────┐      ┌──────────────────────────┐
    │ /health          │      │ Postgres*Repository call │
    │ get_db()         │      │ async with async_session │
    │ (request scoped) │      │ (one per call)           │
    └────────┬─────────┘      └────────────┬─────────────┘
             └──────────┬──────────────────┘
                        ▼
          engine pool (DB_POOL_SIZE + DB_MAX_OVERFLOW,
                       recycled after DB_POOL_RECYCLE_SECONDS)

Key Behaviours
===============
- Repositories never borrow the request session, so detached click and cache
  writes keep working after the response has been sent.
- init_db() creates only the urls table. The session table belongs to the
  identity provider and is only read.
- Connections are pinged before checkout to survive database restarts.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from zipway.config import get_settings

__all__ = ["Base", "async_session", "engine", "get_db", "init_db", "close_db"]

settings = get_settings()

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=(settings.LOG_LEVEL.upper() == "DEBUG"),
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_recycle=settings.DB_POOL_RECYCLE_SECONDS,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


async def init_db() -> None:
    # Imported here so the model classes are registered on Base.metadata.
    from zipway.models import Link

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, tables=[Link.__table__])


async def close_db() -> None:
    await engine.dispose()
