"""Shared pytest fixtures: in-memory storage ports, a controllable clock, and an API client."""

import asyncio
import datetime
import logging
from types import SimpleNamespace
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
import redis.asyncio as redis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from zipway.background import BackgroundTaskRunner
from zipway.config import get_settings
from zipway.database import get_db
from zipway.dependencies import get_service_manager
from zipway.enums import LinkStatus
from zipway.exceptions import CacheError, InternalError, LinkNotFoundError, ShortIDConflictError
from zipway.link_service import LinkService
from zipway.models import Link, UserSession
from zipway.ports import CacheRepository, LinkRepository, SessionRepository
from zipway.session_validator import SessionValidator

T0 = datetime.datetime(2026, 1, 1, 12, 0, 0, tzinfo=datetime.timezone.utc)


class FakeClock:
    def __init__(self, now: datetime.datetime = T0):
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += datetime.timedelta(seconds=seconds)


class InMemoryCache(CacheRepository):
    """Redis stand-in that honours TTLs against a FakeClock."""

    def __init__(self, clock: FakeClock):
        self._clock = clock
        self.entries: dict[str, tuple[str, datetime.datetime | None]] = {}
        self.ttls: dict[str, int | None] = {}
        self.get_calls: list[str] = []
        self.fail_get = False
        self.fail_set = False
        self.fail_incr = False

    def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        expires = self._clock() + datetime.timedelta(seconds=ttl_seconds) if ttl_seconds else None
        self.entries[key] = (value, expires)
        self.ttls[key] = ttl_seconds

    def peek(self, key: str) -> str | None:
        entry = self.entries.get(key)
        if entry is None:
            return None
        value, expires = entry
        if expires is not None and expires <= self._clock():
            del self.entries[key]
            return None
        return value

    async def get(self, key: str) -> str | None:
        self.get_calls.append(key)
        if self.fail_get:
            raise CacheError(f"GET {key} failed: connection refused")
        return self.peek(key)

    async def set(self, key: str, value: str, ttl_seconds: int | None) -> None:
        if self.fail_set:
            raise CacheError(f"SET {key} failed: connection refused")
        self.put(key, value, ttl_seconds)

    async def increment_counter(self, key: str) -> int:
        if self.fail_incr:
            raise CacheError(f"INCR {key} failed: connection refused")
        current = int(self.peek(key) or 0) + 1
        _, expires = self.entries.get(key, (None, None))
        self.entries[key] = (str(current), expires)
        return current


class InMemoryLinkRepository(LinkRepository):
    """Link store with a unique slug index and call counters."""

    def __init__(self, clock: FakeClock):
        self._clock = clock
        self.links: dict[str, Link] = {}
        self.save_calls = 0
        self.get_calls = 0
        self.fail_increment = False

    def add(self, short_id: str, target_url: str, status: LinkStatus = LinkStatus.ACTIVE) -> Link:
        link = Link(
            id=f"id-{short_id}",
            short_id=short_id,
            target_url=target_url,
            user_id="owner-1",
            status=status,
            clicks=0,
            created_at=self._clock(),
        )
        self.links[short_id] = link
        return link

    async def save(self, link: Link) -> Link:
        self.save_calls += 1
        # Let concurrent callers interleave before the uniqueness check.
        await asyncio.sleep(0)
        if link.short_id in self.links:
            raise ShortIDConflictError(link.short_id)
        link.created_at = self._clock()
        self.links[link.short_id] = link
        return link

    async def get_by_short_id(self, short_id: str) -> Link:
        self.get_calls += 1
        link = self.links.get(short_id)
        if link is None:
            raise LinkNotFoundError(f"link '{short_id}' not found")
        return link

    async def increment_clicks(self, short_id: str) -> None:
        if self.fail_increment:
            raise InternalError(f"failed to increment clicks for '{short_id}': connection reset")
        link = self.links.get(short_id)
        if link is not None:
            link.clicks += 1


class InMemorySessionRepository(SessionRepository):
    def __init__(self):
        self.sessions: dict[str, UserSession] = {}
        self.calls = 0

    def add(self, token: str, user_id: str, expires_at: datetime.datetime) -> UserSession:
        session = UserSession(id=f"sess-{token}", token=token, user_id=user_id, expires_at=expires_at)
        self.sessions[token] = session
        return session

    async def get_active_session(self, session_id: str, now: datetime.datetime) -> UserSession | None:
        self.calls += 1
        session = self.sessions.get(session_id)
        if session is None or session.expires_at <= now:
            return None
        return session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> InMemoryCache:
    return InMemoryCache(clock)


@pytest.fixture
def link_repo(clock: FakeClock) -> InMemoryLinkRepository:
    return InMemoryLinkRepository(clock)


@pytest.fixture
def session_repo() -> InMemorySessionRepository:
    return InMemorySessionRepository()


@pytest.fixture
def runner() -> BackgroundTaskRunner:
    return BackgroundTaskRunner(logging.getLogger("zipway"))


@pytest.fixture
def link_service(link_repo, cache, runner) -> LinkService:
    return LinkService(link_repo, cache, runner)


@pytest.fixture
def session_validator(cache, session_repo, runner, clock) -> SessionValidator:
    return SessionValidator(cache, session_repo, runner, clock=clock)


@pytest.fixture
def service_manager(cache, link_repo, session_repo, runner) -> SimpleNamespace:
    cache_writer = AsyncMock(spec=redis.Redis)
    cache_writer.ping = AsyncMock(return_value=True)
    return SimpleNamespace(
        settings=get_settings(),
        logger=logging.getLogger("zipway"),
        cache_writer=cache_writer,
        cache_repository=cache,
        link_repository=link_repo,
        session_repository=session_repo,
        background_tasks=runner,
    )


@pytest_asyncio.fixture(scope="function")
async def client(service_manager: SimpleNamespace) -> AsyncGenerator[AsyncClient, None]:
    from zipway.main import app

    db = AsyncMock(spec=AsyncSession)
    db.execute = AsyncMock()

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db

    async def override_get_service_manager() -> SimpleNamespace:
        return service_manager

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_service_manager] = override_get_service_manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await service_manager.background_tasks.drain()
    app.dependency_overrides.clear()
