"""Storage adapter tests against mocked SQLAlchemy sessions and Redis clients."""

import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from zipway.enums import LinkStatus
from zipway.exceptions import CacheError, InternalError, LinkNotFoundError, ShortIDConflictError
from zipway.models import Link, UserSession
from zipway.repositories import (
    PostgresLinkRepository,
    PostgresSessionRepository,
    RedisCacheRepository,
    is_unique_violation,
)

# ============================================================================
# TEST FIXTURES AND UTILITIES
# ============================================================================


class FakeDriverError(Exception):
    def __init__(self, message: str, sqlstate: str | None = None):
        super().__init__(message)
        self.sqlstate = sqlstate


def integrity_error(message: str, sqlstate: str | None) -> IntegrityError:
    return IntegrityError("INSERT INTO urls ...", {}, FakeDriverError(message, sqlstate))


@pytest.fixture
def mock_database() -> AsyncMock:
    """Mock database session."""
    db = AsyncMock(spec=AsyncSession)
    db.add = MagicMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.refresh = AsyncMock()
    db.execute = AsyncMock()
    return db


@pytest.fixture
def session_factory(mock_database) -> MagicMock:
    """Session factory whose context manager yields the mock session."""
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = mock_database
    factory.return_value.__aexit__.return_value = False
    return factory


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Mock Redis client."""
    redis_client = AsyncMock(spec=redis.Redis)
    redis_client.get = AsyncMock(return_value=None)
    redis_client.set = AsyncMock(return_value=True)
    redis_client.incr = AsyncMock(return_value=1)
    redis_client.ping = AsyncMock(return_value=True)
    return redis_client


def make_link(short_id: str = "abc123") -> Link:
    return Link(
        id="7f1c2d3e-0000-4000-8000-000000000000",
        short_id=short_id,
        target_url="https://example.com",
        user_id="user-1",
        status=LinkStatus.ACTIVE,
        clicks=0,
    )


def result_with(value) -> MagicMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


# ============================================================================
# UNIQUE VIOLATION DETECTION
# ============================================================================


class TestIsUniqueViolation:
    def test_sqlstate(self):
        assert is_unique_violation(integrity_error("boom", "23505"))

    def test_other_sqlstate(self):
        assert not is_unique_violation(integrity_error("null value in column", "23502"))

    def test_message_fallback(self):
        err = integrity_error('duplicate key value violates unique constraint "urls_shortId_key"', None)
        assert is_unique_violation(err)

    def test_pgcode_attribute(self):
        orig = Exception("duplicate")
        orig.pgcode = "23505"
        assert is_unique_violation(IntegrityError("INSERT", {}, orig))


# ============================================================================
# LINK REPOSITORY
# ============================================================================


class TestPostgresLinkRepository:
    @pytest.mark.asyncio
    async def test_save_commits_and_refreshes(self, session_factory, mock_database):
        repo = PostgresLinkRepository(session_factory)
        link = make_link()

        saved = await repo.save(link)

        assert saved is link
        mock_database.add.assert_called_once_with(link)
        mock_database.commit.assert_awaited_once()
        mock_database.refresh.assert_awaited_once_with(link)

    @pytest.mark.asyncio
    async def test_save_unique_violation_is_conflict(self, session_factory, mock_database):
        mock_database.commit.side_effect = integrity_error("duplicate key", "23505")
        repo = PostgresLinkRepository(session_factory)

        with pytest.raises(ShortIDConflictError) as excinfo:
            await repo.save(make_link("taken"))

        assert excinfo.value.short_id == "taken"
        mock_database.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_save_other_integrity_error_is_internal(self, session_factory, mock_database):
        mock_database.commit.side_effect = integrity_error("null value in column", "23502")
        repo = PostgresLinkRepository(session_factory)

        with pytest.raises(InternalError):
            await repo.save(make_link())

    @pytest.mark.asyncio
    async def test_save_connection_error_is_internal(self, session_factory, mock_database):
        mock_database.commit.side_effect = OperationalError("INSERT", {}, Exception("connection refused"))
        repo = PostgresLinkRepository(session_factory)

        with pytest.raises(InternalError):
            await repo.save(make_link())

    @pytest.mark.asyncio
    async def test_get_by_short_id_found(self, session_factory, mock_database):
        link = make_link()
        mock_database.execute.return_value = result_with(link)
        repo = PostgresLinkRepository(session_factory)

        assert await repo.get_by_short_id("abc123") is link

    @pytest.mark.asyncio
    async def test_get_by_short_id_missing(self, session_factory, mock_database):
        mock_database.execute.return_value = result_with(None)
        repo = PostgresLinkRepository(session_factory)

        with pytest.raises(LinkNotFoundError):
            await repo.get_by_short_id("missing")

    @pytest.mark.asyncio
    async def test_get_by_short_id_store_failure(self, session_factory, mock_database):
        mock_database.execute.side_effect = OperationalError("SELECT", {}, Exception("connection refused"))
        repo = PostgresLinkRepository(session_factory)

        with pytest.raises(InternalError):
            await repo.get_by_short_id("abc123")

    @pytest.mark.asyncio
    async def test_increment_clicks_commits(self, session_factory, mock_database):
        repo = PostgresLinkRepository(session_factory)

        await repo.increment_clicks("abc123")

        mock_database.execute.assert_awaited_once()
        mock_database.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_increment_clicks_failure_is_internal(self, session_factory, mock_database):
        mock_database.execute.side_effect = OperationalError("UPDATE", {}, Exception("connection reset"))
        repo = PostgresLinkRepository(session_factory)

        with pytest.raises(InternalError):
            await repo.increment_clicks("abc123")
        mock_database.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_each_call_opens_its_own_session(self, session_factory, mock_database):
        mock_database.execute.return_value = result_with(make_link())
        repo = PostgresLinkRepository(session_factory)

        await repo.get_by_short_id("abc123")
        await repo.increment_clicks("abc123")

        assert session_factory.call_count == 2


# ============================================================================
# SESSION REPOSITORY
# ============================================================================


class TestPostgresSessionRepository:
    @pytest.mark.asyncio
    async def test_active_session_returned(self, session_factory, mock_database):
        now = datetime.datetime(2026, 1, 1, tzinfo=datetime.timezone.utc)
        row = UserSession(id="s1", token="sid", user_id="user-1", expires_at=now + datetime.timedelta(hours=1))
        mock_database.execute.return_value = result_with(row)
        repo = PostgresSessionRepository(session_factory)

        assert await repo.get_active_session("sid", now) is row

    @pytest.mark.asyncio
    async def test_no_session_returns_none(self, session_factory, mock_database):
        mock_database.execute.return_value = result_with(None)
        repo = PostgresSessionRepository(session_factory)

        assert await repo.get_active_session("sid", datetime.datetime.now(datetime.timezone.utc)) is None

    @pytest.mark.asyncio
    async def test_store_failure_is_internal(self, session_factory, mock_database):
        mock_database.execute.side_effect = OperationalError("SELECT", {}, Exception("connection refused"))
        repo = PostgresSessionRepository(session_factory)

        with pytest.raises(InternalError):
            await repo.get_active_session("sid", datetime.datetime.now(datetime.timezone.utc))


# ============================================================================
# CACHE REPOSITORY
# ============================================================================


class TestRedisCacheRepository:
    @pytest.mark.asyncio
    async def test_get_missing_key_is_none(self, mock_redis):
        repo = RedisCacheRepository(mock_redis)

        assert await repo.get("urlabc123") is None
        mock_redis.get.assert_awaited_once_with("urlabc123")

    @pytest.mark.asyncio
    async def test_get_reads_from_replica(self, mock_redis):
        replica = AsyncMock(spec=redis.Redis)
        replica.get = AsyncMock(return_value="user-1")
        repo = RedisCacheRepository(mock_redis, replica)

        assert await repo.get("session:sid") == "user-1"
        mock_redis.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_set_with_ttl(self, mock_redis):
        repo = RedisCacheRepository(mock_redis)

        await repo.set("urlabc123", "{}", 86400)

        mock_redis.set.assert_awaited_once_with("urlabc123", "{}", ex=86400)

    @pytest.mark.asyncio
    async def test_set_without_ttl(self, mock_redis):
        repo = RedisCacheRepository(mock_redis)

        await repo.set("key", "value", None)

        mock_redis.set.assert_awaited_once_with("key", "value")

    @pytest.mark.asyncio
    async def test_increment_counter(self, mock_redis):
        mock_redis.incr.return_value = 7
        repo = RedisCacheRepository(mock_redis)

        assert await repo.increment_counter("stats:abc123") == 7

    @pytest.mark.asyncio
    async def test_redis_errors_become_cache_errors(self, mock_redis):
        mock_redis.get.side_effect = RedisConnectionError("connection refused")
        mock_redis.set.side_effect = RedisTimeoutError("timeout")
        mock_redis.incr.side_effect = RedisConnectionError("connection refused")
        repo = RedisCacheRepository(mock_redis)

        with pytest.raises(CacheError):
            await repo.get("urlabc123")
        with pytest.raises(CacheError):
            await repo.set("urlabc123", "{}", 60)
        with pytest.raises(CacheError):
            await repo.increment_counter("stats:abc123")
