"""Session validation through two cache tiers and the durable session table.

Session tokens are issued by an external identity provider and arrive in a
cookie. Only the part before the first '.' (the session ID) is used for
lookups.

Flow Diagram — validate_session()
=================================
::
    ┌─────────────┐
    │  token       │──── empty ──▶ ValidationError
    └──────┬──────┘
           ▼
    ┌──────────────────┐  hit
    │ Tier 1           │──────▶ user_id
    │ session:<sid>    │
    └──────┬───────────┘
           ▼ miss
    ┌──────────────────┐  valid + unexpired
    │ Tier 2           │──────▶ user_id (+ tier 1 write, detached)
    │ <sid> (provider) │
    └──────┬───────────┘
           ▼ miss / malformed / expired
    ┌──────────────────┐  row with expiresAt > now
    │ Tier 3           │──────▶ user_id (+ tier 1 write, detached)
    │ session table    │
    └──────┬───────────┘
           ▼
    UnauthorizedError("invalid or expired session")

Key Behaviours
===============
- Tier 1 entries hold the raw user ID and live SESSION_CACHE_TTL_SECONDS,
  cut down to the session's remaining lifetime so they never outlive it.
- Tier 2 is read-only; this module never writes the provider's blob.
- Cache read failures fall through to the next tier.
- extract_session_token() is pure and performs no I/O.

Functions:
    extract_session_token():  Pull the session token out of a Cookie header.

Classes:
    SessionValidator:  Resolve a session token to a user ID.
"""

import datetime
import logging
import math
import re
from collections.abc import Callable
from urllib.parse import unquote_plus

from prometheus_client import Counter
from pydantic import ValidationError as PayloadValidationError

from zipway.background import BackgroundTaskRunner
from zipway.enums import SessionTier
from zipway.exceptions import CacheError, SessionTokenMissingError, UnauthorizedError, ValidationError
from zipway.ports import CacheRepository, SessionRepository
from zipway.schemas import ProviderSessionPayload

__all__ = [
    "SECURE_SESSION_COOKIE",
    "SESSION_CACHE_TTL_SECONDS",
    "SESSION_COOKIE",
    "SessionValidator",
    "extract_session_token",
    "session_cache_key",
    "session_id_from_token",
]

# Shorter of the two historical bounds (60s vs 300s); always below the
# provider's session lifetime.
SESSION_CACHE_TTL_SECONDS = 60

SECURE_SESSION_COOKIE = "__Secure-better-auth.session_token"
SESSION_COOKIE = "better-auth.session_token"

_INVALID_PERCENT_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")

# Anchored at a cookie boundary: the plain name is a suffix of the secure one.
_SESSION_COOKIE_PATTERNS = tuple(
    re.compile(rf"(?:^|[;\s]){re.escape(name)}=([^;]*)") for name in (SECURE_SESSION_COOKIE, SESSION_COOKIE)
)

SESSION_VALIDATIONS_TOTAL = Counter(
    "zipway_session_validations_total",
    "Session validations by answering tier",
    ["tier"],
)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def session_cache_key(session_id: str) -> str:
    return f"session:{session_id}"


def session_id_from_token(token: str) -> str:
    return token.split(".", 1)[0]


def _unescape_cookie_value(value: str) -> str:
    if _INVALID_PERCENT_ESCAPE.search(value):
        return value
    return unquote_plus(value)


def extract_session_token(cookie_header: str | None) -> str:
    """Return the decoded session token from a raw Cookie header.

    The secure-prefixed cookie wins over the plain one. The value runs up to
    the next ';' or the end of the header. A value with a broken percent
    escape is returned undecoded.

    Raises:
        SessionTokenMissingError: If the header is absent or carries no
            non-empty session cookie.
    """
    if not cookie_header:
        raise SessionTokenMissingError("no cookie header")

    for pattern in _SESSION_COOKIE_PATTERNS:
        match = pattern.search(cookie_header)
        if match and match.group(1):
            return _unescape_cookie_value(match.group(1))

    raise SessionTokenMissingError("session cookie not found")


class SessionValidator:
    """Resolve session tokens to user IDs, cheapest tier first."""

    def __init__(
        self,
        cache: CacheRepository,
        sessions: SessionRepository,
        tasks: BackgroundTaskRunner,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ):
        self._cache = cache
        self._sessions = sessions
        self._tasks = tasks
        self._logger = logger or logging.getLogger("zipway")
        self._clock = clock

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "SessionValidator":
        return cls(ctx.cache_repository, ctx.session_repository, ctx.background_tasks, ctx.logger)

    async def validate_session(self, session_token: str) -> str:
        """Return the user ID owning session_token.

        Raises:
            ValidationError: If the token is empty.
            UnauthorizedError: If no tier knows a live session for it.
            InternalError: If the session table cannot be queried. A store
                outage is reported as such rather than as a rejected session.
        """
        if not session_token:
            raise ValidationError("session token is required")

        session_id = session_id_from_token(session_token)

        user_id = await self._from_session_cache(session_id)
        if user_id:
            SESSION_VALIDATIONS_TOTAL.labels(tier=SessionTier.SESSION_CACHE).inc()
            return user_id

        user_id = await self._from_provider_cache(session_id)
        if user_id:
            SESSION_VALIDATIONS_TOTAL.labels(tier=SessionTier.PROVIDER_CACHE).inc()
            return user_id

        session = await self._sessions.get_active_session(session_id, self._clock())
        if session is not None and session.user_id:
            self._remember(session_id, session.user_id, session.expires_at)
            SESSION_VALIDATIONS_TOTAL.labels(tier=SessionTier.DATABASE).inc()
            return session.user_id

        SESSION_VALIDATIONS_TOTAL.labels(tier=SessionTier.NONE).inc()
        self._logger.info("Session validation failed: invalid or expired session")
        raise UnauthorizedError("invalid or expired session")

    async def _cache_get(self, key: str) -> str | None:
        try:
            return await self._cache.get(key)
        except CacheError as exc:
            self._logger.warning(f"Session cache read failed, trying next tier: {exc}")
            return None

    async def _from_session_cache(self, session_id: str) -> str | None:
        return await self._cache_get(session_cache_key(session_id))

    async def _from_provider_cache(self, session_id: str) -> str | None:
        raw = await self._cache_get(session_id)
        if not raw:
            return None

        try:
            payload = ProviderSessionPayload.model_validate_json(raw)
        except PayloadValidationError:
            self._logger.debug("Provider session blob is malformed, trying next tier")
            return None

        if payload.session.expires_at <= self._clock():
            return None

        user_id = payload.resolved_user_id
        if user_id:
            self._remember(session_id, user_id, payload.session.expires_at)
        return user_id or None

    def _remember(self, session_id: str, user_id: str, expires_at: datetime.datetime) -> None:
        """Schedule a tier 1 write that expires no later than the session itself."""
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=datetime.timezone.utc)
        remaining = math.floor((expires_at - self._clock()).total_seconds())
        ttl = min(SESSION_CACHE_TTL_SECONDS, remaining)
        if ttl < 1:
            return
        self._tasks.submit(
            self._write_session_cache(session_id, user_id, ttl),
            name="cache_session",
        )

    async def _write_session_cache(self, session_id: str, user_id: str, ttl: int) -> None:
        try:
            await self._cache.set(session_cache_key(session_id), user_id, ttl)
        except CacheError as exc:
            self._logger.warning(f"Failed to cache session: {exc}")
