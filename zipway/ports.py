"""Storage ports consumed by the link service and session validator.

The core only talks to these abstract contracts. PostgreSQL and Redis
adapters live in ``zipway.repositories``; tests plug in in-memory fakes.
"""

import datetime
from abc import ABC, abstractmethod

from zipway.models import Link, UserSession

__all__ = ["CacheRepository", "LinkRepository", "SessionRepository"]


class LinkRepository(ABC):
    @abstractmethod
    async def save(self, link: Link) -> Link:
        """Insert a new link and return it with server-assigned fields populated.

        Raises ShortIDConflictError when the slug is already taken and
        InternalError for any other store failure.
        """
        pass

    @abstractmethod
    async def get_by_short_id(self, short_id: str) -> Link:
        """Return the link for a slug, raising LinkNotFoundError when unknown."""
        pass

    @abstractmethod
    async def increment_clicks(self, short_id: str) -> None:
        """Add one to the authoritative click counter of a slug."""
        pass


class CacheRepository(ABC):
    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the cached value, or None on a miss. Raises CacheError on backend failure."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int | None) -> None:
        """Store a value; a ttl of None keeps it until evicted."""
        pass

    @abstractmethod
    async def increment_counter(self, key: str) -> int:
        """Atomically add one to an integer counter and return the new value."""
        pass


class SessionRepository(ABC):
    @abstractmethod
    async def get_active_session(self, session_id: str, now: datetime.datetime) -> UserSession | None:
        """Return the session whose token is session_id and whose expiry is after now."""
        pass
