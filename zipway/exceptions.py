"""Exceptions raised by the link service, session validator and their adapters.

Classes:
    ZipwayError:
        Generic base class for every Zipway exception.

    ValidationError:
        Raised when a required input is missing or empty (owner, slug, token).

    UnauthorizedError:
        Raised when a session is absent, invalid or expired.

    SessionTokenMissingError:
        Raised when no session cookie can be found in a cookie header.

    LinkNotFoundError:
        Raised when a slug is unknown to the durable store.

    LinkPausedError:
        Raised when a slug exists but its link is paused.

    ShortIDConflictError:
        Raised when a slug is already taken.

    InternalError:
        Raised for unexpected store or cache failures.

    CacheError:
        Raised when the cache backend cannot be reached or answers with an error.

Example:
    >>> from zipway.exceptions import LinkNotFoundError
    >>> raise LinkNotFoundError("link 'abc123' not found")
    Traceback (most recent call last):
        ...
    zipway.exceptions.LinkNotFoundError: link 'abc123' not found
"""

__all__ = [
    "ZipwayError",
    "ValidationError",
    "UnauthorizedError",
    "SessionTokenMissingError",
    "LinkNotFoundError",
    "LinkPausedError",
    "ShortIDConflictError",
    "InternalError",
    "CacheError",
]


class ZipwayError(Exception):
    """Generic base class for Zipway exceptions."""

    pass


class ValidationError(ZipwayError):
    """Exception raised when a required input is missing or empty."""

    pass


class UnauthorizedError(ZipwayError):
    """Exception raised when a caller has no valid session."""

    pass


class SessionTokenMissingError(UnauthorizedError):
    """Exception raised when the cookie header carries no session token."""

    pass


class LinkNotFoundError(ZipwayError):
    """Exception raised when a slug is unknown to the durable store."""

    pass


class LinkPausedError(ZipwayError):
    """Exception raised when a slug resolves to a paused link."""

    pass


class ShortIDConflictError(ZipwayError):
    """Exception raised when a slug violates the uniqueness constraint."""

    def __init__(self, short_id: str):
        super().__init__(f"short id '{short_id}' is already in use")
        self.short_id = short_id


class InternalError(ZipwayError):
    """Exception raised for unexpected store or cache failures."""

    pass


class CacheError(InternalError):
    """Exception raised when the cache backend fails.

    e.g. connection refused, timeouts, OOM, etc.
    """

    pass
